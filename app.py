"""
Flask Web Application for the Handoff case workspace

Local, single-user JSON API over one CaseSession. The browser front end
(or any HTTP client) drives notes, analysis results, conflict
dispositions, saved cases and source editing through these endpoints.
"""

from flask import Flask, request, jsonify
import asyncio
import logging

from handoff.contracts import DismissalReason, DismissalRecord, Note, PatientDetails
from handoff.core.case_session import CaseSession
from handoff.exceptions import SaveInProgressError, StorageError, ValidationError
from handoff.persistence import CaseStore
from handoff.utils.case_search import case_summary, filter_cases
from handoff.utils.helpers import generate_case_id, now_ms
from handoff.utils.security import validate_clinical_content

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# The one working session for this local instance
current = {
    'session': None
}


def init_session(store=None):
    """Create the working session (called once at startup, or by tests)"""
    current['session'] = CaseSession(store if store is not None else CaseStore())
    logger.info("Web session initialized")
    return current['session']


def get_session():
    if current['session'] is None:
        init_session()
    return current['session']


def error_response(e):
    """Map handoff errors onto HTTP status codes"""
    if isinstance(e, ValidationError):
        status = 400
    elif isinstance(e, SaveInProgressError):
        status = 409
    elif isinstance(e, StorageError):
        status = 503
    else:
        logger.error(f"Unexpected error: {e}")
        status = 500
    return jsonify({'success': False, 'error': str(e)}), status


def session_payload(session):
    """Serializable view of the working set"""
    return {
        'status': session.status.value,
        'case_id': session.case_id,
        'has_unsaved_changes': session.has_unsaved_changes,
        'patient': session.patient_details.to_json(),
        'notes': [n.to_json() for n in session.notes],
        'result': session.result.to_json() if session.result is not None else None,
        'dismissedFlags': {k: v.to_json() for k, v in session.dismissed_flags.items()},
        'active_conflicts': [c.id for c in session.active_conflicts()],
        'history': [e.to_json() for e in session.audit.newest_first()],
    }


def editor_payload(editor):
    return {
        'note_id': editor.note_id,
        'draft': editor.draft,
        'can_undo': editor.history.can_undo,
        'can_redo': editor.history.can_redo,
    }


def parse_reason(value):
    """Accept either the enum name (FALSE_POSITIVE) or its label (False Positive)"""
    if value in DismissalReason.__members__:
        return DismissalReason[value]
    try:
        return DismissalReason(value)
    except ValueError:
        raise ValidationError(f"Unknown dismissal reason: {value}")


# ========================
# Working Set
# ========================

@app.route('/api/session', methods=['GET'])
def get_current_session():
    return jsonify({'success': True, 'session': session_payload(get_session())})


@app.route('/api/reset', methods=['POST'])
def reset_session():
    try:
        session = get_session()
        session.reset()
        return jsonify({'success': True, 'session': session_payload(session)})
    except SaveInProgressError as e:
        return error_response(e)


@app.route('/api/demo', methods=['POST'])
def load_demo():
    try:
        session = get_session()
        session.load_demo_scenario()
        return jsonify({'success': True, 'session': session_payload(session)})
    except SaveInProgressError as e:
        return error_response(e)


@app.route('/api/patient', methods=['PUT'])
def update_patient():
    try:
        data = request.json or {}
        if not isinstance(data, dict):
            raise ValidationError("Patient details must be a JSON object")
        for field, value in data.items():
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"Patient field '{field}' must be text")

        session = get_session()
        session.update_patient_details(PatientDetails.from_json(data))
        return jsonify({'success': True, 'patient': session.patient_details.to_json()})
    except ValidationError as e:
        return error_response(e)


@app.route('/api/notes', methods=['POST'])
def add_note():
    try:
        session = get_session()
        data = dict(request.json or {})
        data.setdefault('id', generate_case_id(short=True))
        data.setdefault('timestamp', now_ms())
        note = Note.from_json(data)

        if note.type.value == 'text' and not validate_clinical_content(note.content):
            raise ValidationError("Note content does not look like clinical text")

        session.add_note(note)
        return jsonify({'success': True, 'note': note.to_json()})
    except (ValidationError, ValueError) as e:
        return error_response(e if isinstance(e, ValidationError) else ValidationError(str(e)))


@app.route('/api/notes/<note_id>', methods=['DELETE'])
def remove_note(note_id):
    try:
        get_session().remove_note(note_id)
        return jsonify({'success': True})
    except ValidationError as e:
        return error_response(e)


@app.route('/api/notes/<note_id>', methods=['PUT'])
def edit_note(note_id):
    try:
        get_session().edit_note_content(note_id, (request.json or {}).get('content', ''))
        return jsonify({'success': True})
    except ValidationError as e:
        return error_response(e)


@app.route('/api/notes/<note_id>/move', methods=['POST'])
def move_note(note_id):
    try:
        get_session().move_note(note_id, (request.json or {}).get('target_id', ''))
        return jsonify({'success': True, 'order': [n.id for n in get_session().notes]})
    except ValidationError as e:
        return error_response(e)


# ========================
# Analysis & Conflicts
# ========================

@app.route('/api/analysis', methods=['POST'])
def submit_analysis():
    """Install a result produced by the external analysis service"""
    try:
        result = get_session().set_analysis_result(request.json or {})
        return jsonify({'success': True, 'result': result.to_json()})
    except ValueError as e:
        return error_response(ValidationError(str(e)))


@app.route('/api/conflicts/<conflict_id>/dismiss', methods=['POST'])
def dismiss_conflict(conflict_id):
    try:
        data = request.json or {}
        record = DismissalRecord(
            conflict_id=conflict_id,
            reason=parse_reason(data.get('reason', 'NOT_RELEVANT')),
            timestamp=now_ms(),
            custom_reason=data.get('customReason'),
            note=data.get('note'),
            resolution_source_id=data.get('resolutionSourceId'),
        )
        flags = get_session().dismiss(record)
        return jsonify({'success': True, 'dismissedFlags': {k: v.to_json() for k, v in flags.items()}})
    except ValidationError as e:
        return error_response(e)


@app.route('/api/conflicts/<conflict_id>/resolve', methods=['POST'])
def resolve_conflict(conflict_id):
    try:
        source_id = (request.json or {}).get('sourceId', '')
        flags = get_session().resolve(conflict_id, source_id)
        return jsonify({'success': True, 'dismissedFlags': {k: v.to_json() for k, v in flags.items()}})
    except ValidationError as e:
        return error_response(e)


@app.route('/api/conflicts/<conflict_id>/restore', methods=['POST'])
def restore_conflict(conflict_id):
    flags = get_session().restore(conflict_id)
    return jsonify({'success': True, 'dismissedFlags': {k: v.to_json() for k, v in flags.items()}})


# ========================
# Saved Cases
# ========================

@app.route('/api/save', methods=['POST'])
def save_case():
    try:
        saved = asyncio.run(get_session().save())
        return jsonify({
            'success': True,
            'case_id': saved.case_id,
            'created': saved.created,
            'message': "New case saved." if saved.created else "Case updated successfully.",
            'cases': [case_summary(c) for c in saved.cases]
        })
    except (ValidationError, SaveInProgressError, StorageError) as e:
        return error_response(e)


@app.route('/api/cases', methods=['GET'])
def list_cases():
    try:
        cases = asyncio.run(get_session().list_cases())
        min_sources = request.args.get('min_sources')
        matches = filter_cases(
            cases,
            term=request.args.get('q', ''),
            start_date=request.args.get('start') or None,
            end_date=request.args.get('end') or None,
            min_sources=int(min_sources) if min_sources else None
        )
        return jsonify({'success': True, 'total': len(cases), 'cases': [case_summary(c) for c in matches]})
    except ValueError as e:
        return error_response(ValidationError(str(e)))


@app.route('/api/cases/<case_id>/load', methods=['POST'])
def load_case(case_id):
    session = get_session()
    cases = asyncio.run(session.list_cases())
    match = next((c for c in cases if c.id == case_id), None)
    if match is None:
        return jsonify({'success': False, 'error': f'Case {case_id} not found'}), 404

    try:
        session.load(match)
    except SaveInProgressError as e:
        return error_response(e)
    return jsonify({'success': True, 'message': f"Loaded case: {match.name}", 'session': session_payload(session)})


@app.route('/api/cases/<case_id>', methods=['DELETE'])
def delete_case(case_id):
    try:
        session = get_session()
        was_bound = session.case_id == case_id
        cases = asyncio.run(session.delete_case(case_id))
        message = "Case deleted from storage (Working copy retained)." if was_bound else "Case deleted."
        return jsonify({'success': True, 'message': message, 'cases': [case_summary(c) for c in cases]})
    except (SaveInProgressError, StorageError) as e:
        return error_response(e)


# ========================
# Source Editing
# ========================

@app.route('/api/editor/<note_id>/open', methods=['POST'])
def open_editor(note_id):
    try:
        editor = get_session().open_source_editor(note_id)
        return jsonify({'success': True, 'editor': editor_payload(editor)})
    except ValidationError as e:
        return error_response(e)


def _with_editor(action):
    session = get_session()
    if session.editor is None:
        return error_response(ValidationError("No source editor is open"))
    action(session.editor)
    return jsonify({'success': True, 'editor': editor_payload(session.editor)})


@app.route('/api/editor/checkpoint', methods=['POST'])
def editor_checkpoint():
    """Client-side debounce fires this with the settled draft"""
    content = (request.json or {}).get('content', '')
    return _with_editor(lambda editor: editor.checkpoint(content))


@app.route('/api/editor/undo', methods=['POST'])
def editor_undo():
    return _with_editor(lambda editor: editor.undo())


@app.route('/api/editor/redo', methods=['POST'])
def editor_redo():
    return _with_editor(lambda editor: editor.redo())


@app.route('/api/editor/commit', methods=['POST'])
def editor_commit():
    try:
        session = get_session()
        session.commit_source_edit()
        return jsonify({'success': True, 'notes': [n.to_json() for n in session.notes]})
    except ValidationError as e:
        return error_response(e)


@app.route('/api/editor/close', methods=['POST'])
def editor_close():
    get_session().close_source_editor()
    return jsonify({'success': True})


# ========================
# Export
# ========================

@app.route('/api/export', methods=['GET'])
def export_report():
    session = get_session()
    if session.result is None:
        return jsonify({'success': False, 'error': 'No analysis result to export'}), 400
    return jsonify({'success': True, 'report': session.export_view().to_json()})


if __name__ == '__main__':
    init_session()

    print("\n" + "="*60)
    print("HANDOFF CASE WORKSPACE - LOCAL API")
    print("="*60)
    print("\nServer starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=False, host='127.0.0.1', port=5000)
