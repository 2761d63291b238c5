"""
Unit tests for CaseSession (working set orchestration)

Tests lifecycle transitions, audit pairing and persistence mediation
with an in-memory store and mock collaborators.

Run with: pytest tests/test_case_session.py -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio

import pytest

from handoff.contracts import (
    DismissalReason,
    DismissalRecord,
    Note,
    NoteType,
    PatientDetails,
)
from handoff.core.case_session import CaseSession, SessionStatus
from handoff.exceptions import (
    InvalidReference,
    SaveInProgressError,
    StorageError,
    ValidationError,
)
from handoff.persistence import CaseStore, InMemoryMedium


# ========================
# Mock Collaborators
# ========================

class FakeClock:
    def __init__(self, start=1700000000000):
        self.now = start

    def __call__(self):
        self.now += 1
        return self.now


class SequentialIds:
    """Predictable case ids: case-1, case-2, ..."""

    def __init__(self):
        self.count = 0

    def __call__(self):
        self.count += 1
        return f"case-{self.count}"


class FailingStore(CaseStore):
    """Store whose writes fail until fail_writes is cleared"""

    def __init__(self):
        super().__init__(InMemoryMedium(), key="failing")
        self.fail_writes = True

    def _write(self, cases):
        if self.fail_writes:
            raise StorageError("Quota exceeded")
        super()._write(cases)


class SlowStore(CaseStore):
    """Store whose create blocks until released, to overlap two saves"""

    def __init__(self):
        super().__init__(InMemoryMedium(), key="slow")
        import threading
        self.release = threading.Event()

    def create(self, case):
        self.release.wait(timeout=5)
        return super().create(case)


RAW_RESULT = {
    "patient_trajectory_summary": "Chest pain, NSTEMI, ICU admission",
    "critical_conflicts": [
        {
            "id": "c1",
            "description": "Aspirin dose differs",
            "severity": "HIGH",
            "source_ids": ["n1", "n2"],
            "reasoning": "81 mg vs 325 mg",
            "why_it_matters": "Dual antiplatelet dosing",
            "confidence": "HIGH",
            "excerpts": [{"source_id": "n1", "text": "Aspirin 81 mg"}],
        },
        {
            "description": "Allergy status differs",
            "severity": "MEDIUM",
            "source_ids": ["n1", "n2"],
            "reasoning": "NKDA vs penicillin rash",
            "why_it_matters": "Antibiotic choice",
            "confidence": "MEDIUM",
            "excerpts": [],
        },
    ],
    "potentially_missing_information": [],
    "timeline_events": [],
    "analysis_confidence": "HIGH",
    "summary_stats": {"high": 9, "medium": 9, "low": 9},
}


def make_note(note_id, label=None, content="Aspirin 81 mg daily, NKDA"):
    return Note(id=note_id, type=NoteType.TEXT, content=content, label=label or f"Note {note_id}", timestamp=1)


def make_session(store=None):
    return CaseSession(
        store if store is not None else CaseStore(InMemoryMedium(), key="cases"),
        clock=FakeClock(),
        id_factory=SequentialIds(),
        debounce_seconds=0.01,
    )


def populated_session(store=None):
    session = make_session(store)
    session.update_patient_details(PatientDetails(id="MRN-1", encounter_date="Dec 08 2024"))
    session.add_note(make_note("n1", "ED Triage Note"))
    session.add_note(make_note("n2", "Cardiology Consult"))
    session.set_analysis_result(RAW_RESULT)
    return session


def actions(session):
    return [e.action for e in session.history]


# ========================
# Lifecycle
# ========================

def test_new_session_is_new():
    session = make_session()
    assert session.status == SessionStatus.NEW
    assert session.case_id is None
    assert not session.has_unsaved_changes


def test_mutation_moves_to_dirty_and_logs():
    session = make_session()
    session.add_note(make_note("n1", "ED Triage Note"))

    assert session.status == SessionStatus.DIRTY
    assert actions(session) == ["NOTE_ADDED"]
    assert session.history[0].details == "Type: text, Label: ED Triage Note"


def test_first_save_creates_and_binds_identity():
    session = populated_session()

    saved = asyncio.run(session.save())

    assert saved.created is True
    assert saved.case_id == "case-1"
    assert session.case_id == "case-1"
    assert session.status == SessionStatus.SAVED
    assert [c.id for c in saved.cases] == ["case-1"]


def test_save_event_is_in_persisted_snapshot():
    session = populated_session()
    asyncio.run(session.save())

    stored = session.store.load_all()[0]

    assert stored.history[-1].action == "CASE_CREATED"
    assert stored.history[-1].details == "Saved by user."
    assert stored.name == "Case: MRN-1 (Dec 08 2024)"


def test_second_save_updates_same_record():
    session = populated_session()
    asyncio.run(session.save())
    session.dismiss(DismissalRecord(conflict_id="c1", reason=DismissalReason.FALSE_POSITIVE, timestamp=1))
    assert session.status == SessionStatus.DIRTY

    saved = asyncio.run(session.save())

    assert saved.created is False
    assert saved.case_id == "case-1"
    assert len(session.store.load_all()) == 1
    assert session.store.load_all()[0].history[-1].action == "CASE_UPDATED"
    assert "c1" in session.store.load_all()[0].dismissed_flags


def test_save_requires_patient_id():
    session = make_session()
    session.add_note(make_note("n1"))

    with pytest.raises(ValidationError):
        asyncio.run(session.save())

    assert session.store.load_all() == []


def test_save_without_analysis_result_is_valid():
    session = make_session()
    session.update_patient_details(PatientDetails(id="MRN-2"))
    session.add_note(make_note("n1"))

    saved = asyncio.run(session.save())

    assert session.store.load_all()[0].result is None
    assert saved.cases[0].name == "Case: MRN-2 (No Date)"


def test_storage_error_keeps_working_set():
    store = FailingStore()
    session = populated_session(store)
    notes_before = session.notes

    with pytest.raises(StorageError):
        asyncio.run(session.save())

    assert session.case_id is None
    assert session.status == SessionStatus.DIRTY
    assert session.notes == notes_before
    assert session.result is not None

    # Retry succeeds once the medium recovers
    store.fail_writes = False
    saved = asyncio.run(session.save())
    assert saved.created is True


def test_overlapping_save_is_rejected():
    store = SlowStore()
    session = populated_session(store)

    async def scenario():
        first = asyncio.ensure_future(session.save())
        await asyncio.sleep(0.01)
        with pytest.raises(SaveInProgressError):
            await session.save()
        store.release.set()
        return await first

    saved = asyncio.run(scenario())

    assert saved.created is True
    assert len(store.load_all()) == 1


def test_working_set_swaps_rejected_while_save_pending():
    """load / reset / demo / delete during a suspended create must not rebind identity"""
    store = SlowStore()
    session = populated_session(store)
    other = make_session().snapshot("other-case")

    async def scenario():
        pending = asyncio.ensure_future(session.save())
        await asyncio.sleep(0.01)
        try:
            with pytest.raises(SaveInProgressError):
                session.load(other)
            with pytest.raises(SaveInProgressError):
                session.reset()
            with pytest.raises(SaveInProgressError):
                session.load_demo_scenario()
            with pytest.raises(SaveInProgressError):
                await session.delete_case("other-case")
        finally:
            store.release.set()
        return await pending

    saved = asyncio.run(scenario())

    assert session.case_id == saved.case_id == "case-1"
    assert session.patient_details.id == "MRN-1"
    assert session.status == SessionStatus.SAVED

    # Once the save completes the working set can be swapped again
    session.load(other)
    assert session.case_id == "other-case"
    assert [c.patient_details.id for c in store.load_all()] == ["MRN-1"]


def test_load_replaces_working_set():
    source = populated_session()
    source.resolve("c1", "n2")
    asyncio.run(source.save())
    stored = source.store.load_all()[0]

    session = make_session(source.store)
    session.add_note(make_note("other"))
    session.load(stored)

    assert session.case_id == stored.id
    assert session.status == SessionStatus.SAVED
    assert [n.id for n in session.notes] == ["n1", "n2"]
    assert session.dismissed_flags == stored.dismissed_flags
    assert session.history[:-1] == stored.history
    assert session.history[-1].action == "CASE_LOADED"


def test_load_then_save_updates_loaded_record():
    source = populated_session()
    asyncio.run(source.save())
    stored = source.store.load_all()[0]

    session = make_session(source.store)
    session.load(stored)
    saved = asyncio.run(session.save())

    assert saved.created is False
    assert saved.case_id == stored.id
    persisted = source.store.load_all()[0]
    assert [e.action for e in persisted.history][-2:] == ["CASE_LOADED", "CASE_UPDATED"]


def test_delete_bound_case_detaches_identity():
    session = populated_session()
    asyncio.run(session.save())

    remaining = asyncio.run(session.delete_case("case-1"))

    assert remaining == []
    assert session.case_id is None
    assert session.status == SessionStatus.DIRTY
    assert len(session.notes) == 2
    assert actions(session)[-1] == "STORAGE_DELETED"

    saved = asyncio.run(session.save())
    assert saved.created is True
    assert saved.case_id == "case-2"


def test_delete_other_case_keeps_identity():
    session = populated_session()
    asyncio.run(session.save())
    history_len = len(session.history)

    asyncio.run(session.delete_case("someone-else"))

    assert session.case_id == "case-1"
    assert session.status == SessionStatus.SAVED
    assert len(session.history) == history_len


def test_reset_returns_to_new():
    session = populated_session()
    asyncio.run(session.save())
    session.open_source_editor("n1")

    session.reset()

    assert session.status == SessionStatus.NEW
    assert session.case_id is None
    assert session.notes == ()
    assert session.result is None
    assert session.dismissed_flags == {}
    assert session.history == ()
    assert session.editor is None


# ========================
# Notes & Analysis
# ========================

def test_note_changes_invalidate_result_and_dispositions():
    session = populated_session()
    session.dismiss(DismissalRecord(conflict_id="c1", reason=DismissalReason.ADDRESSED, timestamp=1))

    session.edit_note_content("n1", "Aspirin 325 mg")

    assert session.result is None
    assert session.dismissed_flags == {}
    assert actions(session)[-1] == "NOTE_EDITED"


def test_note_limit():
    session = CaseSession(CaseStore(InMemoryMedium()), max_notes=2)
    session.add_note(make_note("n1"))
    session.add_note(make_note("n2"))

    with pytest.raises(ValidationError):
        session.add_note(make_note("n3"))


def test_duplicate_note_id_rejected():
    session = make_session()
    session.add_note(make_note("n1"))
    with pytest.raises(ValidationError):
        session.add_note(make_note("n1"))


def test_remove_and_move_notes():
    session = make_session()
    for note_id in ("a", "b", "c"):
        session.add_note(make_note(note_id))

    session.move_note("c", "a")
    assert [n.id for n in session.notes] == ["c", "a", "b"]

    session.remove_note("a")
    assert [n.id for n in session.notes] == ["c", "b"]
    assert actions(session)[-2:] == ["NOTE_REORDERED", "NOTE_REMOVED"]


def test_set_analysis_result_normalizes():
    session = populated_session()

    assert [c.id for c in session.result.critical_conflicts] == ["c1", "conflict-1"]
    assert session.result.summary_stats == {"high": 1, "medium": 1, "low": 0}
    assert actions(session)[-1] == "ANALYSIS_SUCCESS"
    assert session.history[-1].details == "Conflicts: 2"


def test_new_result_prunes_stale_dispositions():
    session = populated_session()
    session.dismiss(DismissalRecord(conflict_id="conflict-1", reason=DismissalReason.OTHER, timestamp=1))
    session.dismiss(DismissalRecord(conflict_id="c1", reason=DismissalReason.OTHER, timestamp=1))

    session.set_analysis_result({"critical_conflicts": [RAW_RESULT["critical_conflicts"][0]]})

    assert list(session.dismissed_flags) == ["c1"]


def test_analyze_with_sync_analyzer():
    session = make_session()
    session.update_patient_details(PatientDetails(id="MRN-1", encounter_date="today"))
    session.add_note(make_note("n1"))
    session.add_note(make_note("n2"))
    seen = []

    def analyzer(notes):
        seen.extend(n.id for n in notes)
        return RAW_RESULT

    result = asyncio.run(session.analyze(analyzer))

    assert seen == ["n1", "n2"]
    assert len(result.critical_conflicts) == 2
    assert actions(session)[-2:] == ["ANALYSIS_STARTED", "ANALYSIS_SUCCESS"]


def test_analyze_failure_is_logged_and_raised():
    session = make_session()
    session.update_patient_details(PatientDetails(id="MRN-1", encounter_date="today"))
    session.add_note(make_note("n1"))
    session.add_note(make_note("n2"))

    async def analyzer(notes):
        raise RuntimeError("Service unavailable")

    with pytest.raises(RuntimeError):
        asyncio.run(session.analyze(analyzer))

    assert actions(session)[-1] == "ANALYSIS_FAILED"
    assert session.history[-1].details == "Service unavailable"
    assert session.result is None


def test_analysis_attempt_on_saved_session_marks_unsaved():
    session = populated_session()
    asyncio.run(session.save())
    assert not session.has_unsaved_changes

    async def analyzer(notes):
        raise RuntimeError("Service unavailable")

    with pytest.raises(RuntimeError):
        asyncio.run(session.analyze(analyzer))

    assert session.has_unsaved_changes
    assert actions(session)[-2:] == ["ANALYSIS_STARTED", "ANALYSIS_FAILED"]


def test_analyze_requires_patient_context_and_two_notes():
    session = make_session()
    session.add_note(make_note("n1"))
    session.add_note(make_note("n2"))

    with pytest.raises(ValidationError):
        asyncio.run(session.analyze(lambda notes: RAW_RESULT))

    session.update_patient_details(PatientDetails(id="MRN-1", encounter_date="today"))
    session.remove_note("n2")
    with pytest.raises(ValidationError):
        asyncio.run(session.analyze(lambda notes: RAW_RESULT))


# ========================
# Dispositions
# ========================

def test_resolve_via_listed_source():
    session = populated_session()

    flags = session.resolve("c1", "n2")

    assert flags["c1"].reason == DismissalReason.RESOLVED
    assert flags["c1"].resolution_source_id == "n2"
    assert flags["c1"].note == 'Resolved: User selected source "Cardiology Consult" as correct.'
    assert session.history[-1].details == "Reason: Resolved"


def test_resolve_unlisted_source_fails_and_leaves_flags():
    session = populated_session()
    before = session.dismissed_flags
    history_len = len(session.history)

    with pytest.raises(InvalidReference):
        session.resolve("c1", "n9")

    assert session.dismissed_flags == before
    assert len(session.history) == history_len


def test_dismiss_unknown_conflict_rejected():
    session = populated_session()
    with pytest.raises(ValidationError):
        session.dismiss(DismissalRecord(conflict_id="nope", reason=DismissalReason.OTHER, timestamp=1))
    with pytest.raises(ValidationError):
        session.dismiss(DismissalRecord(conflict_id="", reason=DismissalReason.OTHER, timestamp=1))


def test_dismiss_with_foreign_resolution_source_rejected():
    session = populated_session()
    record = DismissalRecord(conflict_id="c1", reason=DismissalReason.RESOLVED, timestamp=1,
                             resolution_source_id="n9")
    with pytest.raises(InvalidReference):
        session.dismiss(record)


def test_restore_and_partition():
    session = populated_session()
    session.dismiss(DismissalRecord(conflict_id="c1", reason=DismissalReason.FALSE_POSITIVE, timestamp=1))

    assert [c.id for c in session.active_conflicts()] == ["conflict-1"]
    assert [c.id for c in session.dismissed_conflicts()] == ["c1"]

    session.restore("c1")

    assert [c.id for c in session.active_conflicts()] == ["c1", "conflict-1"]
    assert actions(session)[-1] == "FLAG_RESTORED"


def test_restore_absent_does_not_log():
    session = populated_session()
    history_len = len(session.history)

    session.restore("c1")

    assert len(session.history) == history_len


def test_history_only_grows_across_operations():
    session = populated_session()
    lengths = [len(session.history)]
    session.resolve("c1", "n1")
    lengths.append(len(session.history))
    asyncio.run(session.save())
    lengths.append(len(session.history))
    session.restore("c1")
    lengths.append(len(session.history))

    assert lengths == sorted(lengths)
    assert len(set(lengths)) == len(lengths)


# ========================
# Source editing & export
# ========================

def test_commit_source_edit_applies_draft():
    session = populated_session()
    editor = session.open_source_editor("n1")
    editor.checkpoint("Aspirin 325 mg")

    session.commit_source_edit()

    assert session.notes[0].content == "Aspirin 325 mg"
    assert session.editor is None
    assert editor.closed


def test_opening_another_editor_closes_previous():
    session = populated_session()
    first = session.open_source_editor("n1")
    second = session.open_source_editor("n2")

    assert first.closed
    assert session.editor is second


def test_export_view_has_no_history():
    session = populated_session()
    session.resolve("c1", "n2")

    view = session.export_view()
    data = view.to_json()

    assert set(data) == {"patient", "notes", "result", "dismissedFlags"}
    assert data["dismissedFlags"]["c1"]["reason"] == "Resolved"


def test_demo_scenario_detaches_identity():
    session = populated_session()
    asyncio.run(session.save())

    session.load_demo_scenario()

    assert session.case_id is None
    assert session.status == SessionStatus.DIRTY
    assert [n.id for n in session.notes] == ["ED-1", "Scan-1", "Voice-1"]
    assert actions(session) == ["TEST_SCENARIO_LOADED"]
