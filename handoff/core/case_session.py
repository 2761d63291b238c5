"""
Case Session - working set orchestration

Responsibilities:
- Own the in-memory working set: patient details, notes, latest analysis
  result, ConflictLedger, AuditLog
- Bind the working set to an optional persisted case identity
- Mediate save / load / delete / reset against the CaseStore
- Pair every working-set mutation with an audit event
- Own the (at most one) open SourceEditor

Lifecycle:
    NEW  --mutation-->  DIRTY  --save()-->  SAVED  --mutation-->  DIRTY
    any  --load()-->    SAVED
    any  --reset()-->   NEW
    SAVED/DIRTY --delete_case(bound id)--> DIRTY (identity unbound)

Design principles:
- Explicit owned object, no module-level state
- Mutations only through the methods below; callers get copies
- Store calls are the only suspension points (asyncio.to_thread around
  blocking file I/O); at most one save in flight, and no load, reset,
  demo or delete may run while it is pending
- A failed save never rolls back the working set
- Ledger and audit log are kept separate; this class is the only place
  that knows a dismissal must be logged
"""

import asyncio
import dataclasses
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from handoff import config
from handoff.contracts import (
    AnalysisResult,
    Case,
    Conflict,
    DismissalRecord,
    Note,
    PatientDetails,
)
from handoff.core import audit_log as actions
from handoff.core.analysis_result import normalize_analysis_result
from handoff.core.audit_log import AuditLog
from handoff.core.conflict_ledger import ConflictLedger
from handoff.core.edit_history import SourceEditor
from handoff.exceptions import (
    InvalidReference,
    SaveInProgressError,
    StorageError,
    ValidationError,
)
from handoff.persistence import CaseStore
from handoff.results import ExportView, SaveResult
from handoff.utils.demo_scenario import DEMO_PATIENT, demo_notes
from handoff.utils.helpers import build_case_name, generate_case_id, now_ms

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """
    Persistence status of the working set.

    NEW: no identity, no unsaved edits
    DIRTY: unsaved edits present (identity may or may not be bound)
    SAVED: identity bound, mirrors the persisted record
    """
    NEW = "new"
    DIRTY = "dirty"
    SAVED = "saved"


class CaseSession:
    """Working set for one case, optionally bound to a persisted record"""

    def __init__(
        self,
        store: CaseStore,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = generate_case_id,
        max_notes: Optional[int] = None,
        debounce_seconds: Optional[float] = None
    ):
        """
        Initialize an empty session.

        Args:
            store: CaseStore used for save / delete / listing
            clock: Returns epoch ms (audit events, case timestamp)
            id_factory: Generates a fresh case id on first save
            max_notes: Note limit (defaults to config.MAX_NOTES)
            debounce_seconds: Quiescence window for source editors
        """
        self.store = store
        self._clock = clock
        self._id_factory = id_factory
        self.max_notes = config.MAX_NOTES if max_notes is None else max_notes
        self.debounce_seconds = debounce_seconds

        self.cases: List[Case] = []
        self.editor: Optional[SourceEditor] = None
        self._save_in_flight = False
        self._clear_working_set()

        logger.info("Case session initialized")

    # ========================
    # Private Helpers
    # ========================

    def _clear_working_set(self) -> None:
        self.patient_details = PatientDetails()
        self.notes: Tuple[Note, ...] = ()
        self.result: Optional[AnalysisResult] = None
        self.ledger = ConflictLedger()
        self.audit = AuditLog(clock=self._clock)
        self.case_id: Optional[str] = None
        self.status = SessionStatus.NEW
        # Bumped on every mutation; lets save() detect edits made while it was suspended
        self._revision = 0

    def _touch(self, action: str, details: Optional[str] = None) -> None:
        """Record a mutation: DIRTY + audit event"""
        self._revision += 1
        self.status = SessionStatus.DIRTY
        self.audit.append(action, details)
        logger.debug(f"{action}: {details or ''}")

    def _invalidate_result(self) -> None:
        """Drop the analysis result; no conflicts remain, so no dispositions either"""
        if self.result is not None:
            logger.info("Analysis result invalidated by source change")
        self.result = None
        self.ledger.clear()

    def _find_note(self, note_id: str) -> Note:
        for note in self.notes:
            if note.id == note_id:
                return note
        raise ValidationError(f"Note {note_id} does not exist")

    def _find_conflict(self, conflict_id: str) -> Conflict:
        if not conflict_id:
            raise ValidationError("Conflict id must be non-empty")
        conflict = self.result.get_conflict(conflict_id) if self.result is not None else None
        if conflict is None:
            raise ValidationError(f"Conflict {conflict_id} is not in the current analysis result")
        return conflict

    def _check_no_save_in_flight(self) -> None:
        """Identity and working set must not be swapped while a save is suspended"""
        if self._save_in_flight:
            raise SaveInProgressError("A save is in progress for this case, try again when it completes")

    def _close_editor(self) -> None:
        if self.editor is not None:
            self.editor.close()
            self.editor = None

    # ========================
    # Queries
    # ========================

    @property
    def has_unsaved_changes(self) -> bool:
        return self.status == SessionStatus.DIRTY

    @property
    def dismissed_flags(self) -> Dict[str, DismissalRecord]:
        return self.ledger.records()

    @property
    def history(self):
        return self.audit.events()

    def active_conflicts(self) -> List[Conflict]:
        if self.result is None:
            return []
        return self.ledger.partition(self.result.critical_conflicts)[0]

    def dismissed_conflicts(self) -> List[Conflict]:
        if self.result is None:
            return []
        return self.ledger.partition(self.result.critical_conflicts)[1]

    def snapshot(self, case_id: str) -> Case:
        """
        Assemble a Case from the working set.

        Args:
            case_id: Identity to stamp on the snapshot

        Returns:
            Case: timestamp is now, history is the full audit log
        """
        return Case(
            id=case_id,
            name=build_case_name(self.patient_details.id, self.patient_details.encounter_date),
            patient_details=self.patient_details,
            notes=self.notes,
            result=self.result,
            dismissed_flags=self.ledger.records(),
            timestamp=self._clock(),
            history=self.audit.events(),
        )

    def export_view(self) -> ExportView:
        """Read-only view for report builders (no audit or edit history)"""
        return ExportView(
            result=self.result,
            notes=self.notes,
            dismissed_flags=self.ledger.records(),
            patient_details=self.patient_details,
        )

    # ========================
    # Patient Details & Notes
    # ========================

    def update_patient_details(self, details: PatientDetails) -> None:
        self.patient_details = details
        self._touch(actions.PATIENT_DETAILS_UPDATED)

    def add_note(self, note: Note) -> None:
        """
        Append an ingested note. Invalidates the analysis result.

        Raises:
            ValidationError: If the note limit is reached or the id is taken
        """
        if len(self.notes) >= self.max_notes:
            raise ValidationError(f"Note limit reached ({self.max_notes})")
        if any(n.id == note.id for n in self.notes):
            raise ValidationError(f"Note {note.id} already exists")

        self.notes = self.notes + (note,)
        self._invalidate_result()
        self._touch(actions.NOTE_ADDED, f"Type: {note.type.value}, Label: {note.label}")

    def remove_note(self, note_id: str) -> None:
        note = self._find_note(note_id)
        if self.editor is not None and self.editor.note_id == note_id:
            self._close_editor()

        self.notes = tuple(n for n in self.notes if n.id != note_id)
        self._invalidate_result()
        self._touch(actions.NOTE_REMOVED, f"Label: {note.label}")

    def edit_note_content(self, note_id: str, content: str) -> None:
        """
        Replace a note's content. Invalidates the analysis result.

        Raises:
            ValidationError: If note_id does not exist
        """
        self._find_note(note_id)
        self.notes = tuple(
            dataclasses.replace(n, content=content) if n.id == note_id else n
            for n in self.notes
        )
        self._invalidate_result()
        self._touch(actions.NOTE_EDITED, f"Modified content of note {note_id}")

    def move_note(self, note_id: str, target_note_id: str) -> None:
        """Move note_id to the position currently held by target_note_id"""
        if note_id == target_note_id:
            return
        note = self._find_note(note_id)
        self._find_note(target_note_id)

        reordered = [n for n in self.notes if n.id != note_id]
        target_index = next(i for i, n in enumerate(self.notes) if n.id == target_note_id)
        reordered.insert(target_index, note)
        self.notes = tuple(reordered)
        self._touch(actions.NOTE_REORDERED, f"Moved note {note_id}")

    # ========================
    # Source Editing
    # ========================

    def open_source_editor(self, note_id: str) -> SourceEditor:
        """
        Open a view/edit session for one note.

        Any editor already open is closed first, cancelling its pending
        history recording.
        """
        note = self._find_note(note_id)
        self._close_editor()
        self.editor = SourceEditor(note_id, note.content, self.debounce_seconds)
        return self.editor

    def close_source_editor(self) -> None:
        self._close_editor()

    def commit_source_edit(self) -> None:
        """
        Apply the open editor's draft to its note and close the editor.

        Raises:
            ValidationError: If no editor is open
        """
        if self.editor is None:
            raise ValidationError("No source editor is open")
        note_id, draft = self.editor.note_id, self.editor.draft
        self._close_editor()
        self.edit_note_content(note_id, draft)

    # ========================
    # Analysis
    # ========================

    def set_analysis_result(self, result: Union[AnalysisResult, Dict[str, Any]]) -> AnalysisResult:
        """
        Install a new analysis result.

        Raw dicts are normalized first. Dispositions for conflicts that are
        not in the new result are dropped.
        """
        if not isinstance(result, AnalysisResult):
            result = normalize_analysis_result(result)

        self.result = result
        self.ledger.prune(result.conflict_ids())
        self._touch(actions.ANALYSIS_SUCCESS, f"Conflicts: {len(result.critical_conflicts)}")
        return result

    async def analyze(self, analyzer: Callable[[List[Note]], Any]) -> AnalysisResult:
        """
        Run the external analysis collaborator over the current notes.

        Args:
            analyzer: Callable taking the list of notes and returning the raw
                result dict. Coroutine functions are awaited; plain callables
                run in a worker thread.

        Returns:
            AnalysisResult: The installed result

        Raises:
            ValidationError: If patient id / encounter date are missing or
                fewer than MIN_NOTES_FOR_ANALYSIS notes exist
            Exception: Whatever the analyzer raised (logged as ANALYSIS_FAILED)
        """
        if not self.patient_details.id.strip() or not self.patient_details.encounter_date.strip():
            raise ValidationError("Patient ID and Encounter Date are required before analysis")
        if len(self.notes) < config.MIN_NOTES_FOR_ANALYSIS:
            raise ValidationError(f"At least {config.MIN_NOTES_FOR_ANALYSIS} notes are required for analysis")

        self._touch(actions.ANALYSIS_STARTED)
        notes = list(self.notes)
        try:
            if inspect.iscoroutinefunction(analyzer):
                raw = await analyzer(notes)
            else:
                raw = await asyncio.to_thread(analyzer, notes)
            result = normalize_analysis_result(raw) if not isinstance(raw, AnalysisResult) else raw
        except Exception as e:
            logger.error(f"Analysis failed: {e}")
            self._touch(actions.ANALYSIS_FAILED, str(e))
            raise

        return self.set_analysis_result(result)

    # ========================
    # Conflict Dispositions
    # ========================

    def dismiss(self, record: DismissalRecord) -> Dict[str, DismissalRecord]:
        """
        Dismiss (or re-dismiss) a conflict of the current result.

        Raises:
            ValidationError: Empty or unknown conflict id
            InvalidReference: resolution_source_id not among the conflict's sources
        """
        conflict = self._find_conflict(record.conflict_id)
        if record.resolution_source_id is not None and record.resolution_source_id not in conflict.source_ids:
            raise InvalidReference(
                f"Source {record.resolution_source_id} is not among the sources of conflict {conflict.id}"
            )

        records = self.ledger.dismiss(record)
        self._touch(actions.FLAG_DISMISSED, f"Reason: {record.reason.value}")
        return records

    def resolve(self, conflict_id: str, resolution_source_id: str) -> Dict[str, DismissalRecord]:
        """
        Mark one of a conflict's sources as correct.

        Raises:
            ValidationError: Unknown conflict id
            InvalidReference: Source not among the conflict's sources (ledger unchanged)
        """
        conflict = self._find_conflict(conflict_id)
        label = next((n.label for n in self.notes if n.id == resolution_source_id), resolution_source_id)

        records = self.ledger.resolve(conflict, resolution_source_id, label, timestamp=self._clock())
        resolved = records[conflict_id]
        self._touch(actions.FLAG_DISMISSED, f"Reason: {resolved.reason.value}")
        return records

    def restore(self, conflict_id: str) -> Dict[str, DismissalRecord]:
        """Return a conflict to the active list. Unknown ids are a no-op."""
        if conflict_id not in self.ledger:
            return self.ledger.records()
        records = self.ledger.restore(conflict_id)
        self._touch(actions.FLAG_RESTORED)
        return records

    # ========================
    # Persistence
    # ========================

    async def save(self) -> SaveResult:
        """
        Persist the working set.

        Unbound sessions get a fresh id and are created; bound sessions are
        updated. The CASE_CREATED / CASE_UPDATED event is appended before the
        store call so it is part of the persisted snapshot. Identity is bound
        only after the store call succeeds.

        Returns:
            SaveResult

        Raises:
            SaveInProgressError: If another save is pending
            ValidationError: If the patient id is empty
            StorageError: If the store write failed (working set kept, still DIRTY)
        """
        self._check_no_save_in_flight()
        if not self.patient_details.id.strip():
            raise ValidationError("Please enter a Patient ID before saving")

        self._save_in_flight = True
        try:
            creating = self.case_id is None
            case_id = self.case_id or self._id_factory()
            self.audit.append(actions.CASE_CREATED if creating else actions.CASE_UPDATED, "Saved by user.")

            revision = self._revision
            case = self.snapshot(case_id)
            write = self.store.create if creating else self.store.update

            try:
                cases = await asyncio.to_thread(write, case)
            except StorageError as e:
                logger.error(f"Save failed for case {case_id}: {e}")
                self.status = SessionStatus.DIRTY
                raise

            if creating:
                self.case_id = case_id
            self.cases = cases
            # Edits made while the write was in flight are not in the snapshot
            self.status = SessionStatus.SAVED if self._revision == revision else SessionStatus.DIRTY

            logger.info(f"Case {case_id} {'created' if creating else 'updated'}")
            return SaveResult(case_id=case_id, created=creating, cases=tuple(cases))
        finally:
            self._save_in_flight = False

    def load(self, case: Case) -> None:
        """
        Replace the whole working set with a saved snapshot.

        The CASE_LOADED event is recorded locally; it is persisted with the
        next save.

        Raises:
            SaveInProgressError: If a save is pending
        """
        self._check_no_save_in_flight()
        self._close_editor()
        self.patient_details = case.patient_details
        self.notes = tuple(case.notes)
        self.result = case.result
        self.ledger = ConflictLedger(case.dismissed_flags)
        self.audit = AuditLog(case.history, clock=self._clock)
        self.case_id = case.id
        self.status = SessionStatus.SAVED
        self.audit.append(actions.CASE_LOADED, "Loaded from storage.")

        logger.info(f"Loaded case {case.id}: {case.name}")

    async def list_cases(self) -> List[Case]:
        """Refresh the known collection from the store"""
        self.cases = await asyncio.to_thread(self.store.load_all)
        return self.cases

    async def delete_case(self, case_id: str) -> List[Case]:
        """
        Permanently delete a saved case.

        Deleting the bound case keeps the working set live as an unsaved
        copy; the next save creates a new record with a new id.

        Raises:
            StorageError: If the store write failed
            SaveInProgressError: If a save is pending
        """
        self._check_no_save_in_flight()
        self.cases = await asyncio.to_thread(self.store.delete, case_id)

        if case_id == self.case_id:
            self.case_id = None
            self._touch(actions.STORAGE_DELETED, "Case deleted from DB but active in session.")
            logger.info(f"Bound case {case_id} deleted, working copy retained")

        return self.cases

    def reset(self) -> None:
        """Discard the working set and identity; back to NEW"""
        self._check_no_save_in_flight()
        self._close_editor()
        self._clear_working_set()
        logger.info("Session reset to new case")

    def load_demo_scenario(self) -> None:
        """Replace the working set with the demo sources, detached from storage"""
        self._check_no_save_in_flight()
        self._close_editor()
        self._clear_working_set()
        self.patient_details = DEMO_PATIENT
        self.notes = demo_notes()
        self._touch(actions.TEST_SCENARIO_LOADED)
