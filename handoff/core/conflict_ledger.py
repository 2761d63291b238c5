"""
Conflict Ledger - per-conflict disposition tracking

Responsibilities:
- Own the conflictId -> DismissalRecord mapping for the case in memory
- Dismiss (insert or overwrite), restore (remove), resolve (dismiss as RESOLVED)
- Partition conflicts into active / dismissed for display
- Drop dispositions whose conflict is no longer in the current result

Design principles:
- Dumb container with validation at the door: malformed records are
  rejected before the mapping is touched
- No logging of case-level actions - the caller pairs every mutation with
  an AuditLog entry (CaseSession does this)
- "Resolved" is derived state: a dismissal whose reason is RESOLVED.
  The resolution note is produced by a pure function, not stored twice
- A conflict absent from the mapping is active
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from handoff.contracts import Conflict, DismissalReason, DismissalRecord
from handoff.exceptions import InvalidReference, ValidationError
from handoff.utils.helpers import now_ms

logger = logging.getLogger(__name__)


def resolution_note(source_label: str) -> str:
    """
    Note text recorded when a source is marked as the correct one.

    Args:
        source_label: Label of the chosen note

    Returns:
        str: Generated note crediting the chosen source
    """
    return f'Resolved: User selected source "{source_label}" as correct.'


class ConflictLedger:
    """Tracks dismissed / resolved conflicts, keyed by conflict id"""

    def __init__(self, records: Optional[Dict[str, DismissalRecord]] = None):
        """
        Initialize ledger

        Args:
            records: Existing mapping (e.g. from a loaded case). Copied.
        """
        self._records: Dict[str, DismissalRecord] = dict(records or {})

    # ========================
    # Mutations
    # ========================

    def dismiss(self, record: DismissalRecord) -> Dict[str, DismissalRecord]:
        """
        Insert or overwrite the disposition for record.conflict_id.

        Args:
            record: DismissalRecord to store

        Returns:
            dict: Copy of the updated mapping

        Raises:
            ValidationError: If record.conflict_id is empty
        """
        if not record.conflict_id or not record.conflict_id.strip():
            raise ValidationError("Dismissal record requires a conflict id")

        replaced = record.conflict_id in self._records
        self._records[record.conflict_id] = record

        logger.debug(
            f"Conflict {record.conflict_id} {'re-dismissed' if replaced else 'dismissed'}: "
            f"{record.reason.value}"
        )
        return self.records()

    def dismiss_conflict(
        self,
        conflict: Conflict,
        reason: DismissalReason,
        note: Optional[str] = None,
        custom_reason: Optional[str] = None,
        resolution_source_id: Optional[str] = None,
        timestamp: Optional[int] = None
    ) -> Dict[str, DismissalRecord]:
        """
        Build and store a dismissal for a known conflict.

        resolution_source_id, when given, must be one of conflict.source_ids.

        Raises:
            InvalidReference: If resolution_source_id is not a source of the conflict
            ValidationError: If the conflict has no id
        """
        if resolution_source_id is not None and resolution_source_id not in conflict.source_ids:
            raise InvalidReference(
                f"Source {resolution_source_id} is not among the sources of conflict {conflict.id}"
            )

        record = DismissalRecord(
            conflict_id=conflict.id,
            reason=reason,
            timestamp=timestamp if timestamp is not None else now_ms(),
            custom_reason=custom_reason,
            note=note,
            resolution_source_id=resolution_source_id,
        )
        return self.dismiss(record)

    def resolve(
        self,
        conflict: Conflict,
        resolution_source_id: str,
        source_label: str,
        timestamp: Optional[int] = None
    ) -> Dict[str, DismissalRecord]:
        """
        Mark one of the conflict's sources as correct.

        Sugar for dismiss with reason=RESOLVED, a generated note crediting
        the chosen source, and resolution_source_id set.

        Args:
            conflict: Conflict being resolved
            resolution_source_id: Note id the user picked as correct
            source_label: Label of that note (for the generated note)
            timestamp: Optional epoch ms (defaults to now)

        Returns:
            dict: Copy of the updated mapping

        Raises:
            InvalidReference: If resolution_source_id is not among conflict.source_ids.
                The mapping is left unchanged.
        """
        if not resolution_source_id:
            raise InvalidReference(f"Resolution of conflict {conflict.id} requires a source id")

        return self.dismiss_conflict(
            conflict,
            reason=DismissalReason.RESOLVED,
            note=resolution_note(source_label),
            resolution_source_id=resolution_source_id,
            timestamp=timestamp,
        )

    def restore(self, conflict_id: str) -> Dict[str, DismissalRecord]:
        """
        Return a conflict to the active list.

        Absent ids are a no-op, not an error.
        """
        if self._records.pop(conflict_id, None) is not None:
            logger.debug(f"Conflict {conflict_id} restored")
        return self.records()

    def prune(self, valid_conflict_ids: Iterable[str]) -> List[str]:
        """
        Drop dispositions whose conflict is not in the current result.

        Args:
            valid_conflict_ids: Conflict ids of the current analysis result

        Returns:
            list: Conflict ids that were dropped
        """
        valid = set(valid_conflict_ids)
        dropped = [cid for cid in self._records if cid not in valid]
        for cid in dropped:
            del self._records[cid]

        if dropped:
            logger.info(f"Pruned {len(dropped)} stale dispositions: {dropped}")
        return dropped

    def clear(self) -> None:
        self._records.clear()

    # ========================
    # Queries
    # ========================

    def records(self) -> Dict[str, DismissalRecord]:
        """Copy of the conflictId -> DismissalRecord mapping"""
        return dict(self._records)

    def get(self, conflict_id: str) -> Optional[DismissalRecord]:
        return self._records.get(conflict_id)

    def is_dismissed(self, conflict_id: str) -> bool:
        return conflict_id in self._records

    def is_resolved(self, conflict_id: str) -> bool:
        record = self._records.get(conflict_id)
        return record is not None and record.reason == DismissalReason.RESOLVED

    def partition(self, conflicts: Iterable[Conflict]) -> Tuple[List[Conflict], List[Conflict]]:
        """
        Split conflicts into (active, dismissed), preserving order.

        Resolved conflicts are in the dismissed list; use is_resolved()
        to tell them apart for display.
        """
        active, dismissed = [], []
        for conflict in conflicts:
            (dismissed if conflict.id in self._records else active).append(conflict)
        return active, dismissed

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, conflict_id: str) -> bool:
        return conflict_id in self._records
