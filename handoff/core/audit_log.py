"""
Audit Log - append-only trail of case-level actions

The stored sequence is chronological. Presentation layers that want
newest-first call newest_first(); the underlying order never changes.
There is no update or delete operation.
"""

import logging
from typing import Callable, Iterable, List, Optional, Tuple

from handoff.contracts import CaseHistoryEvent
from handoff.utils.helpers import now_ms

logger = logging.getLogger(__name__)


# Action tags written by CaseSession
NOTE_ADDED = "NOTE_ADDED"
NOTE_REMOVED = "NOTE_REMOVED"
NOTE_EDITED = "NOTE_EDITED"
NOTE_REORDERED = "NOTE_REORDERED"
PATIENT_DETAILS_UPDATED = "PATIENT_DETAILS_UPDATED"
ANALYSIS_STARTED = "ANALYSIS_STARTED"
ANALYSIS_SUCCESS = "ANALYSIS_SUCCESS"
ANALYSIS_FAILED = "ANALYSIS_FAILED"
FLAG_DISMISSED = "FLAG_DISMISSED"
FLAG_RESTORED = "FLAG_RESTORED"
CASE_CREATED = "CASE_CREATED"
CASE_UPDATED = "CASE_UPDATED"
CASE_LOADED = "CASE_LOADED"
STORAGE_DELETED = "STORAGE_DELETED"
TEST_SCENARIO_LOADED = "TEST_SCENARIO_LOADED"


class AuditLog:
    """Ordered, append-only sequence of CaseHistoryEvent"""

    def __init__(
        self,
        events: Optional[Iterable[CaseHistoryEvent]] = None,
        clock: Callable[[], int] = now_ms
    ):
        """
        Args:
            events: Existing chronological events (e.g. from a loaded case)
            clock: Returns epoch ms; injectable for tests
        """
        self._events: List[CaseHistoryEvent] = list(events or ())
        self._clock = clock

    def append(self, action: str, details: Optional[str] = None) -> CaseHistoryEvent:
        """
        Append an event stamped with the current time.

        Args:
            action: Action tag (e.g. NOTE_ADDED)
            details: Optional human-readable detail

        Returns:
            CaseHistoryEvent: The appended event
        """
        event = CaseHistoryEvent(timestamp=self._clock(), action=action, details=details)
        self._events.append(event)
        logger.debug(f"Audit: {action}{f' ({details})' if details else ''}")
        return event

    def events(self) -> Tuple[CaseHistoryEvent, ...]:
        """Chronological snapshot of the log"""
        return tuple(self._events)

    def newest_first(self) -> List[CaseHistoryEvent]:
        return list(reversed(self._events))

    def __len__(self) -> int:
        return len(self._events)
