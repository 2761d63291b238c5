"""
Result types returned by CaseSession operations.

These are the read-only values handed to callers outside the session
(web layer, console harness, export collaborators).
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from handoff.contracts import AnalysisResult, Case, DismissalRecord, Note, PatientDetails


@dataclass(frozen=True)
class SaveResult:
    """
    Outcome of a successful save.

    Attributes:
        case_id: Durable identity the session is now bound to
        created: True if a new record was created, False if updated
        cases: Refreshed collection, newest first
    """
    case_id: str
    created: bool
    cases: Tuple[Case, ...]


@dataclass(frozen=True)
class ExportView:
    """
    Read-only view consumed by report builders (PDF / JSON).

    Dismissal state is already merged in. Audit history and edit history
    are deliberately absent.
    """
    result: Optional[AnalysisResult]
    notes: Tuple[Note, ...]
    dismissed_flags: Dict[str, DismissalRecord]
    patient_details: PatientDetails

    def to_json(self) -> dict:
        return {
            "patient": self.patient_details.to_json(),
            "notes": [n.to_json() for n in self.notes],
            "result": self.result.to_json() if self.result is not None else None,
            "dismissedFlags": {k: v.to_json() for k, v in self.dismissed_flags.items()},
        }
