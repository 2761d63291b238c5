"""
Saved case search and listing helpers.

Pure filters over a loaded case collection. Dates are ISO 'YYYY-MM-DD'
strings as entered in the search form; the end date is inclusive (the
whole day counts).
"""

import html
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from handoff.contracts import Case
from handoff.core.analysis_result import active_severity_counts

DAY_MS = 86400000


def _date_to_ms(value: str) -> int:
    parsed = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _matches_term(case: Case, needle: str) -> bool:
    # Stored text is entity-encoded; match against what the user typed
    name = html.unescape(case.name).lower()
    patient_id = html.unescape(case.patient_details.id).lower()
    return needle in name or needle in patient_id


def filter_cases(
    cases: Iterable[Case],
    term: str = "",
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    min_sources: Optional[int] = None
) -> List[Case]:
    """
    Filter saved cases for the case list.

    Args:
        cases: Loaded collection
        term: Case-insensitive substring of the case name or patient id
        start_date: Only cases saved on or after this day
        end_date: Only cases saved on or before the end of this day
        min_sources: Only cases with at least this many notes

    Returns:
        list: Matching cases, original order preserved

    Raises:
        ValueError: If a date is not in YYYY-MM-DD form
    """
    needle = (term or "").lower()
    start_ms = _date_to_ms(start_date) if start_date else None
    end_ms = _date_to_ms(end_date) + DAY_MS if end_date else None

    matches = []
    for case in cases:
        if needle and not _matches_term(case, needle):
            continue
        if start_ms is not None and case.timestamp < start_ms:
            continue
        if end_ms is not None and case.timestamp > end_ms:
            continue
        if min_sources is not None and len(case.notes) < min_sources:
            continue
        matches.append(case)
    return matches


def active_risk_counts(case: Case) -> Dict[str, int]:
    """Severity counts over the case's conflicts that are still active"""
    if case.result is None:
        return {"high": 0, "medium": 0, "low": 0}
    return active_severity_counts(case.result.critical_conflicts, case.dismissed_flags)


def case_summary(case: Case) -> dict:
    """Compact listing row for a saved case"""
    return {
        "id": case.id,
        "name": case.name,
        "patient_id": case.patient_details.id,
        "timestamp": case.timestamp,
        "sources": len(case.notes),
        "risk": active_risk_counts(case),
    }
