"""
Analysis result boundary - normalization of collaborator output

Responsibilities:
- Accept the raw dict returned by the analysis collaborator
- Assign fallback ids to list items missing one
- Recompute severity counts from the conflict list
- Build the typed AnalysisResult consumed by the ledger and session

Design principles:
- The collaborator's output is treated as already validated
- Counts embedded by the collaborator are never trusted
- Pure functions (no side effects beyond logging)
"""

import copy
import dataclasses
import logging
from typing import Any, Dict, Iterable, Mapping

from handoff.contracts import AnalysisResult, Conflict, DismissalRecord

logger = logging.getLogger(__name__)


def severity_counts(conflicts: Iterable[Conflict]) -> Dict[str, int]:
    """
    Count conflicts per severity.

    Returns:
        dict: {'high': n, 'medium': n, 'low': n}
    """
    counts = {"high": 0, "medium": 0, "low": 0}
    for conflict in conflicts:
        counts[conflict.severity.value.lower()] += 1
    return counts


def active_severity_counts(
    conflicts: Iterable[Conflict],
    dismissed_flags: Mapping[str, DismissalRecord]
) -> Dict[str, int]:
    """Severity counts over conflicts that have no disposition"""
    return severity_counts(c for c in conflicts if c.id not in dismissed_flags)


def normalize_analysis_result(raw: Dict[str, Any]) -> AnalysisResult:
    """
    Build an AnalysisResult from collaborator output.

    Items of critical_conflicts without an id get 'conflict-<index>';
    items of potentially_missing_information get 'missing-<index>'.
    summary_stats is always recomputed from critical_conflicts.

    Args:
        raw: Parsed JSON returned by the analysis collaborator

    Returns:
        AnalysisResult

    Raises:
        ValueError: If raw is not a dict
    """
    if not isinstance(raw, dict):
        raise ValueError(f"analysis result must be dict, got {type(raw).__name__}")

    data = copy.deepcopy(raw)

    conflicts = data.get("critical_conflicts") or []
    for index, conflict in enumerate(conflicts):
        if not conflict.get("id"):
            conflict["id"] = f"conflict-{index}"

    missing = data.get("potentially_missing_information") or []
    for index, item in enumerate(missing):
        if not item.get("id"):
            item["id"] = f"missing-{index}"

    data["critical_conflicts"] = conflicts
    data["potentially_missing_information"] = missing

    # Embedded counts are discarded before parsing
    data.pop("summary_stats", None)
    result = AnalysisResult.from_json(data)
    stats = severity_counts(result.critical_conflicts)

    logger.info(
        f"Analysis result normalized: {len(result.critical_conflicts)} conflicts "
        f"(high={stats['high']}, medium={stats['medium']}, low={stats['low']}), "
        f"{len(result.potentially_missing_information)} missing items"
    )

    return dataclasses.replace(result, summary_stats=stats)
