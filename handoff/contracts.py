"""
Semantic contracts for the handoff case layer.

This module defines immutable data structures shared between the ledger,
the audit log, the case store and the session. They define shape and
serialization only - validation lives with the components that own the
data (ConflictLedger, CaseSession).

Design principles:
- Frozen dataclasses (immutable after creation, edited via dataclasses.replace)
- Serializable to/from the persisted JSON shape (camelCase keys for case-level
  records, snake_case keys for the analysis result, as written by earlier
  versions of the application)
- Optional keys are omitted on output when unset, so a record read from disk
  serializes back to the same dict
- No dependencies on other modules

Contents:
- PatientDetails, Note: ingested sources and encounter context
- Conflict, MissingInfo, TimelineEvent, AnalysisResult: analysis output
- DismissalRecord: disposition of one conflict
- CaseHistoryEvent: one audit trail entry
- Case: one persisted snapshot

Usage:
    from handoff.contracts import Case, Note, DismissalRecord, DismissalReason
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class NoteType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class NoteStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class Severity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DismissalReason(str, Enum):
    """
    Why a conflict was taken off the active list.

    Values are the display labels, which is also how they are persisted.
    RESOLVED marks a conflict where the user picked one source as correct.
    """
    NOT_RELEVANT = "Not Clinically Relevant"
    FALSE_POSITIVE = "False Positive"
    ADDRESSED = "Already Addressed"
    DOC_ERROR = "Documentation Error"
    RESOLVED = "Resolved"
    OTHER = "Other"


def _put_optional(data: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        data[key] = value


def _text(value: Any) -> str:
    """Free-text field: None reads as empty, anything else as its string form"""
    return "" if value is None else str(value)


@dataclass(frozen=True)
class PatientDetails:
    """Encounter context entered by the clinician. Every field is free text."""
    id: str = ""
    name: str = ""
    age: str = ""
    location: str = ""
    encounter_date: str = ""

    FREE_TEXT_FIELDS = ("id", "name", "age", "location", "encounter_date")

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "location": self.location,
            "encounterDate": self.encounter_date,
        }

    @staticmethod
    def from_json(data: Optional[dict]) -> "PatientDetails":
        data = data or {}
        return PatientDetails(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            age=_text(data.get("age")),
            location=_text(data.get("location")),
            encounter_date=_text(data.get("encounterDate")),
        )


@dataclass(frozen=True)
class Note:
    """
    One ingested source (typed note, OCR'd image, or transcribed audio).

    Attributes:
        id: Immutable identifier, referenced by Conflict.source_ids
        type: NoteType
        content: Text content (raw or transcribed)
        label: Human-readable name shown in lists and resolution notes
        timestamp: Ingestion time, epoch milliseconds
        status: NoteStatus
        original_file: Base64 payload of the uploaded media, if any
        mime_type: MIME type of original_file
        confidence: OCR/transcription confidence 0-100
    """
    id: str
    type: NoteType
    content: str
    label: str
    timestamp: int
    status: NoteStatus = NoteStatus.READY
    original_file: Optional[str] = None
    mime_type: Optional[str] = None
    confidence: Optional[int] = None

    def to_json(self) -> dict:
        data = {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "label": self.label,
            "timestamp": self.timestamp,
            "status": self.status.value,
        }
        _put_optional(data, "originalFile", self.original_file)
        _put_optional(data, "mimeType", self.mime_type)
        _put_optional(data, "confidence", self.confidence)
        return data

    @staticmethod
    def from_json(data: dict) -> "Note":
        return Note(
            id=data["id"],
            type=NoteType(data.get("type", "text")),
            content=data.get("content", ""),
            label=data.get("label", ""),
            timestamp=data.get("timestamp", 0),
            status=NoteStatus(data.get("status", "ready")),
            original_file=data.get("originalFile"),
            mime_type=data.get("mimeType"),
            confidence=data.get("confidence"),
        )


@dataclass(frozen=True)
class Excerpt:
    source_id: str
    text: str


@dataclass(frozen=True)
class Conflict:
    """
    One AI-flagged contradiction among sources.

    Produced wholesale by the analysis collaborator and never mutated;
    dispositions are tracked separately by the ConflictLedger.
    """
    id: str
    description: str
    severity: Severity
    source_ids: Tuple[str, ...]
    reasoning: str = ""
    why_it_matters: str = ""
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    excerpts: Tuple[Excerpt, ...] = ()
    resolved_text: Optional[str] = None

    def to_json(self) -> dict:
        data = {
            "id": self.id,
            "description": self.description,
            "severity": self.severity.value,
            "source_ids": list(self.source_ids),
            "reasoning": self.reasoning,
            "why_it_matters": self.why_it_matters,
            "confidence": self.confidence.value,
            "excerpts": [{"source_id": e.source_id, "text": e.text} for e in self.excerpts],
        }
        _put_optional(data, "resolved_text", self.resolved_text)
        return data

    @staticmethod
    def from_json(data: dict) -> "Conflict":
        return Conflict(
            id=data.get("id", ""),
            description=data.get("description", ""),
            severity=Severity(data.get("severity", "LOW")),
            source_ids=tuple(data.get("source_ids") or ()),
            reasoning=data.get("reasoning", ""),
            why_it_matters=data.get("why_it_matters", ""),
            confidence=ConfidenceLevel(data.get("confidence", "MEDIUM")),
            excerpts=tuple(
                Excerpt(source_id=e.get("source_id", ""), text=e.get("text", ""))
                for e in data.get("excerpts") or ()
            ),
            resolved_text=data.get("resolved_text"),
        )


@dataclass(frozen=True)
class MissingInfo:
    """Information the analysis expected to find in the sources but did not"""
    id: str
    category: str
    description: str
    importance: Severity
    source_ids: Optional[Tuple[str, ...]] = None
    why_it_matters: Optional[str] = None
    suggested_questions: Optional[Tuple[str, ...]] = None

    def to_json(self) -> dict:
        data = {
            "id": self.id,
            "category": self.category,
            "description": self.description,
            "importance": self.importance.value,
        }
        if self.source_ids is not None:
            data["source_ids"] = list(self.source_ids)
        _put_optional(data, "why_it_matters", self.why_it_matters)
        if self.suggested_questions is not None:
            data["suggested_questions"] = list(self.suggested_questions)
        return data

    @staticmethod
    def from_json(data: dict) -> "MissingInfo":
        source_ids = data.get("source_ids")
        questions = data.get("suggested_questions")
        return MissingInfo(
            id=data.get("id", ""),
            category=data.get("category", "Other"),
            description=data.get("description", ""),
            importance=Severity(data.get("importance", "LOW")),
            source_ids=tuple(source_ids) if source_ids is not None else None,
            why_it_matters=data.get("why_it_matters"),
            suggested_questions=tuple(questions) if questions is not None else None,
        )


@dataclass(frozen=True)
class TimelineEvent:
    time: str
    description: str
    source_id: str
    is_conflict: bool = False
    severity: str = "NEUTRAL"  # HIGH | MEDIUM | LOW | NEUTRAL

    def to_json(self) -> dict:
        return {
            "time": self.time,
            "description": self.description,
            "source_id": self.source_id,
            "is_conflict": self.is_conflict,
            "severity": self.severity,
        }

    @staticmethod
    def from_json(data: dict) -> "TimelineEvent":
        return TimelineEvent(
            time=data.get("time", ""),
            description=data.get("description", ""),
            source_id=data.get("source_id", ""),
            is_conflict=bool(data.get("is_conflict", False)),
            severity=data.get("severity", "NEUTRAL"),
        )


@dataclass(frozen=True)
class AnalysisResult:
    """
    Output of one analysis run.

    summary_stats is stored for the persisted shape, but callers should
    build results through analysis_result.normalize_analysis_result(), which
    recomputes it from critical_conflicts.
    """
    critical_conflicts: Tuple[Conflict, ...] = ()
    potentially_missing_information: Tuple[MissingInfo, ...] = ()
    patient_trajectory_summary: str = ""
    summary_stats: Dict[str, int] = field(default_factory=lambda: {"high": 0, "medium": 0, "low": 0})
    timeline_events: Tuple[TimelineEvent, ...] = ()
    analysis_confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM

    def conflict_ids(self) -> set:
        return {c.id for c in self.critical_conflicts}

    def get_conflict(self, conflict_id: str) -> Optional[Conflict]:
        for conflict in self.critical_conflicts:
            if conflict.id == conflict_id:
                return conflict
        return None

    def to_json(self) -> dict:
        return {
            "critical_conflicts": [c.to_json() for c in self.critical_conflicts],
            "potentially_missing_information": [m.to_json() for m in self.potentially_missing_information],
            "patient_trajectory_summary": self.patient_trajectory_summary,
            "summary_stats": dict(self.summary_stats),
            "timeline_events": [t.to_json() for t in self.timeline_events],
            "analysis_confidence": self.analysis_confidence.value,
        }

    @staticmethod
    def from_json(data: dict) -> "AnalysisResult":
        stats = data.get("summary_stats") or {}
        return AnalysisResult(
            critical_conflicts=tuple(Conflict.from_json(c) for c in data.get("critical_conflicts") or ()),
            potentially_missing_information=tuple(
                MissingInfo.from_json(m) for m in data.get("potentially_missing_information") or ()
            ),
            patient_trajectory_summary=data.get("patient_trajectory_summary", ""),
            summary_stats={
                "high": stats.get("high", 0),
                "medium": stats.get("medium", 0),
                "low": stats.get("low", 0),
            },
            timeline_events=tuple(TimelineEvent.from_json(t) for t in data.get("timeline_events") or ()),
            analysis_confidence=ConfidenceLevel(data.get("analysis_confidence", "MEDIUM")),
        )


@dataclass(frozen=True)
class DismissalRecord:
    """
    Disposition of one conflict.

    Keyed 1:1 by conflict_id in the ledger. A new record for an existing
    key replaces the old one (edit semantics).

    Attributes:
        conflict_id: Conflict this record dispositions
        reason: DismissalReason
        timestamp: Epoch milliseconds
        custom_reason: Free text when reason is OTHER
        note: Clinician note, or the generated resolution note
        resolution_source_id: Note id chosen as correct (RESOLVED only)
    """
    conflict_id: str
    reason: DismissalReason
    timestamp: int
    custom_reason: Optional[str] = None
    note: Optional[str] = None
    resolution_source_id: Optional[str] = None

    def to_json(self) -> dict:
        data = {
            "conflictId": self.conflict_id,
            "reason": self.reason.value,
            "timestamp": self.timestamp,
        }
        _put_optional(data, "customReason", self.custom_reason)
        _put_optional(data, "note", self.note)
        _put_optional(data, "resolutionSourceId", self.resolution_source_id)
        return data

    @staticmethod
    def from_json(data: dict) -> "DismissalRecord":
        return DismissalRecord(
            conflict_id=data.get("conflictId", ""),
            reason=DismissalReason(data.get("reason", DismissalReason.OTHER.value)),
            timestamp=data.get("timestamp", 0),
            custom_reason=data.get("customReason"),
            note=data.get("note"),
            resolution_source_id=data.get("resolutionSourceId"),
        )


@dataclass(frozen=True)
class CaseHistoryEvent:
    """One audit trail entry. Never mutated once appended."""
    timestamp: int
    action: str
    details: Optional[str] = None

    def to_json(self) -> dict:
        data = {"timestamp": self.timestamp, "action": self.action}
        _put_optional(data, "details", self.details)
        return data

    @staticmethod
    def from_json(data: dict) -> "CaseHistoryEvent":
        return CaseHistoryEvent(
            timestamp=data.get("timestamp", 0),
            action=data.get("action", ""),
            details=data.get("details"),
        )


@dataclass(frozen=True)
class Case:
    """
    One persisted snapshot of a patient encounter.

    id is assigned once on first save and never reassigned. timestamp is the
    last-saved time (epoch ms), overwritten on every save. history is the
    chronological audit trail; a record without one reads as empty.
    """
    id: str
    name: str
    patient_details: PatientDetails
    notes: Tuple[Note, ...]
    result: Optional[AnalysisResult]
    dismissed_flags: Dict[str, DismissalRecord]
    timestamp: int
    history: Tuple[CaseHistoryEvent, ...] = ()

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "patientDetails": self.patient_details.to_json(),
            "notes": [n.to_json() for n in self.notes],
            "result": self.result.to_json() if self.result is not None else None,
            "dismissedFlags": {k: v.to_json() for k, v in self.dismissed_flags.items()},
            "timestamp": self.timestamp,
            "history": [e.to_json() for e in self.history],
        }

    @staticmethod
    def from_json(data: dict) -> "Case":
        result = data.get("result")
        return Case(
            id=data["id"],
            name=data.get("name", ""),
            patient_details=PatientDetails.from_json(data.get("patientDetails")),
            notes=tuple(Note.from_json(n) for n in data.get("notes") or ()),
            result=AnalysisResult.from_json(result) if result is not None else None,
            dismissed_flags={
                k: DismissalRecord.from_json(v) for k, v in (data.get("dismissedFlags") or {}).items()
            },
            timestamp=data.get("timestamp", 0),
            history=tuple(CaseHistoryEvent.from_json(e) for e in data.get("history") or ()),
        )
