"""
Demo scenario - three sources with deliberate contradictions

Used by CaseSession.load_demo_scenario() and the console harness.
The aspirin dose, heparin plan and allergy status disagree across sources.
"""

from typing import Tuple

from handoff.contracts import Note, NoteStatus, NoteType, PatientDetails
from handoff.utils.helpers import now_ms

DEMO_PATIENT = PatientDetails(
    id="TEST-CASE-001",
    name="Alex Rivera",
    age="64M",
    location="ICU-4",
    encounter_date="Dec 08 2024",
)

_ED_TRIAGE = """Patient arrived with severe chest pain radiating to left arm.
History: HTN, HLD.
Home meds: Aspirin 81 mg daily, Lisinopril 10mg.
Allergies: NKDA.
BP 150/95, HR 94.
Plan: EKG, Troponin."""

_CARDIOLOGY_CONSULT = """Cardiology Consult
Impression: NSTEMI
Plan:
- Start Heparin drip
- Aspirin 325 mg CHEW NOW
- Admit to ICU
- Echo tomorrow
Note: Patient mentions rash with Penicillin previously?"""

_NURSE_HANDOFF = """Giving report on Alex Rivera in bed 4.
Vitals stable now. BP 130/85.
Meds given: Aspirin 81 mg per home med list.
Heparin started.
Family asking about diet, NPO for now.
Code Status: Full Code.
No known allergies listed in chart."""


def demo_notes() -> Tuple[Note, ...]:
    """Fresh demo notes, timestamped relative to now"""
    now = now_ms()
    return (
        Note(id="ED-1", type=NoteType.TEXT, label="ED Triage Note",
             timestamp=now - 10000000, status=NoteStatus.READY, content=_ED_TRIAGE),
        Note(id="Scan-1", type=NoteType.IMAGE, label="Cardiology Consult (Handwritten)",
             timestamp=now - 5000000, status=NoteStatus.READY, confidence=88,
             content=_CARDIOLOGY_CONSULT),
        Note(id="Voice-1", type=NoteType.AUDIO, label="Nurse Handoff (Voice)",
             timestamp=now, status=NoteStatus.READY, confidence=94, content=_NURSE_HANDOFF),
    )
