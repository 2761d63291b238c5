"""
Utility helpers for the handoff case layer

Simple utility functions for ID, timestamp and name generation.
"""

import time
import uuid
from typing import Optional


def generate_case_id(short=False):
    """
    Generate unique case identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Case ID

    Examples:
        >>> generate_case_id()
        '3f2b7c1e-9a4d-4b6e-8f0a-1c2d3e4f5a6b'

        >>> generate_case_id(short=True)
        'a3f7e2b9'
    """
    if short:
        return uuid.uuid4().hex[:8]
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds"""
    return int(time.time() * 1000)


def build_case_name(patient_id: str, encounter_date: Optional[str] = None) -> str:
    """
    Display name for a saved case

    Examples:
        >>> build_case_name("MRN-42", "Dec 08 2024")
        'Case: MRN-42 (Dec 08 2024)'

        >>> build_case_name("MRN-42")
        'Case: MRN-42 (No Date)'
    """
    return f"Case: {patient_id} ({encounter_date or 'No Date'})"
