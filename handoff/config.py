"""
Runtime configuration for the handoff case layer.

Values are module constants, overridable through environment variables.
Constructors that consume them also accept explicit arguments, so tests
never need to touch the environment.
"""

import os
from pathlib import Path

# Directory holding the local case database file(s)
DATA_DIR = Path(os.environ.get("HANDOFF_DATA_DIR", "outputs/cases"))

# One serialized collection lives under this key
STORAGE_KEY = os.environ.get("HANDOFF_STORAGE_KEY", "handoff_cases_secure_db")

# Quiescence window before an edit is committed to the undo history
HISTORY_DEBOUNCE_SECONDS = float(os.environ.get("HANDOFF_HISTORY_DEBOUNCE_SECONDS", "0.8"))

# Maximum number of source notes per case
MAX_NOTES = int(os.environ.get("HANDOFF_MAX_NOTES", "10"))

# Minimum number of notes before an analysis can run
MIN_NOTES_FOR_ANALYSIS = 2
