"""
Content sanitization and validation heuristics.

Pure functions, no state. The case store passes every free-text field
through sanitize_input() before anything is written.

sanitize_input() HTML-entity encodes the five characters that matter for
markup injection. It decodes existing entities first, so text that was
already sanitized comes back unchanged:

    sanitize_input(sanitize_input(x)) == sanitize_input(x)
"""

import html

_ENTITY_MAP = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#039;"),
)


def sanitize_input(text: str) -> str:
    """
    Encode free text for safe storage and display.

    Args:
        text: Raw or previously sanitized text (None/empty allowed)

    Returns:
        str: Entity-encoded text ("" for empty input)

    Example:
        >>> sanitize_input("<script>alert('x')</script>")
        '&lt;script&gt;alert(&#039;x&#039;)&lt;/script&gt;'
    """
    if not text:
        return ""
    decoded = html.unescape(text)
    # '&' first so the entities produced below are not re-encoded
    for raw, entity in _ENTITY_MAP:
        decoded = decoded.replace(raw, entity)
    return decoded


def validate_clinical_content(text: str) -> bool:
    """
    Reject empty, trivially short, or non-alphabetic note content.

    Args:
        text: Candidate note content

    Returns:
        bool: True if the content looks like clinical text
    """
    if not text or not text.strip():
        return False
    if len(text.strip()) < 4:
        return False
    alpha_chars = [ch for ch in text if ch.isascii() and ch.isalpha()]
    return len(alpha_chars) >= 2
