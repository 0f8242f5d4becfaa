"""
Helpers for putting untrusted values into log lines.
"""

import re
from typing import Any

_CONTROL_CHARS_RE = re.compile(r'[\x00-\x1f\x7f-\x9f]')
# Matches Unicode line separators (LINE SEPARATOR and PARAGRAPH SEPARATOR)
_UNICODE_NEWLINES_RE = re.compile(r'[\u2028\u2029]')
# Matches explicit CR, LF, and CRLF for maximal coverage
_STANDARD_NEWLINES_RE = re.compile(r'(\r\n|\r|\n)')

# Server replies and search queries can be long; keep log lines readable.
DEFAULT_PREVIEW_CHARS = 120


def sanitize_for_logging(value: Any) -> str:
    """
    Sanitize a value for safe logging by removing ALL newlines (including Unicode and CRLF)
    and control characters, to defend against log injection.

    Search queries, material identifiers and server error messages all end up in
    log lines, and any of them may carry text typed by a learner.

    Args:
        value: Any value to sanitize. If not a string, it will be converted
               to string representation first.

    Returns:
        str: Sanitized string with all control and newline characters removed.

    Examples:
        >>> sanitize_for_logging("Hello\\nWorld")
        'HelloWorld'
        >>> sanitize_for_logging("Test\\x1b[31mRed\\x1b[0m")
        'Test[31mRed[0m'
        >>> sanitize_for_logging("A\u2028B\u2029C")
        'ABC'
        >>> sanitize_for_logging(123)
        '123'
    """
    if value is None:
        return ''
    if not isinstance(value, str):
        value = str(value)
    value = _CONTROL_CHARS_RE.sub('', value)
    value = _UNICODE_NEWLINES_RE.sub('', value)
    value = _STANDARD_NEWLINES_RE.sub('', value)
    return value


def preview_for_logging(value: Any, limit: int = DEFAULT_PREVIEW_CHARS) -> str:
    """Sanitize and truncate a value, marking the cut with an ellipsis.

    Examples:
        >>> preview_for_logging("abcdef", limit=3)
        'abc...'
        >>> preview_for_logging("line1\\nline2")
        'line1line2'
    """
    text = sanitize_for_logging(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text
