"""Text-encoding pipeline for the gateway's single-byte response writer.

The response writer emits one byte per character. Mail-derived text is
therefore pre-encoded: forbidden control characters are dropped first, then
every code point above U+007F is replaced by its UTF-8 bytes, one character
per byte. Writing the result byte-for-byte yields valid UTF-8 on the wire.
"""

import re
from typing import Any

# C0 controls except TAB (0x09), LF (0x0a) and CR (0x0d), plus DEL.
_FORBIDDEN_CONTROLS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_NON_ASCII = re.compile(r"[^\x00-\x7f]")


def strip_control_chars(text: str) -> str:
    return _FORBIDDEN_CONTROLS.sub("", text)


def to_byte_chars(text: str) -> str:
    """Replace each non-ASCII code point with its UTF-8 bytes as characters.

    ``to_byte_chars(s).encode("latin-1") == s.encode("utf-8")`` for any ``s``
    without lone surrogates; a lone surrogate becomes its 3-byte form.
    """
    return _NON_ASCII.sub(
        lambda m: m.group().encode("utf-8", "surrogatepass").decode("latin-1"), text
    )


def sanitize_for_transport(text: str) -> str:
    """Run both pipeline stages, in the only order that keeps the output valid."""
    if not text:
        return text
    return to_byte_chars(strip_control_chars(text))


def sanitize_payload(value: Any) -> Any:
    """Apply ``sanitize_for_transport`` to every string inside a JSON-like value."""
    if isinstance(value, str):
        return sanitize_for_transport(value)
    if isinstance(value, dict):
        return {sanitize_for_transport(k): sanitize_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_payload(v) for v in value]
    return value
