"""
Value normalization.

Raw strings pulled out of upstream markup go through these helpers
before they reach a field group.  Placeholders and suspiciously long
captures become ``None`` so a group never carries a stand-in value.
"""

from __future__ import annotations

import html
import re
from typing import Any, Optional

PLACEHOLDERS = {"-", "--", "N/A"}
MAX_VALUE_LENGTH = 100

_WS_RE = re.compile(r"\s+")
_LEFTOVER_ENTITY_RE = re.compile(r"&(?:#\d+|#x[0-9a-f]+|[a-z]+);", re.I)
_DIGITS_RE = re.compile(r"\d+")

_TRUE_WORDS = {"si", "sí", "yes", "true", "1"}
_FALSE_WORDS = {"no", "false", "0"}


def normalize(raw: Any) -> Optional[str]:
    """Return a trimmed, entity-free string or ``None`` when absent.

    Entities are decoded, anything still looking like an entity after
    decoding (double escaped input) is dropped, and all whitespace runs,
    non-breaking spaces included, collapse to a single space.
    """
    if raw is None:
        return None
    text = html.unescape(str(raw))
    text = _LEFTOVER_ENTITY_RE.sub("", text)
    text = _WS_RE.sub(" ", text.replace("\xa0", " ")).strip()
    if not text or text in PLACEHOLDERS or text.upper() in PLACEHOLDERS:
        return None
    if len(text) > MAX_VALUE_LENGTH:
        return None
    return text


def normalize_int(raw: Any) -> Optional[int]:
    """Parse the first run of digits; non-numeric input is ``None``, not 0."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    text = normalize(raw)
    if text is None:
        return None
    match = _DIGITS_RE.search(text)
    return int(match.group(0)) if match else None


def normalize_bool(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    text = normalize(raw)
    if text is None:
        return None
    word = text.lower().rstrip(".")
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return None
