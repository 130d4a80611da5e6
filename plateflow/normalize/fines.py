"""
Fine extraction and deduplication.

Fines pages list the same case more than once (a summary line, a
detail row, a data attribute) and sometimes only render a summary count
without the rows.  :func:`extract_fines` collects entries with two
strategies, keys them by case id, and reconciles the result with any
explicit "N fines found" hint on the page.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterator, Optional

from bs4 import BeautifulSoup, Tag

from .extractor import FieldExtractor
from .schema import FineEntry, FinesSummary
from .values import normalize, normalize_int

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "MULTA POR ROL/CAUSA"
DEFAULT_STATUS = "Pendiente"
NO_FINES_MESSAGE = "No se encontraron multas"

# Case identifiers as they appear in text or in data attributes.
TOKEN_RE = re.compile(
    r"ROL\s*/\s*CAUSA[:\s]+(\d+)|\brol[:\s]*[\"'](\d+)[\"']|\bcausa[:\s]*[\"'](\d+)[\"']",
    re.IGNORECASE,
)
BLOCK_CASE_RE = re.compile(r"\bROL(?:\s*/\s*CAUSA)?\s*:?\s*(\d{3,})", re.IGNORECASE)

COUNT_HINT_PATTERNS = (
    re.compile(r"(\d+)\s+multas?\s+encontradas?", re.IGNORECASE),
    re.compile(r"multas\s+encontradas\s*:?\s*(\d+)", re.IGNORECASE),
    re.compile(r"tiene\s*:?\s*(\d+)\s*multas?", re.IGNORECASE),
    re.compile(r"posee\s+(\d+)\s+multas?", re.IGNORECASE),
    re.compile(r"infracciones\s+encontradas\s*:?\s*(\d+)", re.IGNORECASE),
)

NO_FINES_PHRASES = (
    "no se encontraron multas",
    "sin multas",
    "no tiene multas",
    "no hay multas",
    "no posee multas",
    "sin infracciones",
    "no hay infracciones",
)

_BLOCK_TEXT_PATTERNS = {
    "commune": re.compile(r"\bcomuna\s*:?\s*([A-ZÁÉÍÓÚÑÜ ]+?)(?:\n|$)", re.IGNORECASE),
    "status": re.compile(r"\bestado\s*:?\s*([A-Za-záéíóúñü ]+?)(?:\n|$)", re.IGNORECASE),
    "year": re.compile(r"\baño\s*:?\s*(\d{4})", re.IGNORECASE),
    "type": re.compile(r"\btipo\s*:?\s*([^\n]+?)(?:\n|$)", re.IGNORECASE),
}


def _minimal_entry(case_id: str) -> FineEntry:
    return FineEntry(
        case_id=case_id,
        type=DEFAULT_TYPE,
        description=f"Multa por ROL/CAUSA {case_id}",
        status=DEFAULT_STATUS,
    )


def _scan_tokens(*haystacks: str) -> Iterator[str]:
    for haystack in haystacks:
        for match in TOKEN_RE.finditer(haystack):
            case_id = match.group(1) or match.group(2) or match.group(3)
            if case_id:
                yield case_id


def _is_fine_div(tag: Tag) -> bool:
    if tag.name != "div":
        return False
    return any("multa" in cls.lower() for cls in tag.get("class") or [])


def _fine_blocks(soup: BeautifulSoup) -> Iterator[Tag]:
    """Innermost ``div.multa*`` containers and table rows mentioning a ROL."""
    for div in soup.find_all(_is_fine_div):
        if div.find(_is_fine_div) is None:
            yield div
    for row in soup.find_all("tr"):
        if BLOCK_CASE_RE.search(row.get_text(" ")):
            yield row


def _block_field(extractor: FieldExtractor, text: str, key: str, *labels: str) -> Optional[str]:
    value = extractor.extract_first(*labels)
    if value is not None:
        return value
    match = _BLOCK_TEXT_PATTERNS[key].search(text)
    return normalize(match.group(1)) if match else None


def _entry_from_block(block: Tag) -> Optional[FineEntry]:
    html = str(block)
    text = block.get_text("\n")
    match = BLOCK_CASE_RE.search(block.get_text(" "))
    case_id = match.group(1) if match else next(_scan_tokens(html), None)
    if not case_id:
        return None
    extractor = FieldExtractor(html)
    year = _block_field(extractor, text, "year", "Año", "Ano")
    return FineEntry(
        case_id=case_id,
        type=_block_field(extractor, text, "type", "Tipo") or DEFAULT_TYPE,
        description=f"Multa por ROL/CAUSA {case_id}",
        status=_block_field(extractor, text, "status", "Estado") or DEFAULT_STATUS,
        commune=_block_field(extractor, text, "commune", "Comuna"),
        year=normalize_int(year),
    )


def count_hint(text: str) -> Optional[int]:
    """Return the explicit fine count stated on the page, if any."""
    for pattern in COUNT_HINT_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def summary_message(count: int) -> str:
    return f"Se encontraron {count} multa(s)" if count > 0 else NO_FINES_MESSAGE


def extract_fines(markup: str) -> FinesSummary:
    """Build a deduplicated :class:`FinesSummary` from a fines page.

    Detailed per-fine blocks take precedence over bare case-id tokens
    for the same case.  When the page states a larger count than the
    number of distinct entries found, ``count`` follows the page while
    ``entries`` only holds what was actually rendered.
    """
    soup = BeautifulSoup(markup or "", "html.parser")
    text = soup.get_text(" ")

    detailed: Dict[str, FineEntry] = {}
    for block in _fine_blocks(soup):
        entry = _entry_from_block(block)
        if entry is not None and entry.case_id not in detailed:
            detailed[entry.case_id] = entry

    entries: Dict[str, FineEntry] = {}
    for case_id in _scan_tokens(markup or "", text):
        if case_id not in entries:
            entries[case_id] = detailed.get(case_id) or _minimal_entry(case_id)
    for case_id, entry in detailed.items():
        entries.setdefault(case_id, entry)

    count = len(entries)
    hint = count_hint(text)
    if hint is not None and hint > count:
        logger.debug("fines hint %d exceeds %d distinct entries", hint, count)
        count = hint

    if count > 0:
        return FinesSummary(
            has_fines=True,
            count=count,
            entries=tuple(entries.values()),
            message=summary_message(count),
        )
    lowered = text.lower()
    if hint == 0 or any(phrase in lowered for phrase in NO_FINES_PHRASES):
        return FinesSummary(has_fines=False, count=0, entries=(), message=NO_FINES_MESSAGE)
    return FinesSummary()
