"""
Label based field extraction from loosely structured markup.

Upstream result pages render the same data in different shapes: bold
labels in two-cell table rows, plain rows, ``<dt>/<dd>`` style pairs,
elements whose id names the field, or just ``Label: value`` text.  A
:class:`FieldExtractor` parses the markup once with BeautifulSoup and
runs an ordered list of matchers for each label.  The first matcher
producing a usable value wins, so structurally specific matchers are
trusted before the loose text matcher can pick up something unrelated
elsewhere on the page.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterator, Optional, Sequence

from bs4 import BeautifulSoup, NavigableString, Tag

from .values import normalize

logger = logging.getLogger(__name__)

LABEL_TAGS = ["b", "strong", "label"]

Matcher = Callable[["FieldExtractor", str], Iterator[str]]


def _canon(text: str) -> str:
    """Lowercase, collapse whitespace and drop a trailing colon."""
    return re.sub(r"\s+", " ", text.replace("\xa0", " ")).strip().rstrip(":").strip().lower()


def _cell_pairs(soup: BeautifulSoup) -> Iterator[tuple[Tag, Tag]]:
    """Yield (label cell, value cell) pairs of adjacent cells in every row."""
    for row in soup.find_all("tr"):
        cells = row.find_all(["td", "th"], recursive=False)
        for label_cell, value_cell in zip(cells, cells[1:]):
            if value_cell.name == "td":
                yield label_cell, value_cell


def match_bold_row(extractor: "FieldExtractor", label: str) -> Iterator[str]:
    """``<td><b>Label</b></td><td>value</td>`` (also ``<th>Label</th>``)."""
    key = _canon(label)
    for label_cell, value_cell in _cell_pairs(extractor.soup):
        styled = label_cell.find_all(LABEL_TAGS)
        if label_cell.name == "th":
            styled = styled + [label_cell]
        if any(_canon(el.get_text(" ")) == key for el in styled):
            yield value_cell.get_text(" ", strip=True)


def match_plain_row(extractor: "FieldExtractor", label: str) -> Iterator[str]:
    """``<td>Label</td><td>value</td>``."""
    key = _canon(label)
    for label_cell, value_cell in _cell_pairs(extractor.soup):
        if _canon(label_cell.get_text(" ")) == key:
            yield value_cell.get_text(" ", strip=True)


def match_sibling(extractor: "FieldExtractor", label: str) -> Iterator[str]:
    """A label element followed by a sibling holding the value."""
    key = _canon(label)
    for string in extractor.soup.find_all(string=lambda s: _canon(s) == key):
        parent = string.parent
        if parent is None or parent.name in ("td", "th", "script", "style"):
            continue
        for sibling in parent.next_siblings:
            if isinstance(sibling, NavigableString):
                text = sibling.strip().lstrip(":").strip()
                if text:
                    yield text
                    break
            elif isinstance(sibling, Tag):
                yield sibling.get_text(" ", strip=True)
                break


def match_id_attribute(extractor: "FieldExtractor", label: str) -> Iterator[str]:
    """An element whose ``id`` contains the label as a lowercase fragment."""
    fragment = re.sub(r"\s+", "", label.lower())
    if not fragment:
        return
    for element in extractor.soup.find_all(id=lambda v: bool(v) and fragment in v.lower()):
        yield element.get_text(" ", strip=True)


def match_inline(extractor: "FieldExtractor", label: str) -> Iterator[str]:
    """Loose ``Label: value`` text, optionally with the label wrapped in a tag."""
    pattern = re.compile(
        r"(?<![\w])" + re.escape(label) + r"\s*(?:</[a-z0-9]+>)?\s*:\s*([^<\n]+)",
        re.IGNORECASE,
    )
    for match in pattern.finditer(extractor.markup):
        yield match.group(1)


DEFAULT_MATCHERS: Sequence[Matcher] = (
    match_bold_row,
    match_plain_row,
    match_sibling,
    match_id_attribute,
    match_inline,
)


class FieldExtractor:
    """Extract labelled values from one markup document.

    Args:
        markup: Raw HTML (or text) of a result page.
        matchers: Ordered matcher callables; defaults to
            :data:`DEFAULT_MATCHERS`.
    """

    def __init__(self, markup: str, matchers: Optional[Sequence[Matcher]] = None) -> None:
        self.markup = markup or ""
        self.soup = BeautifulSoup(self.markup, "html.parser")
        self.matchers = tuple(matchers) if matchers is not None else tuple(DEFAULT_MATCHERS)

    def extract(self, label: str) -> Optional[str]:
        for matcher in self.matchers:
            for candidate in matcher(self, label):
                value = normalize(candidate)
                if value is not None:
                    logger.debug("%s matched %r -> %r", matcher.__name__, label, value)
                    return value
        return None

    def extract_first(self, *labels: str) -> Optional[str]:
        """Try alternative spellings of a label in order."""
        for label in labels:
            value = self.extract(label)
            if value is not None:
                return value
        return None


def extract(markup: str, label: str) -> Optional[str]:
    """Return the best value for ``label`` in ``markup`` or ``None``."""
    return FieldExtractor(markup).extract(label)


def extract_first(markup: str, *labels: str) -> Optional[str]:
    return FieldExtractor(markup).extract_first(*labels)
