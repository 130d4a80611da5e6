"""
Source adapter contract.

Every upstream (a results page fetched over HTTP, a page rendered in a
real browser, a JSON API, a static fallback) is wrapped in a
:class:`Source`.  The resolution policy only ever calls
:meth:`Source.fetch_group` and reads a couple of class attributes, so
new upstreams can be added without touching the fallback logic.

Adapters encode ordinary failures (blocked, not found, timeout) in the
returned :class:`~plateflow.normalize.schema.RawResponse` status and
raise only for errors they cannot describe.  The policy hands every call
a ``deadline`` on the :func:`time.monotonic` clock; adapters size their
own blocking steps from it with :func:`time_left`.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..normalize.schema import BLOCKED, NOT_FOUND, OK, TRANSPORT_ERROR, Query, RawResponse

# Browser-like request headers shared by the HTTP adapters.
BROWSER_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "es-CL,es;q=0.9,en;q=0.8",
}


def time_left(deadline: Optional[float], cap: float) -> float:
    """Seconds available before ``deadline``, never more than ``cap``."""
    if deadline is None:
        return cap
    return min(cap, deadline - time.monotonic())


class Source(ABC):
    """Abstract upstream data source.

    Attributes:
        name: Identifier used in priority lists and in ``resolvedBy``.
        page_scoped: ``True`` when the response does not depend on the
            requested group, so one fetch per query can serve them all.
        is_default: ``True`` for static fallbacks whose output does not
            count as a real resolution.
        holds_session: ``True`` when a call owns a resource (a browser)
            that must be released before the chain moves on, even after
            the call overran its deadline.
    """

    name: str = "source"
    page_scoped: bool = True
    is_default: bool = False
    holds_session: bool = False

    @abstractmethod
    def fetch_group(self, query: Query, group: str, deadline: Optional[float] = None) -> RawResponse:
        """Fetch raw content able to fill ``group`` for ``query``.

        ``deadline`` is a :func:`time.monotonic` instant after which the
        policy stops waiting; ``None`` means no limit beyond the
        adapter's own timeouts.
        """
        raise NotImplementedError

    def cache_key(self, query: Query, group: str) -> str:
        """Key under which a response can be reused within one query."""
        return "page" if self.page_scoped else group

    # Response helpers

    def ok(self, content: Any) -> RawResponse:
        return RawResponse(OK, self.name, content=content)

    def blocked(self, detail: Optional[str] = None) -> RawResponse:
        return RawResponse(BLOCKED, self.name, detail=detail)

    def not_found(self, detail: Optional[str] = None) -> RawResponse:
        return RawResponse(NOT_FOUND, self.name, detail=detail)

    def transport_error(self, detail: Optional[str] = None) -> RawResponse:
        return RawResponse(TRANSPORT_ERROR, self.name, detail=detail)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
