"""Static fallback source."""

from __future__ import annotations

from typing import Optional

from ..normalize.schema import Query, RawResponse
from .base import Source

UNKNOWN_OWNER = "Propietario no disponible"


class StaticDefaultSource(Source):
    """Answers every owner lookup with a fixed "unknown" owner.

    It sits last in the owner chain so callers always see an owner
    group.  Because ``is_default`` is set, a record filled only from
    here is still reported as a failed resolution.
    """

    name = "default"
    page_scoped = False
    is_default = True

    def __init__(self, label: str = UNKNOWN_OWNER) -> None:
        self.label = label

    def fetch_group(self, query: Query, group: str, deadline: Optional[float] = None) -> RawResponse:
        if group != "owner":
            return self.not_found(f"no default for {group}")
        return self.ok({"owner": {"fullName": self.label}})
