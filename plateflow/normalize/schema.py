"""
Canonical data model for resolved vehicle records.

Every field group is an immutable dataclass.  The resolution policy
builds the groups independently and assembles a single
:class:`VehicleRecord` once all groups are settled; nothing is mutated
after that.  ``to_dict`` methods emit the camelCase JSON shape served to
callers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Tuple, Union

from ..errors import InputInvalid

# RawResponse.status values
OK = "ok"
BLOCKED = "blocked"
NOT_FOUND = "not_found"
TRANSPORT_ERROR = "transport_error"

# Query.kind values, mapped to the search tab each upstream expects.
QUERY_KINDS = {
    "vehicle": "vehiculo",
    "motorcycle": "moto",
    "owner_id": "rut",
    "chassis": "vin",
}

GROUPS = (
    "owner",
    "vehicle",
    "fines",
    "technical_inspection",
    "circulation_permit",
    "insurance",
    "public_transport",
    "traffic_restriction",
    "toll",
)

_PLATE_RE = re.compile(r"^[A-Z0-9][A-Z0-9-]{3,9}$")
_NATIONAL_ID_RE = re.compile(r"^\d{7,8}-?[\dK]$")
_CHASSIS_RE = re.compile(r"^[A-Z0-9]{5,17}$")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _group_dict(group: Any) -> Dict[str, Any]:
    return {_camel(f.name): getattr(group, f.name) for f in fields(group)}


@dataclass(frozen=True)
class Query:
    """A normalized lookup request."""

    plate: str
    kind: str = "vehicle"
    national_id: Optional[str] = None

    @classmethod
    def parse(cls, plate: Optional[str], kind: Optional[str] = None) -> "Query":
        """Trim and uppercase ``plate`` and validate it against ``kind``.

        Raises:
            InputInvalid: when the plate is missing, the kind unknown or
                the identifier does not look like the requested kind.
        """
        kind = (kind or "vehicle").strip().lower()
        if kind not in QUERY_KINDS:
            raise InputInvalid(f"unknown query type: {kind!r}", plate)
        if plate is None or not str(plate).strip():
            raise InputInvalid("plate is required", plate)
        value = str(plate).strip().upper()
        if kind == "owner_id":
            valid = bool(_NATIONAL_ID_RE.match(value.replace(".", "")))
        elif kind == "chassis":
            valid = bool(_CHASSIS_RE.match(value))
        else:
            valid = bool(_PLATE_RE.match(value))
        if not valid:
            raise InputInvalid(f"malformed {kind} identifier: {value!r}", value)
        national_id = value.replace(".", "") if kind == "owner_id" else None
        return cls(plate=value, kind=kind, national_id=national_id)

    @property
    def search_tab(self) -> str:
        return QUERY_KINDS[self.kind]


@dataclass(frozen=True)
class RawResponse:
    """What a source adapter returns for one call."""

    status: str
    source: str
    content: Union[str, Dict[str, Any], None] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OK

    @property
    def is_structured(self) -> bool:
        return isinstance(self.content, dict)


@dataclass(frozen=True)
class Owner:
    national_id: Optional[str] = None
    full_name: Optional[str] = None

    def is_empty(self) -> bool:
        return self.national_id is None and self.full_name is None

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class Vehicle:
    plate: str
    category: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    engine_number: Optional[str] = None
    chassis_number: Optional[str] = None
    origin: Optional[str] = None
    manufacturer: Optional[str] = None
    seal_type: Optional[str] = None
    fuel_type: Optional[str] = None

    def is_empty(self) -> bool:
        # The plate alone is always known, so it does not count as data.
        return all(
            getattr(self, f.name) is None for f in fields(self) if f.name != "plate"
        )

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class FineEntry:
    """One fine; ``case_id`` is the deduplication key."""

    case_id: str
    type: str = "MULTA POR ROL/CAUSA"
    description: str = ""
    status: str = "Pendiente"
    commune: Optional[str] = None
    year: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class FinesSummary:
    has_fines: bool = False
    count: int = 0
    entries: Tuple[FineEntry, ...] = ()
    message: Optional[str] = None

    def is_empty(self) -> bool:
        # No entries, no count and no explicit message means the page
        # carried no fines information at all.
        return not self.entries and self.count == 0 and self.message is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasFines": self.has_fines,
            "count": self.count,
            "entries": [entry.to_dict() for entry in self.entries],
            "message": self.message,
        }


@dataclass(frozen=True)
class TechnicalInspection:
    mileage: Optional[str] = None
    commune: Optional[str] = None
    month: Optional[str] = None
    last_inspection: Optional[str] = None
    status: Optional[str] = None
    expires_on: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class CirculationPermit:
    payment_year: Optional[int] = None
    municipality: Optional[str] = None
    paid_on: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class Insurance:
    company: Optional[str] = None
    starts_on: Optional[str] = None
    status: Optional[str] = None
    expires_on: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class PublicTransport:
    is_public_transport: Optional[bool] = None
    transport_type: Optional[str] = None

    def is_empty(self) -> bool:
        return self.is_public_transport is None and self.transport_type is None

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class TrafficRestriction:
    condition: Optional[str] = None

    def is_empty(self) -> bool:
        return self.condition is None

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class Toll:
    """Tag / e-toll registration looked up by the owner's national id."""

    provider: Optional[str] = None
    status: Optional[str] = None
    tag_id: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return _group_dict(self)


@dataclass(frozen=True)
class VehicleRecord:
    """The canonical, immutable result of one resolution."""

    plate: str
    queried_at: str
    success: bool
    resolved_by: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    owner: Optional[Owner] = None
    vehicle: Optional[Vehicle] = None
    fines: Optional[FinesSummary] = None
    technical_inspection: Optional[TechnicalInspection] = None
    circulation_permit: Optional[CirculationPermit] = None
    insurance: Optional[Insurance] = None
    public_transport: Optional[PublicTransport] = None
    traffic_restriction: Optional[TrafficRestriction] = None
    toll: Optional[Toll] = None

    @property
    def source(self) -> str:
        """Distinct contributing sources, in group order."""
        names = []
        for group in GROUPS:
            name = self.resolved_by.get(group)
            if name and name not in names:
                names.append(name)
        return ",".join(names)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "plate": self.plate,
            "queriedAt": self.queried_at,
            "source": self.source,
            "resolvedBy": {_camel(group): name for group, name in self.resolved_by.items()},
        }
        if self.error is not None:
            out["error"] = self.error
        for group in GROUPS:
            value = getattr(self, group)
            out[_camel(group)] = value.to_dict() if value is not None else None
        return out
