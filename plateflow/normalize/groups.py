"""
Field group builders.

Each field group is described once by a :class:`GroupSpec`: the
dataclass it produces, the labels its fields carry on result pages and
the keys they carry in structured API payloads.  The same table drives
both :func:`build_from_markup` and :func:`build_from_payload`, so every
source type goes through one extraction and normalization path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .extractor import FieldExtractor
from .fines import extract_fines, summary_message
from .schema import (
    CirculationPermit,
    FineEntry,
    FinesSummary,
    Insurance,
    Owner,
    PublicTransport,
    Query,
    TechnicalInspection,
    Toll,
    TrafficRestriction,
    Vehicle,
)
from .values import normalize, normalize_bool, normalize_int

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldSpec:
    name: str
    labels: Tuple[str, ...]
    keys: Tuple[str, ...]
    convert: Callable[[Any], Any] = normalize


@dataclass(frozen=True)
class GroupSpec:
    cls: type
    sections: Tuple[str, ...]
    fields: Tuple[FieldSpec, ...]


GROUP_SPECS: Dict[str, GroupSpec] = {
    "owner": GroupSpec(
        Owner,
        ("owner", "propietario"),
        (
            FieldSpec("national_id", ("RUT", "RUT propietario"), ("nationalId", "national_id", "rut")),
            FieldSpec(
                "full_name",
                ("Nombre", "Nombre propietario", "Propietario"),
                ("fullName", "full_name", "nombre", "name", "nombrePropietario"),
            ),
        ),
    ),
    "vehicle": GroupSpec(
        Vehicle,
        ("vehicle", "vehiculo"),
        (
            FieldSpec("category", ("Tipo", "Tipo vehículo", "Tipo de vehículo"), ("category", "tipo")),
            FieldSpec("make", ("Marca",), ("make", "marca")),
            FieldSpec("model", ("Modelo",), ("model", "modelo")),
            FieldSpec("year", ("Año", "Año fabricación", "Ano"), ("year", "año", "ano", "anio"), normalize_int),
            FieldSpec("color", ("Color",), ("color",)),
            FieldSpec(
                "engine_number",
                ("N° de motor", "N° Motor", "Número de motor", "Numero Motor", "Motor"),
                ("engineNumber", "engine_number", "numeroMotor"),
            ),
            FieldSpec(
                "chassis_number",
                ("N° de chasis", "N° Chasis", "Número de chasis", "Numero Chasis", "Chasis"),
                ("chassisNumber", "chassis_number", "numeroChasis", "vin"),
            ),
            FieldSpec("origin", ("Procedencia",), ("origin", "procedencia")),
            FieldSpec("manufacturer", ("Fabricante",), ("manufacturer", "fabricante")),
            FieldSpec("seal_type", ("Tipo Sello", "Tipo de sello", "Sello"), ("sealType", "seal_type", "tipoSello")),
            FieldSpec("fuel_type", ("Combustible",), ("fuelType", "fuel_type", "combustible")),
        ),
    ),
    "technical_inspection": GroupSpec(
        TechnicalInspection,
        ("technicalInspection", "technical_inspection", "revisionTecnica"),
        (
            FieldSpec("mileage", ("Kilometraje",), ("mileage", "kilometraje")),
            FieldSpec(
                "commune",
                ("Comuna de revisión", "Comuna de revision", "Comuna"),
                ("commune", "comuna"),
            ),
            FieldSpec("month", ("Mes de revisión", "Mes de revision", "Mes"), ("month", "mes")),
            FieldSpec(
                "last_inspection",
                ("Último control", "Ultimo control"),
                ("lastInspection", "last_inspection", "ultimoControl"),
            ),
            FieldSpec(
                "status",
                ("Estado revisión técnica", "Estado revision tecnica", "Estado RT"),
                ("status", "estado"),
            ),
            FieldSpec(
                "expires_on",
                ("Fecha de vencimiento", "Vencimiento revisión", "Vencimiento"),
                ("expiresOn", "expires_on", "fechaVencimiento"),
            ),
        ),
    ),
    "circulation_permit": GroupSpec(
        CirculationPermit,
        ("circulationPermit", "circulation_permit", "permisoCirculacion"),
        (
            FieldSpec(
                "payment_year",
                ("Año de pago", "Año Pago", "Ano de pago"),
                ("paymentYear", "payment_year", "añoPago", "anoPago"),
                normalize_int,
            ),
            FieldSpec("municipality", ("Municipalidad",), ("municipality", "municipalidad")),
            FieldSpec("paid_on", ("Fecha de pago", "Fecha Pago"), ("paidOn", "paid_on", "fechaPago")),
        ),
    ),
    "insurance": GroupSpec(
        Insurance,
        ("insurance", "soap"),
        (
            FieldSpec(
                "company",
                ("Compañía", "Compañia", "Compania", "Aseguradora", "SOAP"),
                ("company", "compania", "compañia", "compañía"),
            ),
            FieldSpec(
                "starts_on",
                ("Fecha inicio", "Fecha de inicio", "Inicio SOAP"),
                ("startsOn", "starts_on", "fechaInicio"),
            ),
            FieldSpec("status", ("Estado SOAP",), ("status", "estado")),
            FieldSpec(
                "expires_on",
                ("Vencimiento SOAP", "Fecha término SOAP"),
                ("expiresOn", "expires_on", "fechaVencimiento"),
            ),
        ),
    ),
    "public_transport": GroupSpec(
        PublicTransport,
        ("publicTransport", "public_transport", "transportePublico"),
        (
            FieldSpec(
                "is_public_transport",
                ("Transporte público", "Transporte publico", "Es Transporte Público"),
                ("isPublicTransport", "is_public_transport", "es"),
                normalize_bool,
            ),
            FieldSpec(
                "transport_type",
                ("Tipo transporte público", "Tipo transporte publico", "Tipo transporte"),
                ("transportType", "transport_type", "tipo"),
            ),
        ),
    ),
    "traffic_restriction": GroupSpec(
        TrafficRestriction,
        ("trafficRestriction", "traffic_restriction", "restriccionVehicular"),
        (
            FieldSpec(
                "condition",
                ("Condición", "Condicion", "Restricción", "Restriccion Vehicular"),
                ("condition", "condicion"),
            ),
        ),
    ),
    "toll": GroupSpec(
        Toll,
        ("toll", "tag"),
        (
            FieldSpec("provider", ("Concesionaria", "Proveedor TAG"), ("provider", "concesionaria", "proveedor")),
            FieldSpec("status", ("Estado TAG",), ("status", "estado")),
            FieldSpec("tag_id", ("N° TAG", "Número TAG", "TAG"), ("tagId", "tag_id", "numeroTag")),
        ),
    ),
}

FINES_SECTIONS = ("fines", "multas")


def _finish(group: str, values: Dict[str, Any], query: Query, page_plate: Optional[str] = None) -> Any:
    spec = GROUP_SPECS[group]
    if group == "vehicle":
        values["plate"] = (page_plate or query.plate).upper()
    built = spec.cls(**values)
    if built.is_empty():
        logger.debug("no %s fields found", group)
        return None
    return built


def build_from_markup(group: str, markup: str, query: Query) -> Any:
    """Extract ``group`` from a result page; ``None`` when nothing usable is found."""
    if group == "fines":
        summary = extract_fines(markup)
        return None if summary.is_empty() else summary
    spec = GROUP_SPECS[group]
    extractor = FieldExtractor(markup)
    values = {f.name: f.convert(extractor.extract_first(*f.labels)) for f in spec.fields}
    page_plate = extractor.extract("Patente") if group == "vehicle" else None
    return _finish(group, values, query, page_plate)


def _section(payload: Mapping[str, Any], names: Sequence[str]) -> Optional[Mapping[str, Any]]:
    for name in names:
        section = payload.get(name)
        if isinstance(section, Mapping):
            return section
    return None


def _first_key(section: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if section.get(key) is not None:
            return section[key]
    return None


def _fines_from_payload(section: Mapping[str, Any]) -> Optional[FinesSummary]:
    entries: Dict[str, FineEntry] = {}
    for item in section.get("entries") or section.get("multas") or []:
        if not isinstance(item, Mapping):
            continue
        case_id = normalize(_first_key(item, ("caseId", "case_id", "rol")))
        if case_id is None or case_id in entries:
            continue
        entries[case_id] = FineEntry(
            case_id=case_id,
            type=normalize(_first_key(item, ("type", "tipo"))) or "MULTA POR ROL/CAUSA",
            description=normalize(_first_key(item, ("description", "descripcion")))
            or f"Multa por ROL/CAUSA {case_id}",
            status=normalize(_first_key(item, ("status", "estado"))) or "Pendiente",
            commune=normalize(_first_key(item, ("commune", "comuna"))),
            year=normalize_int(_first_key(item, ("year", "año", "ano"))),
        )
    stated = normalize_int(_first_key(section, ("count", "cantidad")))
    count = max(len(entries), stated or 0)
    has_fines = normalize_bool(_first_key(section, ("hasFines", "has_fines", "tiene")))
    if count == 0 and stated is None and has_fines is None:
        return None
    message = normalize(_first_key(section, ("message", "mensaje"))) or summary_message(count)
    return FinesSummary(
        has_fines=count > 0 or bool(has_fines),
        count=count,
        entries=tuple(entries.values()),
        message=message,
    )


def build_from_payload(group: str, payload: Mapping[str, Any], query: Query) -> Any:
    """Map a structured API payload onto ``group``; ``None`` when absent."""
    if group == "fines":
        section = _section(payload, FINES_SECTIONS)
        return _fines_from_payload(section) if section is not None else None
    spec = GROUP_SPECS[group]
    section = _section(payload, spec.sections)
    if section is None:
        return None
    values = {f.name: f.convert(_first_key(section, f.keys)) for f in spec.fields}
    page_plate = normalize(_first_key(section, ("plate", "patente"))) if group == "vehicle" else None
    return _finish(group, values, query, page_plate)
