"""
Normalization subsystem for plateflow.

This package turns raw upstream content into the canonical record
model.  The detector decides whether a page is worth reading at all,
the extractor pulls labelled values out of loosely structured markup,
the value helpers clean them up and the group builders assemble typed,
immutable field groups from either markup or structured API payloads.
"""

from .detector import classify, is_challenge  # noqa: F401
from .extractor import FieldExtractor, extract, extract_first  # noqa: F401
from .fines import extract_fines  # noqa: F401
from .groups import build_from_markup, build_from_payload  # noqa: F401
from .schema import GROUPS, Query, RawResponse, VehicleRecord  # noqa: F401
from .values import normalize, normalize_bool, normalize_int  # noqa: F401
