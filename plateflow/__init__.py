"""
plateflow: vehicle record resolution.

Given a license plate, plateflow queries several unreliable upstream
sources (plain HTTP results pages, browser rendered pages and a
third-party JSON API), detects block pages and empty templates,
extracts typed fields from loosely structured markup and merges the
partial results into one canonical :class:`VehicleRecord`.

The package is split the same way the data flows:

1. **ingest** – Source adapters.  Each one wraps a single upstream
   behind :class:`~plateflow.ingest.base.Source` and returns a raw
   response with a status (ok, blocked, not found, transport error).
2. **normalize** – Challenge detection, label based field extraction,
   value cleanup, fines deduplication and the field group builders.
3. **resolve** – The per-group fallback policy and the batch runner.
4. **cli** – Command line entry point wiring the above together.
"""

from .errors import InputInvalid, ResolutionError, TotalResolutionFailure  # noqa: F401
from .normalize.schema import Query, VehicleRecord  # noqa: F401
from .resolve import ResolutionPolicy, resolve_many  # noqa: F401
