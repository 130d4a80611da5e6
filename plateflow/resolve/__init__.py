"""
Resolution subsystem for plateflow.

:class:`ResolutionPolicy` runs the per-group source fallback chains for
one query; :func:`resolve_many` drives it over a small batch of plates.
"""

from .batch import MAX_BATCH_SIZE, batch_payload, resolve_many  # noqa: F401
from .policy import ResolutionPolicy  # noqa: F401
