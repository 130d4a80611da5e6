"""
Source adapters for plateflow.

Each module wraps one kind of upstream behind the
:class:`~plateflow.ingest.base.Source` interface: plain HTTP fetches
(``direct_adapter``), browser rendered pages (``rendered_adapter``), a
third-party JSON API (``api_adapter``) and a static fallback
(``default_adapter``).  :func:`build_sources` wires them up from
settings.
"""

from .base import Source  # noqa: F401
from .registry import build_sources  # noqa: F401
