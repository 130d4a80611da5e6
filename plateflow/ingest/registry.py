"""Build the shipped source adapters from :class:`~plateflow.config.Settings`."""

from __future__ import annotations

from typing import Dict, Optional

import requests

from ..config import Settings
from .api_adapter import ThirdPartyApiSource
from .base import Source
from .default_adapter import StaticDefaultSource
from .direct_adapter import DirectFetchSource, FinesSource, results_endpoints
from .rendered_adapter import OwnerLookupSource, RenderedResultsSource


def build_sources(settings: Settings, session: Optional[requests.Session] = None) -> Dict[str, Source]:
    """Return every shipped source keyed by the name used in priority lists.

    Adapters are cheap to construct; browsers and connections are only
    opened when a source is actually called.
    """
    session = session or requests.Session()
    sources = [
        RenderedResultsSource(
            settings.results_url, timeout=settings.render_timeout, headless=settings.headless
        ),
        OwnerLookupSource(
            settings.owner_lookup_url, timeout=settings.render_timeout, headless=settings.headless
        ),
        DirectFetchSource(
            results_endpoints(settings.results_url),
            timeout=settings.request_timeout,
            session=session,
        ),
        FinesSource(settings.fines_url, timeout=settings.request_timeout, session=session),
        ThirdPartyApiSource(
            settings.api_url,
            api_key=settings.api_key,
            timeout=settings.request_timeout,
            min_interval=settings.api_min_interval,
            session=session,
        ),
        StaticDefaultSource(settings.unknown_owner_label),
    ]
    return {source.name: source for source in sources}
