"""
Plain HTTP sources.

:class:`DirectFetchSource` posts the plate to one or more results
endpoints with ``requests`` and hands back the first page that looks
like a vehicle result.  No JavaScript runs, so these sources are cheap
but are the first to be served a challenge page.  :class:`FinesSource`
is the same transport pointed at the fines results form.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

import requests

from ..normalize.detector import is_challenge
from ..normalize.schema import Query, RawResponse
from .base import BROWSER_HEADERS, Source, time_left

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Markers that a results page actually carries vehicle data.
VEHICLE_MARKERS = ("propietario", "vehículo", "vehiculo", "rut", "marca")


def _plate_form(query: Query) -> Dict[str, str]:
    return {"patente": query.plate}


@dataclass(frozen=True)
class Endpoint:
    """One way of asking an upstream for the results page."""

    url: str
    method: str = "POST"
    params: Callable[[Query], Dict[str, str]] = _plate_form


def results_endpoints(site_url: str) -> Sequence[Endpoint]:
    """Endpoints of the public results site, most reliable first."""
    base = site_url.rstrip("/")
    bare = base.replace("://www.", "://")
    return (
        Endpoint(f"{base}/resultados", "POST"),
        Endpoint(f"{base}/resultados", "GET"),
        Endpoint(f"{bare}/resultado-consulta", "POST"),
    )


class DirectFetchSource(Source):
    """Fetch a results page over plain HTTP.

    Endpoints are tried in order.  A response is accepted when it
    contains one of ``markers`` (any 200 response when ``markers`` is
    empty).  If nothing is accepted, the last readable page is still
    returned so the detector can classify it; a challenge page seen on
    the way is reported as ``blocked``.
    """

    name = "direct"

    def __init__(
        self,
        endpoints: Sequence[Endpoint],
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        markers: Sequence[str] = VEHICLE_MARKERS,
        name: Optional[str] = None,
    ) -> None:
        self.endpoints = list(endpoints)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.markers = tuple(m.lower() for m in markers)
        if name:
            self.name = name

    def _request(self, endpoint: Endpoint, query: Query, timeout: float) -> requests.Response:
        params = endpoint.params(query)
        if endpoint.method.upper() == "GET":
            return self.session.get(
                endpoint.url, params=params, headers=BROWSER_HEADERS, timeout=timeout
            )
        return self.session.post(
            endpoint.url, data=params, headers=BROWSER_HEADERS, timeout=timeout
        )

    def _accepts(self, text: str) -> bool:
        if not self.markers:
            return True
        lowered = text.lower()
        return any(marker in lowered for marker in self.markers)

    def fetch_group(self, query: Query, group: str, deadline: Optional[float] = None) -> RawResponse:
        fallback: Optional[str] = None
        blocked = False
        error: Optional[str] = None
        for endpoint in self.endpoints:
            timeout = time_left(deadline, self.timeout)
            if timeout <= 0:
                error = error or "deadline reached before every endpoint was tried"
                break
            try:
                response = self._request(endpoint, query, timeout)
            except requests.RequestException as exc:
                logger.debug("%s %s failed: %s", endpoint.method, endpoint.url, exc)
                error = f"{endpoint.url}: {exc}"
                continue
            text = response.text or ""
            if is_challenge(text):
                logger.debug("%s served a challenge page", endpoint.url)
                blocked = True
                continue
            if response.status_code != 200:
                error = f"{endpoint.url}: HTTP {response.status_code}"
                continue
            if self._accepts(text):
                logger.debug("%s accepted from %s", self.name, endpoint.url)
                return self.ok(text)
            fallback = text
        if fallback is not None:
            return self.ok(fallback)
        if blocked:
            return self.blocked("challenge page on every endpoint")
        return self.transport_error(error or "no endpoint configured")


def _fines_form(query: Query) -> Dict[str, str]:
    return {"frmTerm2": query.plate, "frmOpcion2": query.search_tab}


class FinesSource(DirectFetchSource):
    """Form POST to the fines results page."""

    name = "fines"

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(
            [Endpoint(url, "POST", _fines_form)],
            timeout=timeout,
            session=session,
            markers=(),
        )
