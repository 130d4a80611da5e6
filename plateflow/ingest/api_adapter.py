"""
Third-party JSON API source.

The API answers with structured JSON, so its payloads skip the markup
extractor entirely and go straight to the group builders.  It is also
the only upstream with a quota, which is why every call made in the
process goes through the shared :data:`API_RATE_LIMITER`.

Two endpoints are used:

* ``GET {base}/vehicles/{plate}?type={kind}`` serves every vehicle group;
* ``GET {base}/owners/{national_id}/tolls`` serves the ``toll`` group,
  which needs the owner's national id and therefore runs last.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, Optional
from urllib.parse import quote

import requests

from ..normalize.schema import Query, RawResponse
from .base import Source, time_left

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class RateLimiter:
    """Minimum spacing between calls, per key, shared across threads.

    The read-modify-write on the last invocation time happens under a
    lock; the sleep happens outside it so waiting callers queue up on
    their own reserved slots.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._lock = threading.Lock()
        self._last_invocation: Dict[str, float] = defaultdict(lambda: float("-inf"))
        self._clock = clock
        self._sleep = sleep

    def wait(self, key: str, min_interval: float) -> float:
        """Block until ``key`` may be called again; return the time waited."""
        if not min_interval or min_interval <= 0:
            return 0.0
        wait = 0.0
        with self._lock:
            now = self._clock()
            delta = now - self._last_invocation[key]
            if delta < min_interval:
                wait = min_interval - delta
            self._last_invocation[key] = now + wait
        if wait > 0:
            logger.debug("rate limiting %s for %.2fs", key, wait)
            self._sleep(wait)
        return wait


# The only process-wide mutable state in plateflow.
API_RATE_LIMITER = RateLimiter()


class ThirdPartyApiSource(Source):
    """Structured vehicle data from an authenticated JSON API."""

    name = "api"

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        min_interval: float = 1.0,
        session: Optional[requests.Session] = None,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.min_interval = min_interval
        self.session = session or requests.Session()
        self.limiter = limiter or API_RATE_LIMITER

    def cache_key(self, query: Query, group: str) -> str:
        return "toll" if group == "toll" else "vehicle"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get(
        self, path: str, params: Optional[Dict[str, str]] = None, deadline: Optional[float] = None
    ) -> RawResponse:
        url = f"{self.base_url}/{path}"
        self.limiter.wait(self.name, self.min_interval)
        timeout = time_left(deadline, self.timeout)
        if timeout <= 0:
            return self.transport_error(f"deadline reached before calling {url}")
        try:
            response = self.session.get(
                url, params=params, headers=self._headers(), timeout=timeout
            )
        except requests.RequestException as exc:
            return self.transport_error(str(exc))
        if response.status_code == 404:
            return self.not_found(f"{url} returned 404")
        if response.status_code != 200:
            return self.transport_error(f"{url} returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError:
            return self.transport_error(f"{url} returned invalid JSON")
        if not isinstance(payload, dict):
            return self.transport_error(f"{url} returned {type(payload).__name__}, expected object")
        # Some deployments wrap the record in a "data" envelope.
        if isinstance(payload.get("data"), dict):
            payload = payload["data"]
        return self.ok(payload)

    def fetch_group(self, query: Query, group: str, deadline: Optional[float] = None) -> RawResponse:
        if not self.base_url:
            return self.transport_error("api url not configured")
        if group == "toll":
            if not query.national_id:
                return self.not_found("toll lookup needs a national id")
            response = self._get(f"owners/{quote(query.national_id)}/tolls", deadline=deadline)
            if response.ok and not {"toll", "tag"} & set(response.content):
                return self.ok({"toll": response.content})
            return response
        return self._get(
            f"vehicles/{quote(query.plate)}", params={"type": query.kind}, deadline=deadline
        )
