"""
Resolution policy.

For every field group the policy walks that group's source priority
list in order.  Each attempt calls the adapter (bounded by
``source_timeout``), classifies the raw content, builds the typed group
and commits the first non-empty result.  A blocked, missing, failing or
empty attempt is logged and the chain moves on; the group stays absent
once every source has been tried.

Each adapter call gets a deadline ``source_timeout`` seconds away.  The
policy stops waiting once it passes; a source that holds a browser
session is still waited for until the session has been closed, and it
sizes its own steps from the deadline so that wait is short.

Groups are independent and run concurrently on a thread pool, except
``toll``, which needs the owner's national id and is resolved after the
other groups settle.  Page-scoped sources are fetched at most once per
query: the first group to ask fetches the page under a per-source lock
and every other group reuses the response.  The record is assembled by
a single writer once all groups are done.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from concurrent.futures import wait as wait_for
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Sequence, Tuple

from ..errors import (
    AllSourcesExhausted,
    ConfigError,
    InputInvalid,
    SourceBlocked,
    SourceNotFound,
    SourceTransportError,
    TotalResolutionFailure,
)
from ..ingest.base import Source
from ..ingest.registry import build_sources
from ..normalize.detector import classify
from ..normalize.groups import build_from_markup, build_from_payload
from ..normalize.schema import (
    BLOCKED,
    GROUPS,
    NOT_FOUND,
    OK,
    TRANSPORT_ERROR,
    Query,
    RawResponse,
    VehicleRecord,
)

logger = logging.getLogger(__name__)

Outcome = Tuple[Any, Optional[str]]

_SOURCE_ERRORS = {
    BLOCKED: SourceBlocked,
    NOT_FOUND: SourceNotFound,
    TRANSPORT_ERROR: SourceTransportError,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _ResponseMemo:
    """Per-query store of adapter responses.

    One lock per key makes concurrent groups wait for an in-flight
    fetch of the same page instead of starting a second one.
    """

    def __init__(self) -> None:
        self._responses: Dict[Hashable, RawResponse] = {}
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def get_or_fetch(self, key: Hashable, fetch: Callable[[], RawResponse]) -> RawResponse:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            if key not in self._responses:
                self._responses[key] = fetch()
            return self._responses[key]


class ResolutionPolicy:
    """Resolve plates into :class:`VehicleRecord` objects.

    Args:
        sources: Source adapters keyed by name.
        priorities: Ordered source names per field group.  Groups with no
            entry are never resolved.
        max_workers: Threads used to resolve groups of one query; ``1``
            resolves them sequentially.
        source_timeout: Upper bound in seconds for a single adapter call.
        stop_on_not_found: When true a ``not_found`` answer ends the
            group's chain instead of advancing to the next source.
        clock: Returns the ``queried_at`` timestamp.
    """

    def __init__(
        self,
        sources: Mapping[str, Source],
        priorities: Mapping[str, Sequence[str]],
        max_workers: int = 4,
        source_timeout: float = 60.0,
        stop_on_not_found: bool = False,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        missing = {name for chain in priorities.values() for name in chain} - set(sources)
        if missing:
            raise ConfigError(f"priorities reference unknown sources: {', '.join(sorted(missing))}")
        self.sources = dict(sources)
        self.priorities = {group: tuple(chain) for group, chain in priorities.items()}
        self.max_workers = max(1, max_workers)
        self.source_timeout = source_timeout
        self.stop_on_not_found = stop_on_not_found
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Any, sources: Optional[Mapping[str, Source]] = None) -> "ResolutionPolicy":
        if sources is None:
            sources = build_sources(settings)
        return cls(
            sources,
            settings.priorities,
            max_workers=settings.max_workers,
            source_timeout=settings.source_timeout,
            stop_on_not_found=settings.stop_on_not_found,
        )

    # Public API

    def resolve(self, plate: Optional[str], kind: Optional[str] = None) -> VehicleRecord:
        """Resolve ``plate``; failures come back as a ``success: false`` record."""
        try:
            return self.resolve_strict(plate, kind)
        except InputInvalid as exc:
            logger.warning("rejected query %r: %s", plate, exc)
            return self._failure((exc.plate or str(plate or "")).strip().upper(), str(exc))
        except TotalResolutionFailure as exc:
            return self._failure(exc.plate, str(exc))

    def resolve_strict(self, plate: Optional[str], kind: Optional[str] = None) -> VehicleRecord:
        """Like :meth:`resolve` but raises the user visible errors.

        Raises:
            InputInvalid: the plate is missing or malformed; no source
                has been contacted.
            TotalResolutionFailure: no group was filled by a real source.
        """
        query = Query.parse(plate, kind)
        return self.resolve_query(query)

    def resolve_query(self, query: Query) -> VehicleRecord:
        queried_at = self.clock()
        memo = _ResponseMemo()
        groups = [g for g in GROUPS if g != "toll" and self.priorities.get(g)]
        # Not a context manager: exiting one would wait for adapters that
        # already overran their timeout.
        calls = ThreadPoolExecutor(
            max_workers=max(1, len(self.sources)), thread_name_prefix="plateflow-call"
        )
        try:
            outcomes = self._run_groups(groups, query, memo, calls)
            if self.priorities.get("toll"):
                outcomes["toll"] = self._run_toll(query, outcomes, memo, calls)
        finally:
            calls.shutdown(wait=False, cancel_futures=True)

        resolved = {g: o for g, o in outcomes.items() if o[0] is not None}
        real = [g for g, (_, name) in resolved.items() if not self.sources[name].is_default]
        if not real:
            failure = TotalResolutionFailure(
                query.plate, f"No data could be resolved for plate {query.plate} from any source"
            )
            logger.error("%s", failure)
            raise failure

        logger.info(
            "resolved %s: %d/%d groups (%s)",
            query.plate,
            len(resolved),
            len(outcomes),
            ", ".join(f"{g}={name}" for g, (_, name) in sorted(resolved.items())),
        )
        return VehicleRecord(
            plate=query.plate,
            queried_at=queried_at,
            success=True,
            resolved_by={g: name for g, (_, name) in resolved.items()},
            **{g: value for g, (value, _) in resolved.items()},
        )

    # Internals

    def _failure(self, plate: str, message: str) -> VehicleRecord:
        return VehicleRecord(plate=plate, queried_at=self.clock(), success=False, error=message)

    def _run_groups(
        self, groups: Sequence[str], query: Query, memo: _ResponseMemo, calls: ThreadPoolExecutor
    ) -> Dict[str, Outcome]:
        if self.max_workers == 1 or len(groups) <= 1:
            return {group: self._run_chain(group, query, memo, calls) for group in groups}
        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(groups)), thread_name_prefix="plateflow-group"
        ) as pool:
            futures = {group: pool.submit(self._run_chain, group, query, memo, calls) for group in groups}
            return {group: future.result() for group, future in futures.items()}

    def _run_toll(
        self,
        query: Query,
        outcomes: Mapping[str, Outcome],
        memo: _ResponseMemo,
        calls: ThreadPoolExecutor,
    ) -> Outcome:
        owner = outcomes.get("owner", (None, None))[0]
        national_id = query.national_id or (owner.national_id if owner is not None else None)
        if not national_id:
            logger.info("skipping toll for %s: no owner national id", query.plate)
            return None, None
        return self._run_chain("toll", replace(query, national_id=national_id), memo, calls)

    def _run_chain(
        self, group: str, query: Query, memo: _ResponseMemo, calls: ThreadPoolExecutor
    ) -> Outcome:
        attempted = []
        for name in self.priorities.get(group, ()):
            source = self.sources[name]
            attempted.append(name)
            key = (name, query, source.cache_key(query, group))
            response = memo.get_or_fetch(key, lambda: self._call(source, query, group, calls))
            status, value = self._evaluate(source, response, query, group)
            if value is not None:
                logger.info("%s for %s resolved by %s", group, query.plate, name)
                return value, name
            if status == NOT_FOUND and self.stop_on_not_found:
                logger.info("%s for %s: %s reports not found, stopping", group, query.plate, name)
                break
        logger.warning("%s", AllSourcesExhausted(group, attempted))
        return None, None

    def _call(self, source: Source, query: Query, group: str, calls: ThreadPoolExecutor) -> RawResponse:
        deadline = time.monotonic() + self.source_timeout
        future = calls.submit(source.fetch_group, query, group, deadline)
        try:
            return future.result(timeout=self.source_timeout)
        except FutureTimeout:
            if source.holds_session:
                # The session must be closed before the next source runs.
                logger.warning(
                    "%s overran %ss, waiting for its session to close", source.name, self.source_timeout
                )
                wait_for([future])
            else:
                future.cancel()
            return RawResponse(
                TRANSPORT_ERROR, source.name, detail=f"timed out after {self.source_timeout}s"
            )
        except Exception as exc:  # adapter bug; the chain must go on
            logger.exception("%s raised while fetching %s", source.name, group)
            return RawResponse(TRANSPORT_ERROR, source.name, detail=f"{type(exc).__name__}: {exc}")

    def _evaluate(
        self, source: Source, response: RawResponse, query: Query, group: str
    ) -> Tuple[str, Any]:
        status = response.status
        if status == OK and not response.is_structured:
            status = classify(response.content)
        if status != OK:
            error = _SOURCE_ERRORS.get(status, SourceTransportError)(
                source.name, group, response.detail or status
            )
            log = logger.info if status == NOT_FOUND else logger.warning
            log("%s", error)
            return status, None
        if response.is_structured:
            value = build_from_payload(group, response.content, query)
        else:
            value = build_from_markup(group, response.content, query)
        if value is None:
            logger.debug("%s returned no %s data", source.name, group)
        return status, value
