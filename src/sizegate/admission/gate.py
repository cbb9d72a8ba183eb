"""Admission decisions for content requests."""

from __future__ import annotations

import asyncio

import structlog

from ..common.metrics import (
    ALLOWED_COUNTER,
    CACHE_ENTRIES_GAUGE,
    CACHE_HIT_COUNTER,
    CACHE_MISS_COUNTER,
    DENIED_COUNTER,
    ERROR_COUNTER,
)
from ..common.schemas import AdmissionDecision, AdmissionResult, DecisionSource
from ..graph.base import DataSourceUnavailable
from .cache import DecisionCache
from .pinned import PermanentAllowSet
from .resolver import GraphSizeResolver

LOGGER = structlog.get_logger("sizegate.admission.gate")

_OUTCOME_COUNTERS = {
    AdmissionResult.ALLOW: ALLOWED_COUNTER,
    AdmissionResult.DENY: DENIED_COUNTER,
    AdmissionResult.ERROR: ERROR_COUNTER,
}


class AdmissionGate:
    """Decides whether a root identifier may be served.

    Checks run in order and stop at the first decisive one: the permanent
    allow set, the decision cache, then a fresh traversal compared against
    ``quota_bytes``. A traversal caches its outcome for every visited
    identifier; a failed traversal caches nothing.

    With ``coalesce=True`` concurrent calls for the same uncached identifier
    share one traversal.
    """

    def __init__(
        self,
        resolver: GraphSizeResolver,
        cache: DecisionCache,
        allow_set: PermanentAllowSet,
        quota_bytes: int,
        *,
        coalesce: bool = True,
    ) -> None:
        self._resolver = resolver
        self._cache = cache
        self._allow_set = allow_set
        self._quota = quota_bytes
        self._coalesce = coalesce
        self._inflight: dict[str, asyncio.Task[AdmissionDecision]] = {}
        CACHE_ENTRIES_GAUGE.set_supplier(lambda: float(len(cache)))

    @property
    def quota_bytes(self) -> int:
        return self._quota

    @property
    def cache(self) -> DecisionCache:
        return self._cache

    @property
    def allow_set(self) -> PermanentAllowSet:
        return self._allow_set

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def decide(self, identifier: str) -> AdmissionDecision:
        decision = await self._decide(identifier)
        _OUTCOME_COUNTERS[decision.result].inc()
        return decision

    async def _decide(self, identifier: str) -> AdmissionDecision:
        if identifier in self._allow_set:
            LOGGER.info("admission_permanent", cid=identifier, source=DecisionSource.PINNED.value)
            return AdmissionDecision(identifier, AdmissionResult.ALLOW, DecisionSource.PINNED)

        cached = self._cache.lookup(identifier)
        if cached is not None:
            CACHE_HIT_COUNTER.inc()
            result = AdmissionResult.ALLOW if cached else AdmissionResult.DENY
            LOGGER.info(
                "admission_allowed" if cached else "admission_denied",
                cid=identifier,
                source=DecisionSource.CACHE.value,
            )
            return AdmissionDecision(identifier, result, DecisionSource.CACHE)
        CACHE_MISS_COUNTER.inc()

        if not self._coalesce:
            return await self._traverse(identifier)

        task = self._inflight.get(identifier)
        if task is None:
            task = asyncio.create_task(self._traverse(identifier))
            self._inflight[identifier] = task
            task.add_done_callback(lambda done: self._forget(identifier, done))
        else:
            LOGGER.debug("traversal_coalesced", cid=identifier)
        # Shielded so a disconnecting client does not cancel the traversal for others.
        return await asyncio.shield(task)

    def _forget(self, identifier: str, task: asyncio.Task) -> None:
        if self._inflight.get(identifier) is task:
            del self._inflight[identifier]

    async def _traverse(self, identifier: str) -> AdmissionDecision:
        try:
            traversal = await self._resolver.resolve(identifier)
        except DataSourceUnavailable as exc:
            LOGGER.error("admission_error", cid=identifier, error=exc.reason)
            return AdmissionDecision(identifier, AdmissionResult.ERROR, DecisionSource.TRAVERSAL)

        allowed = traversal.total_size <= self._quota
        # Root last: it is the newest entry and outlives its descendants.
        descendants = [cid for cid in traversal.visited if cid != identifier]
        inserted = self._cache.insert_many([*descendants, identifier], allowed)
        LOGGER.info(
            "admission_allowed" if allowed else "admission_denied",
            cid=identifier,
            source=DecisionSource.TRAVERSAL.value,
            visited=len(traversal.visited),
            cached=inserted,
            total_bytes=traversal.total_size,
            quota_bytes=self._quota,
        )
        return AdmissionDecision(
            identifier,
            AdmissionResult.ALLOW if allowed else AdmissionResult.DENY,
            DecisionSource.TRAVERSAL,
            total_size=traversal.total_size,
        )
