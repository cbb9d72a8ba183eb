"""Recursive size resolution over a content-addressed link graph."""

from __future__ import annotations

import asyncio
import time
from typing import Literal, Optional

import structlog
from opentelemetry import trace

from ..common.metrics import TRAVERSAL_LATENCY_HISTOGRAM
from ..common.schemas import TraversalResult
from ..graph.base import DataSourceUnavailable, GraphSource

LOGGER = structlog.get_logger("sizegate.admission.resolver")
TRACER = trace.get_tracer("sizegate.admission.resolver")

LookupErrorPolicy = Literal["fail", "skip"]


class GraphSizeResolver:
    """Walks every block reachable from a root and sums the declared sizes of its leaves.

    Each identifier is expanded or counted at most once per walk, so shared
    substructure is accounted for exactly once and the walk terminates even if
    the source reports a cycle.

    With ``lookup_error_policy="fail"`` any failed lookup aborts the walk. With
    ``"skip"`` a failed lookup below the root is logged and that branch counts
    as zero bytes.
    """

    def __init__(
        self,
        source: GraphSource,
        *,
        timeout_seconds: Optional[float] = None,
        lookup_error_policy: LookupErrorPolicy = "fail",
    ) -> None:
        if lookup_error_policy not in ("fail", "skip"):
            raise ValueError(f"unknown lookup error policy: {lookup_error_policy}")
        self._source = source
        self._timeout = timeout_seconds
        self._policy = lookup_error_policy

    async def resolve(self, root: str) -> TraversalResult:
        start = time.perf_counter()
        with TRACER.start_as_current_span("resolver.resolve", attributes={"sizegate.cid": root}) as span:
            try:
                result = await asyncio.wait_for(self._walk(root), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                LOGGER.warning("traversal_timeout", cid=root, timeout_seconds=self._timeout)
                raise DataSourceUnavailable(root, f"traversal exceeded {self._timeout}s") from exc
            finally:
                TRAVERSAL_LATENCY_HISTOGRAM.observe(time.perf_counter() - start)
            span.set_attribute("sizegate.visited", len(result.visited))
            span.set_attribute("sizegate.total_size", result.total_size)
        LOGGER.debug(
            "traversal_completed",
            cid=root,
            visited=len(result.visited),
            total_bytes=result.total_size,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return result

    async def _walk(self, root: str) -> TraversalResult:
        visited: dict[str, None] = {root: None}
        total = 0
        pending = [root]
        while pending:
            node = pending.pop()
            try:
                children = await self._source.list_links(node)
            except DataSourceUnavailable as exc:
                if self._policy == "fail" or node == root:
                    raise
                LOGGER.warning("traversal_branch_skipped", cid=root, branch=node, error=exc.reason)
                continue

            branches: list[str] = []
            for child in children:
                if child.identifier in visited:
                    continue
                visited[child.identifier] = None
                if child.is_branch:
                    branches.append(child.identifier)
                else:
                    total += child.declared_size
            # Reversed so branches are expanded in link order.
            pending.extend(reversed(branches))

        return TraversalResult(root=root, visited=tuple(visited), total_size=total)
