"""Size-gated reverse proxy in front of an IPFS HTTP gateway."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from opentelemetry import trace

from ..admission import AdmissionGate, DecisionCache, GraphSizeResolver, PermanentAllowSet
from ..common.http_security import require_operator_access
from ..common.metrics import (
    CONTENT_REQUEST_COUNTER,
    GLOBAL_REGISTRY,
    REQUEST_COUNTER,
    REQUEST_LATENCY_HISTOGRAM,
)
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app, request_context
from ..common.schemas import AdmissionResult
from ..common.settings import GatewaySettings, load_settings
from ..graph.base import GraphSource
from ..graph.kubo import KuboGraphSource
from .forward import UpstreamForwarder
from .router import extract_identifier

LOGGER = structlog.get_logger("sizegate.gateway")
TRACER = trace.get_tracer("sizegate.gateway")

OPERATOR_PREFIX = "/_sizegate"
PROXY_METHODS = [
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "OPTIONS",
    "TRACE",
    # WebDAV
    "PROPFIND",
    "PROPPATCH",
    "MKCOL",
    "COPY",
    "MOVE",
    "LOCK",
    "UNLOCK",
    "REPORT",
    "SEARCH",
]


class GatewayState:
    def __init__(self, settings: GatewaySettings, gate: AdmissionGate, forwarder: UpstreamForwarder) -> None:
        self.settings = settings
        self.gate = gate
        self.forwarder = forwarder

    def status(self) -> dict[str, object]:
        cache = self.gate.cache
        return {
            "backend_url": str(self.settings.backend_url),
            "quota_bytes": self.gate.quota_bytes,
            "pinned": len(self.gate.allow_set),
            "cache_entries": len(cache),
            "cache_capacity": cache.capacity,
            "cache_evictions": cache.evictions,
            "inflight_traversals": self.gate.inflight,
            "lookup_error_policy": self.settings.lookup_error_policy,
        }


def build_gate(settings: GatewaySettings, source: GraphSource, allow_set: PermanentAllowSet) -> AdmissionGate:
    resolver = GraphSizeResolver(
        source,
        timeout_seconds=settings.traversal_deadline,
        lookup_error_policy=settings.lookup_error_policy,
    )
    return AdmissionGate(
        resolver,
        DecisionCache(settings.cache_capacity),
        allow_set,
        settings.quota_bytes,
        coalesce=settings.coalesce_traversals,
    )


def get_state(request: Request) -> GatewayState:
    return request.app.state.gateway  # type: ignore[attr-defined]


def create_app(
    settings: Optional[GatewaySettings] = None,
    *,
    graph_source: Optional[GraphSource] = None,
    upstream_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging("sizegate.gateway", settings.log_level)
    configure_tracing(
        service_name="sizegate.gateway",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned: list[httpx.AsyncClient] = []
        source = graph_source
        if source is None:
            ipfs_client = httpx.AsyncClient(
                base_url=str(settings.ipfs_api_url),
                timeout=httpx.Timeout(settings.ipfs_timeout_seconds),
            )
            owned.append(ipfs_client)
            source = KuboGraphSource(ipfs_client, pinned_type=settings.pinned_type)
        upstream = upstream_client
        if upstream is None:
            upstream = httpx.AsyncClient(
                base_url=str(settings.backend_url),
                timeout=httpx.Timeout(settings.upstream_timeout_seconds),
            )
            owned.append(upstream)
        try:
            allow_set = await PermanentAllowSet.load(source)
            gate = build_gate(settings, source, allow_set)
            app.state.gateway = GatewayState(settings, gate, UpstreamForwarder(upstream))
            LOGGER.info(
                "gateway_started",
                backend_url=str(settings.backend_url),
                quota_bytes=settings.quota_bytes,
                cache_capacity=settings.cache_capacity,
                pinned=len(allow_set),
            )
            yield
        finally:
            for client in owned:
                await client.aclose()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_fastapi_app(app)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        REQUEST_COUNTER.inc()
        try:
            with request_context(method=request.method, path=request.url.path):
                response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            LOGGER.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.get(f"{OPERATOR_PREFIX}/healthz")
    async def health_check(state: GatewayState = Depends(get_state)) -> dict:
        return {"status": "healthy", "pinned": len(state.gate.allow_set)}

    @app.get(f"{OPERATOR_PREFIX}/status")
    async def status_endpoint(request: Request, state: GatewayState = Depends(get_state)) -> JSONResponse:
        require_operator_access(request, _operator_token(state.settings))
        return JSONResponse(state.status())

    @app.get(f"{OPERATOR_PREFIX}/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request, state: GatewayState = Depends(get_state)) -> PlainTextResponse:
        require_operator_access(request, _operator_token(state.settings))
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def proxy(path: str, request: Request, state: GatewayState = Depends(get_state)) -> Response:
        identifier = extract_identifier(request.url.path)
        if identifier is None:
            return await state.forwarder.forward(request)

        CONTENT_REQUEST_COUNTER.inc()
        with request_context(cid=identifier):
            with TRACER.start_as_current_span("gateway.admission", attributes={"sizegate.cid": identifier}) as span:
                decision = await state.gate.decide(identifier)
                span.set_attribute("sizegate.result", decision.result.value)
                span.set_attribute("sizegate.source", decision.source.value)
            if decision.result is AdmissionResult.DENY:
                return Response(status_code=status.HTTP_403_FORBIDDEN)
            if decision.result is AdmissionResult.ERROR:
                return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
            return await state.forwarder.forward(request)

    return app


def _operator_token(settings: GatewaySettings) -> Optional[str]:
    return settings.metrics_token.get_secret_value() if settings.metrics_token else None
