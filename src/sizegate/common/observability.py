"""Logging and tracing setup for the size gate."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.asgi import OpenTelemetryMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from structlog.contextvars import bind_contextvars, bound_contextvars

_LOGGING_CONFIGURED = False
_TRACING_CONFIGURED = False


def _log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        numeric = logging.getLevelName(level.strip().upper())
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(service_name: str, level: str | int | None = None) -> None:
    """Route structlog events to stdlib logging as one JSON object per line.

    Every event carries ``service`` plus whatever :func:`request_context`
    has bound for the current request (``method``, ``path``, ``cid``).
    Calling this again only changes the level.
    """

    global _LOGGING_CONFIGURED
    numeric_level = _log_level(level)
    if _LOGGING_CONFIGURED:
        logging.getLogger().setLevel(numeric_level)
    else:
        logging.basicConfig(level=numeric_level, format="%(message)s")
        _LOGGING_CONFIGURED = True

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    bind_contextvars(service=service_name)


@contextmanager
def request_context(**values: object) -> Iterator[None]:
    """Bind ``values`` to every log event emitted inside the block.

    ``None`` values are left out. Tasks created inside the block inherit the
    binding, so a traversal started for a request logs that request's ``cid``.
    """

    with bound_contextvars(**{key: value for key, value in values.items() if value is not None}):
        yield


def parse_otlp_headers(headers: str | None) -> Dict[str, str]:
    """Parse ``key=value,key2=value2`` into a header dict, skipping malformed items."""

    if not headers:
        return {}
    result: Dict[str, str] = {}
    for item in headers.split(","):
        key, _, value = item.partition("=")
        if key.strip() and value.strip():
            result[key.strip()] = value.strip()
    return result


def configure_tracing(
    service_name: str,
    endpoint: Optional[str] = None,
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
) -> bool:
    """Export spans over OTLP/HTTP when ``endpoint`` is set.

    Without an endpoint nothing is installed and spans stay no-ops. Returns
    whether a tracer provider is active after the call.
    """

    global _TRACING_CONFIGURED
    if _TRACING_CONFIGURED:
        return True
    if not endpoint:
        return False

    ratio = max(0.0, min(1.0, sampler_ratio))
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=TraceIdRatioBased(ratio),
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers))))
    trace.set_tracer_provider(provider)
    # Kubo lookups and upstream forwards show up as child spans of the request.
    HTTPXClientInstrumentor().instrument()
    _TRACING_CONFIGURED = True
    return True


def instrument_fastapi_app(app) -> None:
    """Attach server spans to ``app``. A no-op until tracing is configured."""

    if not _TRACING_CONFIGURED:
        return
    FastAPIInstrumentor.instrument_app(app, tracer_provider=trace.get_tracer_provider())
    if not any(getattr(m.cls, "__name__", "") == "OpenTelemetryMiddleware" for m in app.user_middleware):
        app.add_middleware(OpenTelemetryMiddleware, tracer_provider=trace.get_tracer_provider())
