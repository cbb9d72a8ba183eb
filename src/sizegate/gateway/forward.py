"""Relays admitted requests to the fixed upstream gateway."""

from __future__ import annotations

from typing import AsyncIterator

import httpx
import structlog
from fastapi import Request, Response, status
from fastapi.responses import StreamingResponse

from ..common.metrics import UPSTREAM_ERROR_COUNTER

LOGGER = structlog.get_logger("sizegate.gateway.forward")

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


def _end_to_end(raw_headers: list[tuple[bytes, bytes]]) -> list[tuple[bytes, bytes]]:
    return [(name, value) for name, value in raw_headers if name.decode("latin-1").lower() not in HOP_BY_HOP]


def _request_target(request: Request) -> str:
    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    query = request.scope.get("query_string") or b""
    if query:
        raw_path += b"?" + query
    return raw_path.decode("latin-1")


async def _relay(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    finally:
        await upstream.aclose()


class UpstreamForwarder:
    """Sends the inbound request to the upstream unchanged and streams the response back verbatim."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    async def forward(self, request: Request) -> Response:
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
        upstream_request = self._http.build_request(
            request.method,
            _request_target(request),
            headers=_end_to_end(request.headers.raw),
            content=request.stream() if has_body else None,
        )
        try:
            upstream = await self._http.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            UPSTREAM_ERROR_COUNTER.inc()
            LOGGER.error("upstream_unreachable", method=request.method, path=request.url.path, error=str(exc))
            return Response(status_code=status.HTTP_502_BAD_GATEWAY)

        response = StreamingResponse(_relay(upstream), status_code=upstream.status_code)
        response.raw_headers.extend(_end_to_end(upstream.headers.raw))
        return response
