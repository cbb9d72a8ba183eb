from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
import pytest
from structlog.contextvars import get_contextvars

from sizegate.admission import gate as gate_module
from sizegate.common.settings import GatewaySettings
from sizegate.gateway.app import create_app
from sizegate.gateway.forward import _relay
from sizegate.graph.base import DataSourceUnavailable


class Body(httpx.AsyncByteStream):
    def __init__(self, *chunks: bytes, error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class Upstream:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[Body] = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            raise httpx.ConnectError("upstream down", request=request)
        self.requests.append(request)
        body = Body(b"upstream:", request.url.path.encode())
        self.bodies.append(body)
        return httpx.Response(
            200,
            stream=body,
            headers={"x-upstream": "yes", "content-type": "text/plain"},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), base_url="http://backend.test")


def _settings(**overrides) -> GatewaySettings:
    values = {"max_size_mb": 1, "backend_url": "http://backend.test", "cache_capacity": 100}
    values.update(overrides)
    return GatewaySettings(**values)


@asynccontextmanager
async def app_client(app):
    lifespan = app.router.lifespan_context(app)
    await lifespan.__aenter__()
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        await lifespan.__aexit__(None, None, None)


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.mark.asyncio
async def test_small_content_forwarded_to_upstream(make_source, sample_graph, upstream):
    source = make_source(sample_graph)
    app = create_app(_settings(), graph_source=source, upstream_client=upstream.client())

    async with app_client(app) as client:
        response = await client.get("/ipfs/Rsmall/index.html", params={"filename": "index.html"})

    assert response.status_code == 200
    assert response.content == b"upstream:/ipfs/Rsmall/index.html"
    assert response.headers["x-upstream"] == "yes"
    forwarded = upstream.requests[0]
    assert forwarded.url.path == "/ipfs/Rsmall/index.html"
    assert forwarded.url.params["filename"] == "index.html"


@pytest.mark.asyncio
async def test_oversized_content_rejected_with_empty_403(make_source, sample_graph, upstream):
    source = make_source(sample_graph)
    app = create_app(_settings(), graph_source=source, upstream_client=upstream.client())

    async with app_client(app) as client:
        first = await client.get("/ipfs/Qroot")
        calls_after_first = len(source.calls)
        second = await client.get("/ipfs/Qroot/sub/path")

    assert first.status_code == 403
    assert first.content == b""
    assert second.status_code == 403
    assert len(source.calls) == calls_after_first
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_lookup_failure_answers_empty_500(make_source, sample_graph, upstream):
    source = make_source(sample_graph, failing={"Rerr-broken"})
    app = create_app(_settings(), graph_source=source, upstream_client=upstream.client())

    async with app_client(app) as client:
        response = await client.get("/ipfs/Rerr")

    assert response.status_code == 500
    assert response.content == b""
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_non_content_paths_pass_through_ungated(make_source, upstream):
    source = make_source({})
    app = create_app(_settings(), graph_source=source, upstream_client=upstream.client())

    async with app_client(app) as client:
        root = await client.get("/")
        ipns = await client.get("/ipns/example.org/")
        bare = await client.get("/ipfs/")
        posted = await client.post("/api/upload", content=b"payload")

    assert [r.status_code for r in (root, ipns, bare, posted)] == [200, 200, 200, 200]
    assert source.calls == []
    assert upstream.requests[-1].method == "POST"
    assert upstream.requests[-1].content == b"payload"


@pytest.mark.asyncio
async def test_pinned_content_forwarded_regardless_of_size(make_source, sample_graph, upstream):
    source = make_source(sample_graph, pinned={"Qroot"})
    app = create_app(_settings(), graph_source=source, upstream_client=upstream.client())

    async with app_client(app) as client:
        response = await client.get("/ipfs/Qroot")

    assert response.status_code == 200
    assert source.calls == []


@pytest.mark.asyncio
async def test_hop_by_hop_headers_not_forwarded(make_source, upstream):
    app = create_app(_settings(), graph_source=make_source({}), upstream_client=upstream.client())

    async with app_client(app) as client:
        await client.get("/healthz", headers={"Proxy-Authorization": "Basic abc", "X-Trace": "1"})

    forwarded = upstream.requests[0]
    assert "proxy-authorization" not in forwarded.headers
    assert forwarded.headers["x-trace"] == "1"


@pytest.mark.asyncio
async def test_unreachable_upstream_answers_502(make_source, upstream):
    upstream.fail = True
    app = create_app(_settings(), graph_source=make_source({}), upstream_client=upstream.client())

    async with app_client(app) as client:
        response = await client.get("/ipfs/Qempty")

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_status_endpoint_reports_cache_state(make_source, sample_graph, upstream):
    source = make_source(sample_graph, pinned={"Qpinned"})
    app = create_app(_settings(cache_capacity=50), graph_source=source, upstream_client=upstream.client())

    async with app_client(app) as client:
        await client.get("/ipfs/Rdir")
        response = await client.get("/_sizegate/status")

    assert response.status_code == 200
    payload = response.json()
    assert payload["quota_bytes"] == 1_048_576
    assert payload["pinned"] == 1
    assert payload["cache_entries"] == 4
    assert payload["cache_capacity"] == 50
    assert upstream.requests[-1].url.path == "/ipfs/Rdir"


@pytest.mark.asyncio
async def test_metrics_endpoint_requires_token_when_configured(make_source, upstream):
    app = create_app(
        _settings(metrics_token="s3cret"),
        graph_source=make_source({}),
        upstream_client=upstream.client(),
    )

    async with app_client(app) as client:
        denied = await client.get("/_sizegate/metrics")
        allowed = await client.get("/_sizegate/metrics", headers={"Authorization": "Bearer s3cret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert "sizegate_admission_denied_total" in allowed.text


@pytest.mark.asyncio
async def test_health_endpoint_not_forwarded(make_source, upstream):
    app = create_app(_settings(), graph_source=make_source({}), upstream_client=upstream.client())

    async with app_client(app) as client:
        response = await client.get("/_sizegate/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_startup_fails_when_pin_listing_unavailable(make_source, upstream):
    app = create_app(_settings(), graph_source=make_source({}, pin_failure=True), upstream_client=upstream.client())

    with pytest.raises(DataSourceUnavailable):
        async with app_client(app):
            pass


@pytest.mark.asyncio
async def test_upstream_response_closed_after_relay(make_source, sample_graph, upstream):
    app = create_app(_settings(), graph_source=make_source(sample_graph), upstream_client=upstream.client())

    async with app_client(app) as client:
        response = await client.get("/ipfs/Rsmall")

    assert response.content == b"upstream:/ipfs/Rsmall"
    assert upstream.bodies[0].closed


@pytest.mark.asyncio
async def test_relay_closes_upstream_when_read_fails():
    body = Body(b"partial", error=httpx.ReadError("connection reset"))
    upstream = httpx.Response(200, stream=body)
    received = []

    with pytest.raises(httpx.ReadError):
        async for chunk in _relay(upstream):
            received.append(chunk)

    assert received == [b"partial"]
    assert body.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["PROPFIND", "MKCOL", "TRACE"])
async def test_extension_methods_forwarded(make_source, upstream, method):
    app = create_app(_settings(), graph_source=make_source({}), upstream_client=upstream.client())

    async with app_client(app) as client:
        response = await client.request(method, "/webdav/")

    assert response.status_code == 200
    assert upstream.requests[0].method == method


class ContextRecorder:
    def __init__(self) -> None:
        self.events: dict[str, dict] = {}

    def __getattr__(self, level: str):
        def log(event: str, **_fields) -> None:
            self.events[event] = get_contextvars()

        return log


@pytest.mark.asyncio
async def test_admission_logs_carry_request_context(make_source, sample_graph, upstream, monkeypatch):
    recorder = ContextRecorder()
    monkeypatch.setattr(gate_module, "LOGGER", recorder)
    app = create_app(_settings(), graph_source=make_source(sample_graph), upstream_client=upstream.client())

    async with app_client(app) as client:
        await client.get("/ipfs/Qroot/file")

    context = recorder.events["admission_denied"]
    assert context["cid"] == "Qroot"
    assert context["path"] == "/ipfs/Qroot/file"
    assert context["method"] == "GET"
    assert "cid" not in get_contextvars()
