import httpx
import pytest
from fastapi.testclient import TestClient

from palm_proxy.proxy.config import DEFAULT_CORS_HEADERS, ProxyConfig
from palm_proxy.proxy.handler import ProxyHandler
from palm_proxy.proxy.route import get_proxy_handler
from palm_proxy.utils_tests.upstream_double import TEST_UPSTREAM_URL, RecordingUpstream


@pytest.fixture
def upstream():
    return RecordingUpstream(
        headers=[("content-type", "application/json")], chunks=[b'{"ok": true}']
    )


@pytest.fixture
def client(upstream):
    from palm_proxy.server import app

    handler = ProxyHandler(
        ProxyConfig(upstream_base_url=TEST_UPSTREAM_URL),
        client_factory=upstream.client_factory,
    )
    app.dependency_overrides[get_proxy_handler] = lambda: handler
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_landing_page(client, upstream):
    response = client.get("/")

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/html"
    assert "Google PaLM API proxy" in response.text
    assert response.headers["access-control-allow-origin"] == "*"
    assert not upstream.called


@pytest.mark.parametrize("path", ["/", "/v1/models", "/v1beta/models/gemini-pro:generateContent"])
def test_preflight(client, upstream, path):
    response = client.options(
        path,
        headers={
            "origin": "https://app.example",
            "access-control-request-method": "POST",
        },
    )

    assert response.status_code == 204
    assert response.content == b""
    assert dict(response.headers) == DEFAULT_CORS_HEADERS
    assert not upstream.called


def test_get_strips_reserved_query_param(client, upstream):
    response = client.get("/v1/models?key=abc&_path=ignored")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    sent = upstream.requests[0]
    assert str(sent.url) == f"{TEST_UPSTREAM_URL}/v1/models?key=abc"


@pytest.mark.parametrize("method", ["PROPFIND", "TRACE", "PURGE"])
def test_any_method_is_forwarded(client, upstream, method):
    response = client.request(method, "/v1/models?key=abc")

    assert response.status_code == 200
    assert upstream.requests[0].method == method
    assert str(upstream.requests[0].url) == f"{TEST_UPSTREAM_URL}/v1/models?key=abc"


def test_head_is_forwarded(client, upstream):
    response = client.head("/v1/models")

    assert response.status_code == 200
    assert upstream.requests[0].method == "HEAD"


def test_docs_routes_are_proxied(client, upstream):
    """FastAPI's own documentation routes do not shadow upstream paths."""
    client.get("/docs")
    client.get("/openapi.json")

    assert [r.url.path for r in upstream.requests] == ["/docs", "/openapi.json"]


def test_post_body_round_trip(client, upstream):
    payload = b'{"prompt": {"text": "Write a haiku"}}'

    response = client.post(
        "/v1beta2/models/text-bison-001:generateText?key=k",
        content=payload,
        headers={
            "content-type": "application/json",
            "cookie": "session=secret",
            "x-goog-api-client": "genai-js/0.1.0",
        },
    )

    assert response.status_code == 200
    assert upstream.bodies == [payload]
    sent = upstream.requests[0]
    assert sent.method == "POST"
    assert sent.headers["x-goog-api-client"] == "genai-js/0.1.0"
    assert "cookie" not in sent.headers


def test_streamed_request_body(client, upstream):
    def generate():
        yield b'{"part": 1,'
        yield b' "part2": 2}'

    response = client.put("/v1/files/abc", content=generate())

    assert response.status_code == 200
    assert upstream.bodies == [b'{"part": 1, "part2": 2}']


def test_rate_limit_status_relayed():
    upstream = RecordingUpstream(
        status_code=429,
        headers=[("retry-after", "30"), ("access-control-allow-origin", "https://a.example")],
        chunks=[b"quota exceeded"],
    )
    from palm_proxy.server import app

    app.dependency_overrides[get_proxy_handler] = lambda: ProxyHandler(
        ProxyConfig(upstream_base_url=TEST_UPSTREAM_URL),
        client_factory=upstream.client_factory,
    )
    try:
        with TestClient(app) as client:
            response = client.get("/v1/models")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 429
    assert response.headers["retry-after"] == "30"
    assert response.headers["access-control-allow-origin"] == "https://a.example"
    assert response.headers["access-control-allow-methods"] == "*"
    assert response.headers["access-control-allow-headers"] == "*"
    assert response.text == "quota exceeded"


def test_upstream_unreachable_is_not_a_silent_200():
    upstream = RecordingUpstream(error=httpx.ConnectError("Connection refused"))
    from palm_proxy.server import app

    app.dependency_overrides[get_proxy_handler] = lambda: ProxyHandler(
        ProxyConfig(upstream_base_url=TEST_UPSTREAM_URL),
        client_factory=upstream.client_factory,
    )
    try:
        with TestClient(app) as client:
            response = client.get("/v1/models")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 502
    assert upstream.called
