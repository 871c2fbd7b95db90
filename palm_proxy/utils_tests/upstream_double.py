import asyncio
from typing import Iterable, List, Optional, Sequence, Tuple

import httpx
from starlette.requests import Request

from palm_proxy.proxy.config import ProxyConfig
from palm_proxy.proxy.handler import default_client_factory

TEST_UPSTREAM_URL = "https://upstream.test"


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered chunk by chunk, optionally failing midway."""

    def __init__(self, chunks: Iterable[bytes], error: Optional[Exception] = None):
        self.chunks = list(chunks)
        self.error = error

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class RecordingUpstream(httpx.AsyncBaseTransport):
    """
    Stand-in for the upstream API. Records each request the moment it
    arrives, before its body has been read, then answers with a canned
    streaming response or raises ``error``.
    """

    def __init__(
        self,
        status_code: int = 200,
        headers: Optional[Sequence[Tuple[str, str]]] = None,
        chunks: Iterable[bytes] = (b"",),
        error: Optional[Exception] = None,
        body_error: Optional[Exception] = None,
    ):
        self.status_code = status_code
        self.headers = list(headers or [])
        self.chunks = list(chunks)
        self.error = error
        self.body_error = body_error
        self.requests: List[httpx.Request] = []
        self.bodies: List[bytes] = []
        self.clients: List[httpx.AsyncClient] = []
        self.received = asyncio.Event()

    @property
    def called(self) -> bool:
        return bool(self.requests)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.received.set()
        if self.error is not None:
            raise self.error
        body = b"".join([chunk async for chunk in request.stream])
        self.bodies.append(body)
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            stream=ChunkStream(self.chunks, self.body_error),
            request=request,
        )

    def client_factory(self, config: ProxyConfig) -> httpx.AsyncClient:
        client = default_client_factory(config, transport=self)
        self.clients.append(client)
        return client


def make_request(
    method: str = "GET",
    path: str = "/v1/models",
    query_string: bytes = b"",
    headers: Sequence[Tuple[str, str]] = (),
    receive=None,
    http_version: str = "1.1",
) -> Request:
    """Build a Starlette request straight from an ASGI scope."""
    scope = {
        "type": "http",
        "http_version": http_version,
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "root_path": "",
        "query_string": query_string,
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in headers
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("proxy.test", 80),
    }

    async def _empty_receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive or _empty_receive)


def body_receiver(*chunks: bytes):
    """ASGI receive callable yielding ``chunks`` as one request body."""
    messages = [
        {"type": "http.request", "body": chunk, "more_body": i < len(chunks) - 1}
        for i, chunk in enumerate(chunks)
    ]

    async def receive():
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    return receive
