import logging
from typing import AsyncIterator, Callable, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx
from fastapi import HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from palm_proxy.proxy.config import ProxyConfig
from palm_proxy.proxy.guards import DEFAULT_GUARDS, run_guards
from palm_proxy.proxy.headers import HOP_BY_HOP_HEADERS, pick_headers
from palm_proxy.utils import redact_url

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

ClientFactory = Callable[[ProxyConfig], httpx.AsyncClient]


def default_client_factory(
    config: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    client = httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(config.timeout),
        follow_redirects=False,  # Redirects are relayed to the caller
    )
    # Outbound headers are exactly the allow-listed inbound ones. A default
    # accept-encoding would also get bodies compressed that the caller never
    # asked to be compressed.
    for name in list(client.headers):
        del client.headers[name]
    return client


def build_upstream_url(
    config: ProxyConfig, path: str, query_params: Iterable[Tuple[str, str]]
) -> httpx.URL:
    """
    Relocate an inbound path and query onto the configured upstream.

    The host always comes from ``config``; the path is kept verbatim and
    every query parameter except the reserved ones is copied in order,
    repeated keys included.
    """
    if not path.startswith("/"):
        path = "/" + path
    params = [
        (key, value)
        for key, value in query_params
        if key not in config.reserved_query_params
    ]
    components = {"path": path}
    query = urlencode(params)
    if query:
        components["query"] = query.encode("ascii")
    return httpx.URL(config.upstream_base_url).copy_with(**components)


def merge_response_headers(
    cors_headers: Mapping[str, str], upstream_headers: Iterable[Tuple[str, str]]
) -> List[Tuple[str, str]]:
    """CORS defaults first, overridden by (every occurrence of) upstream headers."""
    relayed = [
        (name.lower(), value)
        for name, value in upstream_headers
        if name.lower() not in HOP_BY_HOP_HEADERS
    ]
    overridden = {name for name, _ in relayed}
    merged = [
        (name, value)
        for name, value in cors_headers.items()
        if name.lower() not in overridden
    ]
    return merged + relayed


def _inbound_path(request: Request) -> str:
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").split("?", 1)[0]
    return request.url.path


def has_body(request: Request) -> bool:
    """
    Whether the inbound request carries a body worth streaming upstream.

    HTTP/1.x frames a body with content-length or transfer-encoding. HTTP/2
    and HTTP/3 may send data frames without either header, so there a body
    is assumed unless content-length says it is empty.
    """
    if "transfer-encoding" in request.headers:
        return True
    if "content-length" in request.headers:
        try:
            return int(request.headers["content-length"]) > 0
        except ValueError:
            return False
    return request.scope.get("http_version", "1.1") not in ("1.0", "1.1")


async def _iter_body(request: Request) -> AsyncIterator[bytes]:
    async for chunk in request.stream():
        if chunk:
            yield chunk


async def _close(upstream: httpx.Response, client: httpx.AsyncClient) -> None:
    await upstream.aclose()
    await client.aclose()


async def relay_body(
    upstream: httpx.Response, client: httpx.AsyncClient, upstream_url: str
) -> AsyncIterator[bytes]:
    """Relay the upstream body as received, content-encoding untouched."""
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        logger.error(f"Upstream aborted while relaying body from {upstream_url}: {e}")
        raise
    finally:
        await _close(upstream, client)


class ProxyHandler:
    """
    Forwards one inbound request to the fixed upstream and streams the
    answer back. Holds configuration only; nothing is shared between
    requests apart from it.
    """

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        client_factory: ClientFactory = default_client_factory,
        guards=DEFAULT_GUARDS,
    ):
        self.config = config or ProxyConfig()
        self.client_factory = client_factory
        self.guards = tuple(guards)

    async def __call__(self, request: Request) -> Response:
        short_circuit = run_guards(self.guards, request, self.config)
        if short_circuit is not None:
            span = trace.get_current_span()
            span.set_attribute("proxy.short_circuit", short_circuit.status_code)
            return short_circuit
        return await self.forward(request)

    def build_request(self, client: httpx.AsyncClient, request: Request) -> httpx.Request:
        url = build_upstream_url(
            self.config, _inbound_path(request), request.query_params.multi_items()
        )
        headers = pick_headers(request.headers, self.config.allowed_headers)
        content = None
        if request.method in self.config.body_methods and has_body(request):
            # An async iterator is sent chunked, so the upstream call starts
            # before the inbound body has been fully received.
            content = _iter_body(request)
        return client.build_request(
            request.method, url, headers=headers, content=content
        )

    async def forward(self, request: Request) -> Response:
        with tracer.start_as_current_span("proxy_request") as span:
            client = self.client_factory(self.config)
            try:
                upstream_request = self.build_request(client, request)
                upstream_url = redact_url(upstream_request.url)
                span.set_attribute("proxy.method", request.method)
                span.set_attribute("proxy.upstream_url", upstream_url)

                logger.debug(
                    f"Proxying {request.method} {request.url.path} -> {upstream_url}"
                )

                try:
                    upstream = await client.send(upstream_request, stream=True)
                except httpx.TimeoutException as e:
                    logger.error(f"Upstream timeout for {upstream_url}: {e}")
                    span.set_attribute("proxy.error", "timeout")
                    raise HTTPException(status_code=504, detail="Gateway timeout")
                except httpx.ConnectError as e:
                    logger.error(f"Failed to connect to upstream {upstream_url}: {e}")
                    span.set_attribute("proxy.error", "connection_failed")
                    raise HTTPException(
                        status_code=502,
                        detail="Bad gateway - cannot connect to upstream",
                    )
                except httpx.HTTPError as e:
                    logger.error(
                        f"Upstream error for {upstream_url}: {e}", exc_info=True
                    )
                    span.set_attribute("proxy.error", str(e))
                    raise HTTPException(
                        status_code=502, detail=f"Bad gateway: {str(e)}"
                    )
            except BaseException:
                # Covers caller disconnects during upload and bad inbound URLs
                await client.aclose()
                raise

            span.set_attribute("proxy.status_code", upstream.status_code)

            response = StreamingResponse(
                relay_body(upstream, client, upstream_url),
                status_code=upstream.status_code,
                background=BackgroundTask(_close, upstream, client),
            )
            for name, value in merge_response_headers(
                self.config.cors_headers, upstream.headers.multi_items()
            ):
                response.headers.append(name, value)
            return response
