import logging

from fastapi import APIRouter, Request

from palm_proxy.proxy.config import ProxyConfig
from palm_proxy.proxy.handler import ProxyHandler

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

proxy_handler = ProxyHandler(ProxyConfig.from_env())
logger.info(f"Proxying requests to {proxy_handler.config.upstream_base_url}")


def get_proxy_handler() -> ProxyHandler:
    return proxy_handler


def resolve_proxy_handler(request: Request) -> ProxyHandler:
    """Honour ``app.dependency_overrides`` on the plain Starlette route."""
    provider = request.app.dependency_overrides.get(
        get_proxy_handler, get_proxy_handler
    )
    return provider()


async def proxy_all(request: Request):
    """Catch-all route that proxies all requests to the upstream API."""
    return await resolve_proxy_handler(request)(request)


# A Starlette route without a method list accepts every method, including
# extension methods such as PROPFIND that an APIRoute would answer with 405.
router.add_route("/{path:path}", proxy_all, include_in_schema=False)
