from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

from palm_proxy import vars as settings
from palm_proxy.proxy.headers import (
    DEFAULT_ALLOWED_HEADERS,
    HeaderRule,
    compile_rules,
)

DEFAULT_CORS_HEADERS: Dict[str, str] = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "*",
    "access-control-allow-headers": "*",
}

# Stripped from the forwarded query string. Kept for compatibility with
# clients that still send it; it carries no routing information.
RESERVED_QUERY_PARAMS: FrozenSet[str] = frozenset({"_path"})

BODY_METHODS: FrozenSet[str] = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class ProxyConfig:
    """
    Everything the proxy handler needs to know about its upstream.

    Attributes:
        upstream_base_url: Scheme and host every request is relocated to.
        allowed_headers: Request header rules, see ``pick_headers``.
        cors_headers: Defaults added to every response; upstream headers
            with the same name win.
        reserved_query_params: Query parameters never forwarded.
        body_methods: Methods whose request body is streamed upstream.
        timeout: Upstream timeout in seconds, ``None`` for no timeout.
    """

    upstream_base_url: str = settings.UPSTREAM_BASE_URL
    allowed_headers: Tuple[HeaderRule, ...] = DEFAULT_ALLOWED_HEADERS
    cors_headers: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_CORS_HEADERS)
    )
    reserved_query_params: FrozenSet[str] = RESERVED_QUERY_PARAMS
    body_methods: FrozenSet[str] = BODY_METHODS
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        allowed = (
            compile_rules(settings.PROXY_ALLOWED_HEADERS)
            if settings.PROXY_ALLOWED_HEADERS
            else DEFAULT_ALLOWED_HEADERS
        )
        return cls(
            upstream_base_url=settings.UPSTREAM_BASE_URL,
            allowed_headers=allowed,
            timeout=settings.PROXY_TIMEOUT,
        )
