from .config import ProxyConfig
from .handler import ProxyHandler, build_upstream_url, merge_response_headers
from .headers import DEFAULT_ALLOWED_HEADERS, pick_headers

__all__ = [
    "ProxyConfig",
    "ProxyHandler",
    "build_upstream_url",
    "merge_response_headers",
    "pick_headers",
    "DEFAULT_ALLOWED_HEADERS",
]
