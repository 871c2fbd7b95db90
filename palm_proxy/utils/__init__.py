from typing import Iterable
from urllib.parse import parse_qsl, urlencode

import httpx

SECRET_QUERY_PARAMS = ("key",)


def mask_token(text: str, token: str) -> str:
    return text.replace(token, f"{token[:4]}****") if token else text


def _mask_value(value: str) -> str:
    # Short values would be shown whole by a four character prefix
    if len(value) <= 8:
        return "****"
    return mask_token(value, value)


def redact_url(url, secret_params: Iterable[str] = SECRET_QUERY_PARAMS) -> str:
    """Render a URL for logs and span attributes with API keys masked."""
    url = httpx.URL(str(url))
    secret_params = set(secret_params)
    params = [
        (name, _mask_value(value) if name in secret_params else value)
        for name, value in parse_qsl(url.query.decode("ascii"), keep_blank_values=True)
    ]
    if not any(name in secret_params for name, _ in params):
        return str(url)
    return str(url.copy_with(query=urlencode(params, safe="*").encode("ascii")))
