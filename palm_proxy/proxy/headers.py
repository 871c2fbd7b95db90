import re
from typing import Iterable, Pattern, Tuple, Union

import httpx

HeaderRule = Union[str, Pattern[str]]

# Request headers allowed through to the upstream API. Names are lowercase
# because ASGI servers normalise header names that way.
DEFAULT_ALLOWED_HEADERS: Tuple[HeaderRule, ...] = (
    "content-type",
    "authorization",
    "x-goog-api-client",
    "x-goog-api-key",
    "accept-encoding",
)

# Connection-level headers describing a single hop (RFC 7230 section 6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


def _matches(name: str, rule: HeaderRule) -> bool:
    if isinstance(rule, str):
        return rule == name
    return rule.search(name) is not None


def _iter_items(headers) -> Iterable[Tuple[str, str]]:
    if hasattr(headers, "multi_items"):
        return headers.multi_items()
    if hasattr(headers, "items"):
        return headers.items()
    return headers


def pick_headers(headers, rules: Iterable[HeaderRule]) -> httpx.Headers:
    """
    Return a copy of ``headers`` holding only the entries allowed by ``rules``.

    ``headers`` may be a Starlette/httpx header collection (every occurrence
    of a repeated name is kept), a plain mapping, or an iterable of
    ``(name, value)`` pairs. A rule is either an exact header name or a
    compiled regular expression. Matching is case-sensitive against the name
    as stored.
    """
    rules = tuple(rules)
    picked = [
        (name, value)
        for name, value in _iter_items(headers)
        if any(_matches(name, rule) for rule in rules)
    ]
    return httpx.Headers(picked)


def compile_rules(names: Iterable[str]) -> Tuple[HeaderRule, ...]:
    """Turn configured names into rules; ``re:`` prefixes mark patterns."""
    rules = []
    for name in names:
        if name.startswith("re:"):
            rules.append(re.compile(name[3:]))
        else:
            rules.append(name)
    return tuple(rules)
