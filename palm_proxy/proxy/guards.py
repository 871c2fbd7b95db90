"""
Short-circuit checks run before a request is forwarded.

Each guard takes the inbound request and the proxy configuration and either
returns a complete response or ``None`` to let the next guard (and finally
the upstream forwarding) handle the request. Order matters: a CORS preflight
may target any path, including ``/``.
"""

from typing import Callable, Optional, Tuple

from fastapi import Request
from fastapi.responses import HTMLResponse, Response

from palm_proxy.proxy.config import ProxyConfig

LANDING_PAGE_TITLE = "Google PaLM API proxy"

LANDING_PAGE = f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{LANDING_PAGE_TITLE}</title>
</head>
<body>
  <h1 id="google-palm-api-proxy">{LANDING_PAGE_TITLE}</h1>
  <p>Tips: This service is a reverse proxy that works around problems such as location restrictions in Google APIs.</p>
  <p>If you have any of the following requirements, you may need the support of this project.</p>
  <ol>
  <li>When you see the error message &quot;User location is not supported for the API use&quot; when calling the Google PaLM API</li>
  <li>You want to customize the Google PaLM API</li>
  </ol>
  <p>Point your client at this host instead of generativelanguage.googleapis.com; paths, query parameters and API keys are passed through unchanged.</p>
</body>
</html>
"""

Guard = Callable[[Request, ProxyConfig], Optional[Response]]


def preflight_guard(request: Request, config: ProxyConfig) -> Optional[Response]:
    if request.method != "OPTIONS":
        return None
    return Response(status_code=204, headers=dict(config.cors_headers))


def landing_page_guard(request: Request, config: ProxyConfig) -> Optional[Response]:
    if request.url.path != "/":
        return None
    headers = {**config.cors_headers, "content-type": "text/html"}
    return HTMLResponse(LANDING_PAGE, headers=headers)


DEFAULT_GUARDS: Tuple[Guard, ...] = (preflight_guard, landing_page_guard)


def run_guards(guards, request: Request, config: ProxyConfig) -> Optional[Response]:
    for guard in guards:
        response = guard(request, config)
        if response is not None:
            return response
    return None
