import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "palm-proxy")

UPSTREAM_BASE_URL = os.getenv(
    "UPSTREAM_BASE_URL", "https://generativelanguage.googleapis.com"
).rstrip("/")
# Replaces the default request header allow-list when set
PROXY_ALLOWED_HEADERS = [
    h.strip().lower()
    for h in os.getenv("PROXY_ALLOWED_HEADERS", "").split(",")
    if h.strip()
]


def _parse_timeout(raw: str):
    raw = (raw or "").strip()
    if not raw:
        return None
    return float(raw)


PROXY_TIMEOUT = _parse_timeout(os.getenv("PROXY_TIMEOUT", ""))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

HOST = os.environ.get("HOSTNAME", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
