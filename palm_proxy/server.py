import uvicorn
from fastapi import FastAPI

from palm_proxy.proxy.route import router
from palm_proxy.tracing import configure_tracing
from palm_proxy.vars import HOST, OTLP_ENDPOINT, OTLP_HEADERS, PORT, SERVICE_NAME

# Every path belongs to the upstream, so FastAPI's own docs routes are off.
app = FastAPI(
    title="Google PaLM API proxy",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

configure_tracing(app, SERVICE_NAME, OTLP_ENDPOINT, OTLP_HEADERS)

app.include_router(router)


if __name__ == "__main__":
    uvicorn.run("palm_proxy.server:app", host=HOST, port=PORT, reload=False)
