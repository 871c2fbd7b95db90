from typing import Iterable, Optional, Sequence

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)

# ASGI events emitted once per body chunk. A relayed upload or download
# produces one span for each of them.
CHUNK_EVENT_TYPES = frozenset({"http.request", "http.response.body"})


class ChunkSpanDropper(SpanExporter):
    """Exports everything except the per-chunk ASGI receive/send spans."""

    def __init__(
        self, exporter: SpanExporter, event_types: Iterable[str] = CHUNK_EVENT_TYPES
    ):
        self.exporter = exporter
        self.event_types = frozenset(event_types)

    def _is_chunk_span(self, span: ReadableSpan) -> bool:
        attributes = span.attributes or {}
        return attributes.get("asgi.event.type") in self.event_types

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [span for span in spans if not self._is_chunk_span(span)]
        if not kept:
            return SpanExportResult.SUCCESS
        return self.exporter.export(kept)

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing(
    app: FastAPI,
    service_name: str,
    otlp_endpoint: Optional[str] = None,
    otlp_headers: str = "",
) -> TracerProvider:
    """Install the tracer provider, optional OTLP export and app instrumentation."""
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    trace.set_tracer_provider(provider)
    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint, headers=otlp_headers or None)
        provider.add_span_processor(BatchSpanProcessor(ChunkSpanDropper(exporter)))
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    return provider
