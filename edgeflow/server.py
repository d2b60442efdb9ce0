from typing import Sequence

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
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from edgeflow.routes import router
from edgeflow.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

app = FastAPI()
instrumentator = Instrumentator()

instrumentator.instrument(app).expose(app)


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops ASGI body spans, which otherwise add one tiny
    span per chunk of every proxied body.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def _parse_otlp_headers(raw: str):
    pairs = [h.split("=", 1) for h in raw.split(",") if "=" in h]
    return {k.strip(): v.strip() for k, v in pairs} or None


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=_parse_otlp_headers(OTLP_HEADERS),
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app)

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app.include_router(router)
