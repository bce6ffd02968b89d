"""OpenTelemetry wiring and the span helper for payment provider calls."""

from contextlib import contextmanager
from time import perf_counter

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from chipledger.common.config import settings
from chipledger.common.metrics import provider_latency_seconds


tracer = trace.get_tracer("chipledger")


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider; spans are exported only when an OTLP endpoint is set."""

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


@contextmanager
def provider_call(operation: str, service_name: str):
    """Span plus latency sample around one request to the payment provider."""

    start = perf_counter()
    with tracer.start_as_current_span(f"payment_provider.{operation}") as span:
        span.set_attribute("payment_provider.operation", operation)
        try:
            yield span
        finally:
            provider_latency_seconds.labels(service=service_name, operation=operation).observe(
                perf_counter() - start
            )
