"""OpenTelemetry instrumentation for webhook-service.

Tracing and metrics export are enabled only when ``otel_exporter_endpoint``
is set. ``get_tracer`` / ``get_meter`` are safe to call at import time either
way: until a provider is installed they hand out no-op instruments.
"""
from __future__ import annotations

import structlog
from aiohttp import web
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

_tracer_provider: TracerProvider | None = None
_meter_provider: MeterProvider | None = None


def setup_otel(app: web.Application) -> None:
    """Install OTLP tracer and meter providers if an exporter endpoint is configured."""
    global _tracer_provider, _meter_provider

    endpoint = settings.otel_exporter_endpoint
    if not endpoint:
        logger.info("otel_exporter_endpoint not set, OpenTelemetry disabled")
        return

    base = str(endpoint).rstrip("/")
    resource = Resource.create({SERVICE_NAME: settings.app_name})

    _tracer_provider = TracerProvider(resource=resource)
    _tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{base}/v1/traces")))
    trace.set_tracer_provider(_tracer_provider)

    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=f"{base}/v1/metrics"))
    _meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(_meter_provider)

    AioHttpServerInstrumentor().instrument(server=app)
    logger.info("OpenTelemetry enabled", endpoint=base, service=settings.app_name)


async def shutdown_otel(_app: web.Application) -> None:
    """Flush pending spans and metrics on application cleanup."""
    global _tracer_provider, _meter_provider
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None
    if _meter_provider is not None:
        _meter_provider.shutdown()
        _meter_provider = None


def get_tracer(name: str = __name__) -> trace.Tracer:
    return trace.get_tracer(name)


def get_meter(name: str = __name__) -> metrics.Meter:
    return metrics.get_meter(name)
