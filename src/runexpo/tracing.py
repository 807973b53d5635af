"""OpenTelemetry setup for launch sequence traces.

Spans are only exported after init_telemetry(); until then the orchestrator
talks to the no-op tracer that opentelemetry-api hands out by default.
"""

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

from . import __version__

ENDPOINT_ENV = "OTEL_EXPORTER_OTLP_ENDPOINT"
DEFAULT_ENDPOINT = "http://localhost:4317"

_provider: Optional[TracerProvider] = None


def telemetry_requested(flag: bool = False) -> bool:
    """True when --trace was given or an OTLP endpoint is configured."""
    return flag or bool(os.getenv(ENDPOINT_ENV))


def build_provider(service_name: str, exporter: SpanExporter) -> TracerProvider:
    """Create a provider tagged with the runexpo resource attributes."""
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": os.getenv("DEPLOYMENT_ENV", "development"),
        }
    )
    provider = TracerProvider(resource=resource)
    # A sequence lasts seconds to minutes; flush often so stages show up live
    provider.add_span_processor(BatchSpanProcessor(exporter, schedule_delay_millis=1000))
    return provider


def init_telemetry(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
) -> None:
    """Install a global tracer provider exporting over OTLP/gRPC.

    Args:
        service_name: defaults to OTEL_SERVICE_NAME, then "runexpo"
        otlp_endpoint: defaults to OTEL_EXPORTER_OTLP_ENDPOINT, then localhost:4317
    """
    global _provider
    if _provider is not None:
        return

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "runexpo")
    otlp_endpoint = otlp_endpoint or os.getenv(ENDPOINT_ENV, DEFAULT_ENDPOINT)

    _provider = build_provider(service_name, OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    trace.set_tracer_provider(_provider)
    logging.info("[runexpo.tracing] Exporting spans to %s as %s", otlp_endpoint, service_name)


def shutdown_telemetry() -> None:
    """Flush pending spans and stop exporting."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    logging.info("[runexpo.tracing] Telemetry stopped")


__all__ = ["build_provider", "init_telemetry", "shutdown_telemetry", "telemetry_requested"]
