"""
OpenTelemetry tracing setup.
"""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer

from jobengine import __version__
from jobengine.config import get_settings

logger = logging.getLogger(__name__)

TRACER_NAME = "jobengine"


def setup_tracing(
    enable_console_export: bool = False,
    provider: TracerProvider | None = None,
) -> Tracer:
    """
    Set up OpenTelemetry tracing for the host process.

    Exports spans over OTLP when an endpoint is configured.

    Args:
        enable_console_export: If True, also export spans to console.
        provider: Use this provider instead of building one.

    Returns:
        Tracer: The tracer instance.
    """
    settings = get_settings()

    if provider is None:
        resource = Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
        provider = TracerProvider(resource=resource)

        if settings.otel_exporter_otlp_endpoint:
            provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=settings.otel_exporter_otlp_endpoint,
                        insecure=True,
                    )
                )
            )
            logger.info(
                "OTLP span export enabled",
                extra={"endpoint": settings.otel_exporter_otlp_endpoint}
            )

        if enable_console_export:
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    # Set the global tracer provider
    trace.set_tracer_provider(provider)

    return get_tracer()


def get_tracer() -> Tracer:
    """
    Get the engine tracer from the current global provider.

    Spans are no-ops until the host installs a provider.

    Returns:
        Tracer: The tracer instance.
    """
    return trace.get_tracer(TRACER_NAME, __version__)
