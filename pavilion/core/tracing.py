"""OpenTelemetry spans for the upload pipeline.

Spans are no-ops until ``configure_tracing`` installs a provider, so the
pipeline opens them unconditionally.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

TRACER_NAME = "pavilion.ingest"

logger = logging.getLogger(__name__)

_provider: Optional[TracerProvider] = None


def configure_tracing(
    service_name: str,
    service_version: str,
    console_export: bool = False,
) -> TracerProvider:
    """Install the global tracer provider once per process.

    Args:
        service_name: Reported as ``service.name``
        service_version: Reported as ``service.version``
        console_export: Print finished spans to stdout
    """
    global _provider
    if _provider is not None:
        return _provider

    provider = TracerProvider(
        resource=Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
    )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info(f"Tracing configured for {service_name} {service_version}")
    return provider


def shutdown_tracing() -> None:
    """Flush and drop the provider installed by configure_tracing."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None


def current_ids() -> tuple[Optional[str], Optional[str]]:
    """Trace and span id of the active span as hex, or (None, None)."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


@contextmanager
def pipeline_span(name: str, **attributes: Any) -> Iterator[Span]:
    """Open a span named ``ingest.<name>``.

    Keyword attributes are recorded as ``pavilion.<key>``; None values are
    left out.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    recorded = {f"pavilion.{key}": value for key, value in attributes.items() if value is not None}
    with tracer.start_as_current_span(f"ingest.{name}", attributes=recorded) as span:
        yield span


def record_failure(exception: BaseException) -> None:
    """Attach an exception to the active span and mark the span as failed."""
    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))
