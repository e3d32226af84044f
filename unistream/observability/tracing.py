"""
unistream - OpenTelemetry Tracing

One span per stream, covering open to close.

Usage:
    from unistream.observability.tracing import setup_tracing, stream_span

    setup_tracing(service_name="unistream", console_export=True)

    with stream_span("openai", mode="data") as span:
        span.set_attribute("unistream.events", 12)
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter
from opentelemetry.trace import SpanKind, Status, StatusCode

TRACER_NAME = "unistream"


class TracingManager:
    """Owns the tracer provider used for stream spans."""

    def __init__(
        self,
        service_name: str = "unistream",
        service_version: str = "0.1.0",
        console_export: bool = False,
        exporter: Optional[SpanExporter] = None,
    ):
        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if console_export:
            self.provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        if exporter is not None:
            self.provider.add_span_processor(SimpleSpanProcessor(exporter))

        self.tracer = self.provider.get_tracer(TRACER_NAME, service_version)

    def shutdown(self):
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "unistream",
    service_version: str = "0.1.0",
    console_export: bool = False,
    exporter: Optional[SpanExporter] = None,
) -> TracingManager:
    """
    Setup stream tracing.

    OTEL_CONSOLE_EXPORT=true enables the console exporter.
    """
    global _tracing_instance

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        console_export=console_export,
        exporter=exporter,
    )
    return _tracing_instance


def get_tracer() -> trace.Tracer:
    """
    Tracer for stream spans.

    Falls back to the globally configured OpenTelemetry provider
    when setup_tracing() was not called.
    """
    if _tracing_instance is not None:
        return _tracing_instance.tracer
    return trace.get_tracer(TRACER_NAME)


def _span_attributes(provider: str, mode: str, attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "unistream.provider": provider,
        "unistream.mode": mode,
    }
    if attributes:
        result.update({k: v for k, v in attributes.items() if v is not None})
    return result


@contextmanager
def stream_span(
    provider: str,
    mode: str,
    attributes: Optional[Dict[str, Any]] = None,
) -> Iterator[trace.Span]:
    """Span around a single stream; exceptions are recorded on it."""
    with get_tracer().start_as_current_span(
        f"unistream.stream.{provider}",
        kind=SpanKind.INTERNAL,
        attributes=_span_attributes(provider, mode, attributes),
        record_exception=True,
        set_status_on_exception=True,
    ) as span:
        yield span


def open_stream_span(
    provider: str,
    mode: str,
    attributes: Optional[Dict[str, Any]] = None,
) -> trace.Span:
    """
    Start a stream span without making it current.

    Async generators resume in whatever context pulls them, so the
    pipeline holds the span explicitly and calls ``span.end()`` itself.
    """
    return get_tracer().start_span(
        f"unistream.stream.{provider}",
        kind=SpanKind.INTERNAL,
        attributes=_span_attributes(provider, mode, attributes),
    )


def mark_span_error(span: trace.Span, cause: Any):
    """Flag a span as failed without an exception propagating through it."""
    if isinstance(cause, BaseException):
        span.record_exception(cause)
    span.set_status(Status(StatusCode.ERROR, str(cause)))
