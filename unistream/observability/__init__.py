"""
unistream - Observability Module

- Prometheus metrics for stream throughput, errors and tool calls
- OpenTelemetry span per stream
- Structured JSON logging with stream context injection

Usage:
    from unistream.observability import get_logger, get_metrics, stream_span

    logger = get_logger(__name__)
    metrics = get_metrics()
"""

from .metrics import (
    MetricsCollector,
    StreamTracker,
    get_metrics,
    setup_metrics,
    metrics_endpoint,
)
from .tracing import (
    TracingManager,
    get_tracer,
    setup_tracing,
    stream_span,
    open_stream_span,
    mark_span_error,
)
from .logging import (
    JSONFormatter,
    StructuredLogger,
    get_logger,
    setup_logging,
    LogContext,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "StreamTracker",
    "get_metrics",
    "setup_metrics",
    "metrics_endpoint",
    # Tracing
    "TracingManager",
    "get_tracer",
    "setup_tracing",
    "stream_span",
    "open_stream_span",
    "mark_span_error",
    # Logging
    "JSONFormatter",
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "LogContext",
]
