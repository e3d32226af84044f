"""
unistream - Prometheus Metrics

Metrics exposed:
- unistream_raw_chunks_total: raw upstream chunks pulled, by provider
- unistream_events_total: canonical events emitted, by provider and type
- unistream_wire_parts_total: wire lines written, by code
- unistream_stream_errors_total: error events, by provider, code and fatality
- unistream_tool_calls_total: tool calls, by provider and outcome
- unistream_active_streams: streams currently open, by provider
- unistream_stream_duration_seconds: time from open to close, by provider and outcome

Usage:
    from unistream.observability.metrics import get_metrics, metrics_endpoint

    metrics = get_metrics()
    metrics.record_event(provider="openai", event_type="text-delta")

    @app.get("/metrics")
    async def metrics():
        return metrics_endpoint()
"""

import time
from typing import Dict, Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)
from starlette.responses import Response


class MetricsCollector:
    """Stream metrics bound to one Prometheus registry."""

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        self.raw_chunks_total = Counter(
            "unistream_raw_chunks_total",
            "Raw upstream chunks pulled",
            labelnames=["provider", "transport"],
            registry=registry,
        )

        self.events_total = Counter(
            "unistream_events_total",
            "Canonical stream events emitted",
            labelnames=["provider", "type"],
            registry=registry,
        )

        self.wire_parts_total = Counter(
            "unistream_wire_parts_total",
            "Wire protocol lines written",
            labelnames=["code"],
            registry=registry,
        )

        self.stream_errors_total = Counter(
            "unistream_stream_errors_total",
            "Error events observed in streams",
            labelnames=["provider", "code", "fatal"],
            registry=registry,
        )

        self.tool_calls_total = Counter(
            "unistream_tool_calls_total",
            "Tool calls by outcome (completed/incomplete/rejected)",
            labelnames=["provider", "outcome"],
            registry=registry,
        )

        self.active_streams = Gauge(
            "unistream_active_streams",
            "Streams currently open",
            labelnames=["provider"],
            registry=registry,
        )

        # model output typically spans 0.1s to a few minutes
        self.stream_duration = Histogram(
            "unistream_stream_duration_seconds",
            "Stream duration from open to close",
            labelnames=["provider", "outcome"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 300.0, float("inf")),
            registry=registry,
        )

    def record_raw_chunk(self, provider: str, transport: str):
        self.raw_chunks_total.labels(provider=provider, transport=transport).inc()

    def record_event(self, provider: str, event_type: str):
        self.events_total.labels(provider=provider, type=event_type).inc()

    def record_wire_part(self, code: str):
        self.wire_parts_total.labels(code=code).inc()

    def record_error(self, provider: str, code: str, fatal: bool):
        self.stream_errors_total.labels(
            provider=provider,
            code=code,
            fatal="true" if fatal else "false",
        ).inc()

    def record_tool_call(self, provider: str, outcome: str):
        self.tool_calls_total.labels(provider=provider, outcome=outcome).inc()

    def track_stream(self, provider: str) -> "StreamTracker":
        return StreamTracker(self, provider)


class StreamTracker:
    """
    Tracks one stream's active gauge and duration.

    Usage:
        tracker = metrics.track_stream("openai")
        tracker.start()
        ...
        tracker.finish("finished")
    """

    def __init__(self, collector: MetricsCollector, provider: str):
        self.collector = collector
        self.provider = provider
        self.start_time: Optional[float] = None
        self.outcome: Optional[str] = None

    def start(self) -> "StreamTracker":
        self.start_time = time.perf_counter()
        self.collector.active_streams.labels(provider=self.provider).inc()
        return self

    def finish(self, outcome: str):
        """Record the outcome once (finished, errored, aborted, closed)."""
        if self.start_time is None or self.outcome is not None:
            return
        self.outcome = outcome
        self.collector.active_streams.labels(provider=self.provider).dec()
        self.collector.stream_duration.labels(
            provider=self.provider,
            outcome=outcome,
        ).observe(time.perf_counter() - self.start_time)


_metrics_instance: Optional[MetricsCollector] = None
# a registry rejects duplicate metric names, so collectors are reused per registry
_collectors: Dict[int, MetricsCollector] = {}


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> MetricsCollector:
    """
    Setup metrics collection and make it the active collector.

    Safe to call multiple times with the same registry.
    """
    global _metrics_instance

    collector = _collectors.get(id(registry))
    if collector is None:
        collector = MetricsCollector(registry)
        _collectors[id(registry)] = collector

    _metrics_instance = collector
    return collector


def get_metrics() -> MetricsCollector:
    """Get the metrics collector, creating it on the default registry if needed."""
    global _metrics_instance
    if _metrics_instance is None:
        return setup_metrics(REGISTRY)
    return _metrics_instance


def metrics_endpoint() -> Response:
    """Prometheus exposition response for the active registry."""
    registry = get_metrics().registry
    return Response(
        content=generate_latest(registry),
        media_type=CONTENT_TYPE_LATEST,
    )
