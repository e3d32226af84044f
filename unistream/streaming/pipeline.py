"""
unistream - Stream Pipeline

Composes the stages into one pull-driven chain:

    raw transport -> iter_raw_chunks -> normalize_events
                  -> assemble_tool_calls -> with_callbacks
                  -> encode_events -> StreamingTextResponse

Every stage is an async generator; nothing runs ahead of the consumer.

Usage:
    response = stream_response(
        upstream,                      # httpx.Response, SDK iterable, Bedrock frames
        "openai",
        callbacks=StreamCallbacks(on_final=save_transcript),
        data=data,
    )
"""

import asyncio
import json
from collections import deque
from typing import Any, AsyncIterable, AsyncIterator, Deque, Dict, List, Optional, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from ..adapters import get_adapter
from ..adapters.base import ProviderAdapter, TransportKind
from ..config import StreamConfig, WireProtocol
from ..core.errors import (
    InvalidToolArgumentsError,
    NoObjectGeneratedError,
    NoSuchToolError,
    UnistreamError,
    error_payload,
)
from ..core.models import ErrorEvent, Finish, Provider, StreamEvent, create_id_generator
from ..observability.logging import LogContext, get_logger
from ..observability.metrics import MetricsCollector, get_metrics
from ..observability.tracing import mark_span_error, open_stream_span
from .callbacks import StreamCallbacks, with_callbacks
from .cancellation import AbortSignal
from .iterators import RawSource, aclose_iterator, iter_raw_chunks
from .normalizer import normalize_events
from .partial_json import PartialObjectReconstructor, partial_objects
from .response import StreamingTextResponse, merge_stream_data
from .stream_data import StreamData
from .stream_parts import encode_events
from .tool_calls import assemble_tool_calls

logger = get_logger(__name__)

_stream_ids = create_id_generator(prefix="str", size=16)


# ============================================================
# Stages local to the pipeline
# ============================================================

def _reported_on_side_channel(event: ErrorEvent) -> bool:
    return event.fatal or isinstance(event.cause, (NoSuchToolError, InvalidToolArgumentsError))


async def _surface_errors(events: AsyncIterable[StreamEvent], data: StreamData) -> AsyncIterator[StreamEvent]:
    """
    Report errors the caller must see on the side channel.

    A fatal error is written before the body ends; a tool call the
    registry rejected is written ahead of the next primary line.
    """
    iterator = events.__aiter__()
    try:
        async for event in iterator:
            if isinstance(event, ErrorEvent) and _reported_on_side_channel(event) and not data.closed:
                data.append(error_payload(event.cause))
            yield event
    finally:
        await aclose_iterator(iterator)


def _error_code(cause: Any) -> str:
    if isinstance(cause, UnistreamError):
        return cause.code
    return type(cause).__name__


async def _observe(
    events: AsyncIterable[StreamEvent],
    *,
    provider: str,
    stream_id: str,
    mode: str,
    config: StreamConfig,
    metrics: Optional[MetricsCollector],
    signal: Optional[AbortSignal],
) -> AsyncIterator[StreamEvent]:
    """
    Metrics, tracing and log context around one stream.

    The log context is set only while an upstream pull is in progress,
    so the consumer's own context is never left modified.
    """
    ctx = LogContext(stream_id=stream_id, provider=provider, mode=mode)
    tracker = metrics.track_stream(provider).start() if metrics is not None else None
    span = None
    if config.tracing_enabled:
        span = open_stream_span(provider, mode, {"unistream.stream_id": stream_id})

    iterator = events.__aiter__()
    outcome = "closed"
    event_count = 0

    logger.debug("Stream opened", stream_id=stream_id, provider=provider, mode=mode)

    try:
        while True:
            token = LogContext.set_current(ctx)
            try:
                event = await iterator.__anext__()
            except StopAsyncIteration:
                break
            finally:
                LogContext.reset(token)

            event_count += 1
            if metrics is not None:
                metrics.record_event(provider, event.type.value)

            if isinstance(event, ErrorEvent):
                if metrics is not None:
                    metrics.record_error(provider, _error_code(event.cause), event.fatal)
                if event.fatal:
                    outcome = "errored"
                    logger.error(
                        "Stream terminated by error",
                        stream_id=stream_id,
                        provider=provider,
                        error_code=_error_code(event.cause),
                        error=str(event.cause),
                    )
                    if span is not None:
                        mark_span_error(span, event.cause)

            elif isinstance(event, Finish):
                outcome = "finished"
                if span is not None:
                    span.set_attribute("unistream.finish_reason", event.reason.value)
                    if event.usage is not None:
                        if event.usage.prompt_tokens is not None:
                            span.set_attribute("unistream.prompt_tokens", event.usage.prompt_tokens)
                        if event.usage.completion_tokens is not None:
                            span.set_attribute("unistream.completion_tokens", event.usage.completion_tokens)

            yield event

        if outcome == "closed" and signal is not None and signal.aborted:
            outcome = "aborted"

    finally:
        await aclose_iterator(iterator)
        if tracker is not None:
            tracker.finish(outcome)
        if span is not None:
            span.set_attribute("unistream.events", event_count)
            span.set_attribute("unistream.outcome", outcome)
            span.end()
        logger.debug(
            "Stream closed",
            stream_id=stream_id,
            provider=provider,
            outcome=outcome,
            events=event_count,
        )


# ============================================================
# Public entry points
# ============================================================

def create_event_stream(
    source: RawSource,
    provider: Union[str, Provider, ProviderAdapter],
    *,
    config: Optional[StreamConfig] = None,
    signal: Optional[AbortSignal] = None,
    callbacks: Optional[StreamCallbacks] = None,
    tools=None,
    data: Optional[StreamData] = None,
    transport: Optional[TransportKind] = None,
) -> AsyncIterator[StreamEvent]:
    """
    Canonical event stream for a provider's raw stream.

    Args:
        source: httpx streaming response, async/sync iterable of chunks or frames
        provider: Provider tag, Provider member or adapter
        config: Stream settings (defaults to StreamConfig())
        signal: Abort signal threaded to the raw transport
        callbacks: Lifecycle hooks
        tools: ToolRegistry used to reject unknown tools / invalid arguments
        data: Side channel that receives the error payload of a fatal
            error or of a tool call the registry rejected
        transport: Force a transport instead of detecting it

    Raises:
        UnsupportedProviderError: If no adapter is registered for ``provider``
    """
    adapter = get_adapter(provider)
    config = config or StreamConfig()
    metrics = get_metrics() if config.metrics_enabled else None
    provider_name = adapter.provider.value

    raw = iter_raw_chunks(
        source,
        adapter,
        transport=transport,
        signal=signal,
        sse_sentinel=config.sse_sentinel,
        metrics=metrics,
    )
    events = normalize_events(raw, adapter, signal=signal)
    events = assemble_tool_calls(
        events,
        id_generator=config.id_generator,
        provider=provider_name,
        metrics=metrics,
    )
    if callbacks is not None or tools is not None:
        events = with_callbacks(
            events,
            callbacks or StreamCallbacks(),
            tools=tools,
            provider=provider_name,
            metrics=metrics,
        )
    if data is not None:
        events = _surface_errors(events, data)

    return _observe(
        events,
        provider=provider_name,
        stream_id=_stream_ids(),
        mode=config.protocol.value,
        config=config,
        metrics=metrics,
        signal=signal,
    )


def encode_stream(
    source: RawSource,
    provider: Union[str, Provider, ProviderAdapter],
    *,
    config: Optional[StreamConfig] = None,
    signal: Optional[AbortSignal] = None,
    callbacks: Optional[StreamCallbacks] = None,
    tools=None,
    data: Optional[StreamData] = None,
    transport: Optional[TransportKind] = None,
) -> AsyncIterator[str]:
    """Wire lines for a provider's raw stream, side channel merged in."""
    config = config or StreamConfig()
    if data is not None and config.protocol != WireProtocol.DATA:
        raise ValueError("Stream data requires the data protocol")
    events = create_event_stream(
        source,
        provider,
        config=config,
        signal=signal,
        callbacks=callbacks,
        tools=tools,
        data=data,
        transport=transport,
    )
    metrics = get_metrics() if config.metrics_enabled else None
    lines = encode_events(events, config.protocol, metrics=metrics)
    return merge_stream_data(lines, data) if data is not None else lines


def stream_response(
    source: RawSource,
    provider: Union[str, Provider, ProviderAdapter],
    *,
    config: Optional[StreamConfig] = None,
    signal: Optional[AbortSignal] = None,
    callbacks: Optional[StreamCallbacks] = None,
    tools=None,
    data: Optional[StreamData] = None,
    transport: Optional[TransportKind] = None,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> StreamingTextResponse:
    """Streaming HTTP response for a provider's raw stream."""
    config = config or StreamConfig()
    events = create_event_stream(
        source,
        provider,
        config=config,
        signal=signal,
        callbacks=callbacks,
        tools=tools,
        data=data,
        transport=transport,
    )
    metrics = get_metrics() if config.metrics_enabled else None
    return StreamingTextResponse(
        encode_events(events, config.protocol, metrics=metrics),
        data=data,
        protocol=config.protocol,
        status_code=status_code,
        headers=headers,
    )


# ============================================================
# Structured object streaming
# ============================================================

class StreamObjectResult:
    """
    Partial and final views of a JSON object being streamed.

    ``partial_object_stream`` yields deduplicated snapshots and may be
    iterated once; ``object()`` drains whatever is left and returns the
    final value, validated against ``schema`` when one was given.
    """

    def __init__(self, events: AsyncIterable[StreamEvent], mode: str = "json", schema: Any = None):
        self.mode = mode
        self.schema = schema
        self._reconstructor = PartialObjectReconstructor()
        self._stream = self._snapshots(events)
        self._handed_out = False
        self._error: Optional[BaseException] = None

    async def _snapshots(self, events: AsyncIterable[StreamEvent]) -> AsyncIterator[Any]:
        snapshots = partial_objects(events, self.mode, self._reconstructor)
        try:
            async for snapshot in snapshots:
                yield snapshot
        except Exception as e:
            self._error = e
            raise
        finally:
            await snapshots.aclose()

    @property
    def partial_object_stream(self) -> AsyncIterator[Any]:
        if self._handed_out:
            raise RuntimeError("partial_object_stream can only be iterated once")
        self._handed_out = True
        return self._stream

    @property
    def text(self) -> str:
        """Raw JSON text received so far."""
        return self._reconstructor.buffer

    async def object(self) -> Any:
        """
        Final object.

        Raises:
            NoObjectGeneratedError: If the text is not valid JSON or
                fails schema validation
            UnistreamError: The fatal stream error, also when
                ``partial_object_stream`` already raised it
        """
        if self._error is None:
            async for _ in self._stream:
                pass
        if self._error is not None:
            raise self._error

        text = self._reconstructor.buffer
        try:
            value = json.loads(text)
        except ValueError as e:
            raise NoObjectGeneratedError(text, e) from e

        if self.schema is None:
            return value
        try:
            return TypeAdapter(self.schema).validate_python(value)
        except ValidationError as e:
            raise NoObjectGeneratedError(text, e) from e


def stream_object(
    events: AsyncIterable[StreamEvent],
    mode: str = "json",
    schema: Any = None,
) -> StreamObjectResult:
    """
    Stream a JSON object out of a canonical event stream.

    Args:
        events: Output of create_event_stream
        mode: "json" to read text deltas, "tool" to read the first
            tool call's argument fragments
        schema: Optional pydantic model or type for the final object
    """
    if mode not in ("json", "tool"):
        raise ValueError(f"Unsupported object mode: {mode}")
    return StreamObjectResult(events, mode=mode, schema=schema)


# ============================================================
# Tee
# ============================================================

class _TeeState:
    def __init__(self, source: AsyncIterable[Any], n: int):
        self.iterator = source.__aiter__()
        self.buffers: List[Deque[Any]] = [deque() for _ in range(n)]
        self.lock = asyncio.Lock()
        self.exhausted = False
        self.error: Optional[BaseException] = None


async def _tee_branch(state: _TeeState, buffer: Deque[Any]) -> AsyncIterator[Any]:
    while True:
        if buffer:
            yield buffer.popleft()
            continue

        async with state.lock:
            if buffer:
                continue
            if state.error is not None:
                raise state.error
            if state.exhausted:
                return
            try:
                item = await state.iterator.__anext__()
            except StopAsyncIteration:
                state.exhausted = True
                return
            except Exception as e:
                state.error = e
                raise
            for branch in state.buffers:
                branch.append(item)


def tee_stream(source: AsyncIterable[Any], n: int = 2) -> Tuple[AsyncIterator[Any], ...]:
    """
    Fork an async stream into ``n`` independent consumers.

    Each branch sees every item in order; the source is pulled once per
    item, by whichever branch gets there first.
    """
    if n < 1:
        raise ValueError("n must be at least 1")
    state = _TeeState(source, n)
    return tuple(_tee_branch(state, buffer) for buffer in state.buffers)
