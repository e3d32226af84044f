"""
unistream - Async Delta Iterators

Adapts each provider transport into one lazy async sequence of raw
chunks (decoded mappings), interleaved with ``ErrorEvent`` values for
anything that could not be read.

Transports:
- SSE: bytes or str pieces, or an ``httpx.Response`` opened with
  ``stream=True``. Split into events, ``data:`` payloads JSON-decoded,
  the provider sentinel (e.g. ``[DONE]``) ends the stream.
- OBJECTS: SDK chunks (dicts or pydantic models), one per item.
- BINARY_FRAMES: Bedrock-style ``{"chunk": {"bytes": ...}}`` frames.

Error isolation:
- A malformed SSE payload or a bad binary frame is a non-fatal
  ``ErrorEvent``; the next chunk is read normally.
- Invalid UTF-8 in an SSE byte stream, a transport exception or a
  provider exception frame is fatal and ends the sequence.
"""

import base64
import binascii
import json
from typing import Any, AsyncIterable, AsyncIterator, Iterable, List, Mapping, Optional, Union

import httpx

from ..adapters.base import ProviderAdapter, TransportKind, as_mapping
from ..core.errors import ProviderStreamError, StreamDecodeError, classify_transport_error
from ..core.models import ErrorEvent
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector
from .cancellation import AbortSignal
from .sse import SSEDecoder, SSEEvent

logger = get_logger(__name__)

RawSource = Union[httpx.Response, AsyncIterable[Any], Iterable[Any], bytes, str]
RawItem = Union[Mapping[str, Any], ErrorEvent]

# exception members of the Bedrock response stream union
BEDROCK_EXCEPTION_KEYS = (
    "internalServerException",
    "modelStreamErrorException",
    "modelTimeoutException",
    "throttlingException",
    "validationException",
    "serviceUnavailableException",
)


async def _pull(source: RawSource, signal: Optional[AbortSignal]) -> AsyncIterator[Any]:
    """Yield transport items, checking the abort signal before each read."""
    if signal is not None and signal.aborted:
        return

    if isinstance(source, httpx.Response):
        if source.is_error:
            source.raise_for_status()
        iterator = source.aiter_bytes().__aiter__()
    elif isinstance(source, (bytes, str)):
        yield source
        return
    elif hasattr(source, "__aiter__"):
        iterator = source.__aiter__()
    else:
        for item in source:
            if signal is not None and signal.aborted:
                return
            yield item
        return

    while True:
        if signal is not None and signal.aborted:
            return
        try:
            item = await iterator.__anext__()
        except StopAsyncIteration:
            return
        yield item


async def aclose_iterator(iterator: Any):
    """
    Close an async iterator if it supports it.

    Stages call this when they stop pulling early, so the close walks
    up the chain to the transport instead of waiting for finalization.
    """
    aclose = getattr(iterator, "aclose", None)
    if callable(aclose):
        await aclose()


async def _close_source(source: RawSource):
    if isinstance(source, httpx.Response):
        await source.aclose()
        return
    await aclose_iterator(source)


def detect_transport(item: Any, adapter: ProviderAdapter) -> TransportKind:
    """Pick the transport from the first item when the adapter supports several."""
    if len(adapter.transports) == 1:
        return next(iter(adapter.transports))

    if isinstance(item, (bytes, bytearray, memoryview, str)) and adapter.supports(TransportKind.SSE):
        return TransportKind.SSE
    if isinstance(item, Mapping) and "chunk" in item and adapter.supports(TransportKind.BINARY_FRAMES):
        return TransportKind.BINARY_FRAMES
    if adapter.supports(TransportKind.OBJECTS):
        return TransportKind.OBJECTS
    return adapter.default_transport


# ============================================================
# Per-transport readers
# ============================================================

class SSEChunkReader:
    """SSE framing plus payload decoding for one stream."""

    def __init__(self, provider: str, sentinel: Optional[str] = None):
        self.provider = provider
        self.sentinel = sentinel
        self._decoder = SSEDecoder()
        self.done = False

    def feed(self, piece: Union[bytes, bytearray, memoryview, str]) -> List[RawItem]:
        if isinstance(piece, (bytearray, memoryview)):
            piece = bytes(piece)
        try:
            events = self._decoder.decode(piece)
        except UnicodeDecodeError as e:
            raise StreamDecodeError(self.provider, f"Invalid UTF-8 in event stream: {e}") from e
        return self._read(events)

    def flush(self) -> List[RawItem]:
        try:
            events = self._decoder.flush()
        except UnicodeDecodeError as e:
            raise StreamDecodeError(self.provider, f"Event stream ended inside a UTF-8 sequence: {e}") from e
        return self._read(events)

    def _read(self, events: List[SSEEvent]) -> List[RawItem]:
        items: List[RawItem] = []
        for event in events:
            if self.done:
                break

            data = event.data.strip()
            if not data:
                continue
            if self.sentinel is not None and data == self.sentinel:
                self.done = True
                break

            try:
                payload = json.loads(data)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed SSE payload", error=str(e), event_name=event.event)
                items.append(ErrorEvent(
                    StreamDecodeError(self.provider, f"Malformed SSE payload: {e}", raw=data),
                    fatal=False,
                ))
                continue

            if not isinstance(payload, Mapping):
                logger.warning("Skipping non-object SSE payload", event_name=event.event)
                items.append(ErrorEvent(
                    StreamDecodeError(self.provider, "SSE payload is not a JSON object", raw=data),
                    fatal=False,
                ))
                continue

            items.append(payload)
        return items


def read_object_chunk(item: Any, provider: str) -> RawItem:
    try:
        return as_mapping(item)
    except TypeError as e:
        logger.warning("Skipping unreadable chunk", error=str(e))
        return ErrorEvent(StreamDecodeError(provider, str(e), raw=item), fatal=False)


def read_binary_frame(frame: Any, provider: str) -> RawItem:
    """Decode one binary frame into its JSON payload."""
    try:
        frame = as_mapping(frame)
    except TypeError as e:
        return ErrorEvent(StreamDecodeError(provider, str(e), raw=frame), fatal=False)

    for key in BEDROCK_EXCEPTION_KEYS:
        if key in frame:
            details = frame[key]
            message = details.get("message", key) if isinstance(details, Mapping) else str(details)
            return ErrorEvent(ProviderStreamError(provider, message, error_type=key))

    chunk = frame.get("chunk")
    payload = chunk.get("bytes") if isinstance(chunk, Mapping) else None
    if payload is None:
        logger.warning("Skipping frame without payload bytes")
        return ErrorEvent(StreamDecodeError(provider, "Frame carries no chunk bytes", raw=frame), fatal=False)

    try:
        if isinstance(payload, str):
            payload = base64.b64decode(payload, validate=True)
        decoded = json.loads(bytes(payload).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Skipping undecodable frame", error=str(e))
        return ErrorEvent(StreamDecodeError(provider, f"Undecodable frame: {e}", raw=payload), fatal=False)

    if not isinstance(decoded, Mapping):
        return ErrorEvent(StreamDecodeError(provider, "Frame payload is not a JSON object", raw=decoded), fatal=False)
    return decoded


# ============================================================
# Iterator
# ============================================================

async def iter_raw_chunks(
    source: RawSource,
    adapter: ProviderAdapter,
    *,
    transport: Optional[TransportKind] = None,
    signal: Optional[AbortSignal] = None,
    sse_sentinel: Optional[str] = None,
    metrics: Optional[MetricsCollector] = None,
) -> AsyncIterator[RawItem]:
    """
    Lazy, single-pass sequence of raw chunks from any supported transport.

    Args:
        source: The provider stream
        adapter: Capability set of the provider
        transport: Force a transport instead of detecting it from the first item
        signal: Abort signal checked before every upstream read
        sse_sentinel: Terminal SSE payload; defaults to the adapter's
        metrics: Collector for raw chunk counts

    Yields:
        Decoded chunk mappings and ErrorEvent values. A fatal ErrorEvent
        is always the last item.
    """
    provider = adapter.provider.value

    if transport is None and isinstance(source, httpx.Response):
        transport = TransportKind.SSE
    if transport is not None and not adapter.supports(transport):
        raise ValueError(f"{provider} streams do not arrive over {transport.value}")

    kind = transport
    reader: Optional[SSEChunkReader] = None
    items = _pull(source, signal)

    def aborted() -> bool:
        return signal is not None and signal.aborted

    try:
        async for item in items:
            if kind is None:
                kind = detect_transport(item, adapter)
                logger.debug("Transport detected", transport=kind.value)

            if kind == TransportKind.SSE:
                if reader is None:
                    reader = SSEChunkReader(provider, sse_sentinel or adapter.sse_sentinel)
                decoded = reader.feed(item)
            elif kind == TransportKind.BINARY_FRAMES:
                decoded = [read_binary_frame(item, provider)]
            else:
                decoded = [read_object_chunk(item, provider)]

            for raw in decoded:
                if aborted():
                    return
                if metrics is not None:
                    metrics.record_raw_chunk(provider, kind.value)
                yield raw
                if isinstance(raw, ErrorEvent) and raw.fatal:
                    return

            if reader is not None and reader.done:
                return

        if reader is not None and not aborted():
            for raw in reader.flush():
                if metrics is not None:
                    metrics.record_raw_chunk(provider, kind.value)
                yield raw

    except Exception as e:
        error = classify_transport_error(e, provider)
        logger.error("Upstream stream failed", error_code=error.code, error=str(error))
        yield ErrorEvent(error)

    finally:
        await items.aclose()
        await _close_source(source)

