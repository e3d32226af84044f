"""
unistream Streaming Module

Normalization and framing of provider streams:
- Async iterators over SSE, object and binary frame transports
- Extraction into canonical events with a single Finish
- Tool call assembly and partial JSON reconstruction
- Wire protocol encoder/decoder and the stream data side channel
- Starlette streaming response
"""

from .cancellation import AbortSignal, StreamAbortedError
from .sse import SSEDecoder, SSEEvent
from .iterators import iter_raw_chunks, detect_transport
from .normalizer import StreamNormalizer, normalize_events
from .tool_calls import ToolCallAccumulator, ToolCallAssembler, assemble_tool_calls
from .callbacks import StreamCallbacks, with_callbacks
from .partial_json import (
    PartialObjectReconstructor,
    is_deep_equal_data,
    parse_partial_json,
    partial_objects,
)
from .stream_parts import (
    StreamPart,
    StreamPartType,
    encode_events,
    format_stream_part,
    parse_stream_part,
    read_stream_parts,
)
from .stream_data import StreamData
from .response import STREAM_DATA_HEADER, StreamingTextResponse, merge_stream_data
from .pipeline import (
    StreamObjectResult,
    create_event_stream,
    encode_stream,
    stream_object,
    stream_response,
    tee_stream,
)

__all__ = [
    # Cancellation
    "AbortSignal",
    "StreamAbortedError",
    # Transports
    "SSEDecoder",
    "SSEEvent",
    "iter_raw_chunks",
    "detect_transport",
    # Events
    "StreamNormalizer",
    "normalize_events",
    "ToolCallAccumulator",
    "ToolCallAssembler",
    "assemble_tool_calls",
    "StreamCallbacks",
    "with_callbacks",
    # Partial JSON
    "PartialObjectReconstructor",
    "is_deep_equal_data",
    "parse_partial_json",
    "partial_objects",
    # Wire protocol
    "StreamPart",
    "StreamPartType",
    "encode_events",
    "format_stream_part",
    "parse_stream_part",
    "read_stream_parts",
    "StreamData",
    "STREAM_DATA_HEADER",
    "StreamingTextResponse",
    "merge_stream_data",
    # Pipeline
    "StreamObjectResult",
    "create_event_stream",
    "encode_stream",
    "stream_object",
    "stream_response",
    "tee_stream",
]
