"""
unistream - Unified LLM Stream Normalization

Consumes incremental output from multiple incompatible model providers
(OpenAI, Mistral, Anthropic, Google, AWS Bedrock) and re-exposes it as
one canonical event stream, serialized into a single line-oriented
wire protocol.
"""

__version__ = "0.1.0"

from .config import StreamConfig, WireProtocol
from .core import (
    ErrorEvent,
    Finish,
    FinishReason,
    Provider,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    Usage,
    UnistreamError,
    create_id_generator,
)
from .adapters import ProviderAdapter, TransportKind, get_adapter
from .streaming import (
    AbortSignal,
    StreamCallbacks,
    StreamData,
    StreamObjectResult,
    StreamPart,
    StreamPartType,
    StreamingTextResponse,
    create_event_stream,
    encode_stream,
    format_stream_part,
    parse_partial_json,
    parse_stream_part,
    read_stream_parts,
    stream_object,
    stream_response,
    tee_stream,
)
from .tools import Tool, ToolRegistry

__all__ = [
    "StreamConfig",
    "WireProtocol",
    "ErrorEvent",
    "Finish",
    "FinishReason",
    "Provider",
    "StreamEvent",
    "TextDelta",
    "ToolCall",
    "ToolCallDelta",
    "Usage",
    "UnistreamError",
    "create_id_generator",
    "ProviderAdapter",
    "TransportKind",
    "get_adapter",
    "AbortSignal",
    "StreamCallbacks",
    "StreamData",
    "StreamObjectResult",
    "StreamPart",
    "StreamPartType",
    "StreamingTextResponse",
    "create_event_stream",
    "encode_stream",
    "format_stream_part",
    "parse_partial_json",
    "parse_stream_part",
    "read_stream_parts",
    "stream_object",
    "stream_response",
    "tee_stream",
    "Tool",
    "ToolRegistry",
]
