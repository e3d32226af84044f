"""
unistream Core Module

Canonical event vocabulary and error taxonomy shared by all stages.
"""

from .models import (
    # Enums
    Provider,
    FinishReason,
    StreamEventType,

    # Events
    TextDelta,
    ToolCallDelta,
    ToolCall,
    ErrorEvent,
    Finish,
    StreamEvent,
    Usage,

    # Ids
    IdGenerator,
    create_id_generator,
    event_to_dict,
)
from .errors import (
    ErrorType,
    ErrorDetails,
    UnistreamError,
    InfraError,
    SemanticError,
    TransportError,
    StreamDecodeError,
    ProviderStreamError,
    StreamPartParseError,
    UnsupportedProviderError,
    StreamDataClosedError,
    NoSuchToolError,
    InvalidToolArgumentsError,
    IncompleteToolCallError,
    NoObjectGeneratedError,
    classify_transport_error,
    error_payload,
)

__all__ = [
    "Provider",
    "FinishReason",
    "StreamEventType",
    "TextDelta",
    "ToolCallDelta",
    "ToolCall",
    "ErrorEvent",
    "Finish",
    "StreamEvent",
    "Usage",
    "IdGenerator",
    "create_id_generator",
    "event_to_dict",
    "ErrorType",
    "ErrorDetails",
    "UnistreamError",
    "InfraError",
    "SemanticError",
    "TransportError",
    "StreamDecodeError",
    "ProviderStreamError",
    "StreamPartParseError",
    "UnsupportedProviderError",
    "StreamDataClosedError",
    "NoSuchToolError",
    "InvalidToolArgumentsError",
    "IncompleteToolCallError",
    "NoObjectGeneratedError",
    "classify_transport_error",
    "error_payload",
]
