"""
unistream - Core Data Models

Canonical stream event vocabulary shared by every provider adapter
and every pipeline stage.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Union


# ============================================================
# Enums
# ============================================================

class Provider(str, Enum):
    """Supported upstream providers."""
    OPENAI = "openai"
    MISTRAL = "mistral"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    BEDROCK_ANTHROPIC = "bedrock-anthropic"
    BEDROCK_COHERE = "bedrock-cohere"
    BEDROCK_LLAMA2 = "bedrock-llama2"


class FinishReason(str, Enum):
    """Why the upstream model stopped producing output."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


class StreamEventType(str, Enum):
    """Types of canonical stream events."""
    TEXT_DELTA = "text-delta"
    TOOL_CALL_DELTA = "tool-call-delta"
    TOOL_CALL = "tool-call"
    ERROR = "error"
    FINISH = "finish"


# ============================================================
# Usage
# ============================================================

@dataclass(frozen=True)
class Usage:
    """Token usage reported by the provider (any field may be missing)."""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None

    @property
    def total_tokens(self) -> Optional[int]:
        if self.prompt_tokens is None and self.completion_tokens is None:
            return None
        return (self.prompt_tokens or 0) + (self.completion_tokens or 0)

    def merge(self, other: Optional["Usage"]) -> "Usage":
        """Combine with a later report; later non-empty values win."""
        if other is None:
            return self
        return Usage(
            prompt_tokens=other.prompt_tokens if other.prompt_tokens is not None else self.prompt_tokens,
            completion_tokens=(
                other.completion_tokens if other.completion_tokens is not None else self.completion_tokens
            ),
        )


# ============================================================
# Stream Events
# ============================================================

@dataclass(frozen=True)
class TextDelta:
    """Incremental piece of user-visible text."""
    text: str

    type: ClassVar[StreamEventType] = StreamEventType.TEXT_DELTA


@dataclass(frozen=True)
class ToolCallDelta:
    """
    Fragment of a tool call being streamed.

    ``call_id`` and ``tool_name`` carry whatever is known so far;
    ``args_fragment`` is only the increment delivered by this chunk.
    """
    index: int
    args_fragment: str = ""
    call_id: Optional[str] = None
    tool_name: Optional[str] = None

    type: ClassVar[StreamEventType] = StreamEventType.TOOL_CALL_DELTA


@dataclass(frozen=True)
class ToolCall:
    """Complete tool invocation; ``args`` is a JSON-parseable string."""
    call_id: str
    tool_name: str
    args: str

    type: ClassVar[StreamEventType] = StreamEventType.TOOL_CALL

    def to_function_call(self) -> dict:
        """Wire payload for the function call part."""
        return {"function_call": {"name": self.tool_name, "arguments": self.args}}


@dataclass(frozen=True)
class ErrorEvent:
    """
    Error carried through the stream.

    Fatal errors terminate the stream. Non-fatal errors are isolated
    to one frame (or one rejected tool call) and the stream continues.
    """
    cause: Any
    fatal: bool = True

    type: ClassVar[StreamEventType] = StreamEventType.ERROR


@dataclass(frozen=True)
class Finish:
    """Natural end of the stream."""
    reason: FinishReason = FinishReason.UNKNOWN
    usage: Optional[Usage] = None

    type: ClassVar[StreamEventType] = StreamEventType.FINISH

    def merge(self, later: "Finish") -> "Finish":
        """Fold a later finish report (e.g. a usage-only chunk) into this one."""
        reason = later.reason if later.reason != FinishReason.UNKNOWN else self.reason
        usage = self.usage.merge(later.usage) if self.usage else later.usage
        return Finish(reason=reason, usage=usage)


StreamEvent = Union[TextDelta, ToolCallDelta, ToolCall, ErrorEvent, Finish]


# ============================================================
# Id generation
# ============================================================

IdGenerator = Callable[[], str]


def create_id_generator(prefix: str = "call", size: int = 24) -> IdGenerator:
    """
    Build a generator of process-unique ids such as ``call_1f0c...``.

    Passed to the pipeline through ``StreamConfig``; tests inject a
    deterministic one.
    """
    if size < 8 or size > 32:
        raise ValueError("size must be between 8 and 32")

    def generate() -> str:
        return f"{prefix}_{uuid.uuid4().hex[:size]}"

    return generate


def event_to_dict(event: StreamEvent) -> dict:
    """Debug/log friendly representation of an event."""
    if isinstance(event, TextDelta):
        return {"type": event.type.value, "text": event.text}
    if isinstance(event, ToolCallDelta):
        return {
            "type": event.type.value,
            "index": event.index,
            "call_id": event.call_id,
            "tool_name": event.tool_name,
            "args_fragment": event.args_fragment,
        }
    if isinstance(event, ToolCall):
        return {
            "type": event.type.value,
            "call_id": event.call_id,
            "tool_name": event.tool_name,
            "args": event.args,
        }
    if isinstance(event, ErrorEvent):
        return {"type": event.type.value, "error": str(event.cause), "fatal": event.fatal}
    result: dict = {"type": event.type.value, "reason": event.reason.value}
    if event.usage:
        result["usage"] = {
            "prompt_tokens": event.usage.prompt_tokens,
            "completion_tokens": event.usage.completion_tokens,
        }
    return result
