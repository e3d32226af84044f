"""
unistream - Anthropic Stream Adapter

Handles both Anthropic streaming shapes:

- Legacy text completions: ``event: completion`` SSE events whose data
  carries a flat ``completion`` field.
- Messages API: typed events (message_start, content_block_start,
  content_block_delta, message_delta, message_stop, ping, error).
  Tool use arrives as a ``tool_use`` content block followed by
  ``input_json_delta`` fragments for the same block index.
"""

from typing import Any, Dict, Mapping, Optional

from .base import ProviderAdapter, TransportKind, map_finish_reason
from ..core.errors import ProviderStreamError
from ..core.models import (
    ErrorEvent,
    Finish,
    FinishReason,
    Provider,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    Usage,
)

STOP_REASON_MAP: Dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
}


def extract_anthropic_delta(chunk: Mapping[str, Any]) -> Optional[StreamEvent]:
    """Extract the delta carried by one Anthropic event."""
    completion = chunk.get("completion")
    if isinstance(completion, str):
        return TextDelta(completion) if completion else None

    event_type = chunk.get("type")

    if event_type == "content_block_delta":
        delta = chunk.get("delta") or {}
        if delta.get("type") == "text_delta":
            text = delta.get("text", "")
            return TextDelta(text) if text else None
        if delta.get("type") == "input_json_delta":
            return ToolCallDelta(
                index=chunk.get("index", 0),
                args_fragment=delta.get("partial_json") or "",
            )
        return None

    if event_type == "content_block_start":
        block = chunk.get("content_block") or {}
        if block.get("type") == "tool_use":
            return ToolCallDelta(
                index=chunk.get("index", 0),
                call_id=block.get("id"),
                tool_name=block.get("name"),
            )
        text = block.get("text")
        if block.get("type") == "text" and text:
            return TextDelta(text)
        return None

    if event_type == "error":
        error = chunk.get("error") or {}
        return ErrorEvent(
            ProviderStreamError(
                provider=Provider.ANTHROPIC.value,
                message=error.get("message", "Unknown streaming error"),
                error_type=error.get("type", ""),
            )
        )

    return None


def extract_anthropic_finish(chunk: Mapping[str, Any]) -> Optional[Finish]:
    """Stop reason and token usage spread over message_start / message_delta."""
    event_type = chunk.get("type")

    if event_type == "message_start":
        usage = (chunk.get("message") or {}).get("usage") or {}
        if "input_tokens" not in usage:
            return None
        return Finish(
            reason=FinishReason.UNKNOWN,
            usage=Usage(
                prompt_tokens=usage.get("input_tokens"),
                completion_tokens=usage.get("output_tokens"),
            ),
        )

    if event_type == "message_delta":
        stop_reason = (chunk.get("delta") or {}).get("stop_reason")
        usage = chunk.get("usage") or {}
        return Finish(
            reason=map_finish_reason(stop_reason, STOP_REASON_MAP),
            usage=Usage(completion_tokens=usage["output_tokens"]) if "output_tokens" in usage else None,
        )

    # legacy completion events
    stop_reason = chunk.get("stop_reason")
    if "completion" in chunk and stop_reason:
        return Finish(reason=map_finish_reason(stop_reason, STOP_REASON_MAP))

    return None


ANTHROPIC_ADAPTER = ProviderAdapter(
    provider=Provider.ANTHROPIC,
    transports=frozenset({TransportKind.SSE, TransportKind.OBJECTS}),
    extract=extract_anthropic_delta,
    extract_finish=extract_anthropic_finish,
)
