"""
unistream - OpenAI Stream Adapter

Reads OpenAI chat completion chunks (and the OpenAI-compatible
chunks Mistral sends). Chunks arrive either as SSE from the HTTP API
or as objects from an SDK / Azure client iterable.

Chunk shape:
    {"object": "chat.completion.chunk",
     "choices": [{"index": 0,
                  "delta": {"content": "Hello"} | {"tool_calls": [...]} | {"function_call": {...}},
                  "finish_reason": null}],
     "usage": {...}}  # optional, final chunk only
"""

from typing import Any, Dict, List, Mapping, Optional

from .base import ProviderAdapter, TransportKind, first, map_finish_reason
from ..core.models import (
    Finish,
    FinishReason,
    Provider,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    Usage,
)

OPENAI_DONE_SENTINEL = "[DONE]"

FINISH_REASON_MAP: Dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
    # mistral
    "model_length": FinishReason.LENGTH,
    "error": FinishReason.ERROR,
}


def _delta(chunk: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    choice = first(chunk.get("choices"))
    if not isinstance(choice, Mapping):
        return None
    delta = choice.get("delta")
    return delta if isinstance(delta, Mapping) else None


def extract_openai_delta(chunk: Mapping[str, Any]) -> Optional[StreamEvent]:
    """
    Extract the delta carried by one OpenAI chunk.

    Role-only and empty deltas yield None.
    """
    choice = first(chunk.get("choices"))
    if not isinstance(choice, Mapping):
        return None

    delta = choice.get("delta")
    if not isinstance(delta, Mapping):
        # legacy completions API puts the text on the choice itself
        text = choice.get("text")
        return TextDelta(text) if isinstance(text, str) and text else None

    content = delta.get("content")
    if isinstance(content, str) and content:
        return TextDelta(content)

    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list) and tool_calls:
        tool_call = tool_calls[0]
        function = tool_call.get("function") or {}
        return ToolCallDelta(
            index=tool_call.get("index", 0),
            call_id=tool_call.get("id"),
            tool_name=function.get("name"),
            args_fragment=function.get("arguments") or "",
        )

    function_call = delta.get("function_call")
    if isinstance(function_call, Mapping):
        return ToolCallDelta(
            index=0,
            tool_name=function_call.get("name"),
            args_fragment=function_call.get("arguments") or "",
        )

    return None


def extract_openai_finish(chunk: Mapping[str, Any]) -> Optional[Finish]:
    """Finish reason and usage, when this chunk reports them."""
    usage = None
    usage_data = chunk.get("usage")
    if isinstance(usage_data, Mapping):
        usage = Usage(
            prompt_tokens=usage_data.get("prompt_tokens"),
            completion_tokens=usage_data.get("completion_tokens"),
        )

    choice = first(chunk.get("choices"))
    raw_reason = choice.get("finish_reason") if isinstance(choice, Mapping) else None

    if raw_reason is None and usage is None:
        return None
    return Finish(reason=map_finish_reason(raw_reason, FINISH_REASON_MAP), usage=usage)


def split_openai_chunk(chunk: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    """
    Split a chunk whose delta carries text plus tool calls, or several
    tool call entries, into single-delta chunks in the original order.
    """
    delta = _delta(chunk)
    if delta is None:
        return [chunk]

    tool_calls = delta.get("tool_calls")
    if not isinstance(tool_calls, list):
        tool_calls = []
    has_text = isinstance(delta.get("content"), str) and bool(delta.get("content"))

    if len(tool_calls) + (1 if has_text else 0) <= 1:
        return [chunk]

    choice = chunk["choices"][0]
    pieces: List[Mapping[str, Any]] = []
    if has_text:
        pieces.append({**chunk, "choices": [{**choice, "delta": {"content": delta["content"]}}]})
    for tool_call in tool_calls:
        pieces.append({**chunk, "choices": [{**choice, "delta": {"tool_calls": [tool_call]}}]})
    return pieces


OPENAI_ADAPTER = ProviderAdapter(
    provider=Provider.OPENAI,
    transports=frozenset({TransportKind.SSE, TransportKind.OBJECTS}),
    extract=extract_openai_delta,
    extract_finish=extract_openai_finish,
    split=split_openai_chunk,
    sse_sentinel=OPENAI_DONE_SENTINEL,
)

MISTRAL_ADAPTER = ProviderAdapter(
    provider=Provider.MISTRAL,
    transports=frozenset({TransportKind.SSE, TransportKind.OBJECTS}),
    extract=extract_openai_delta,
    extract_finish=extract_openai_finish,
    split=split_openai_chunk,
    sse_sentinel=OPENAI_DONE_SENTINEL,
)
