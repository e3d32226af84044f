"""
unistream - Google Generative AI Stream Adapter

Gemini streams GenerateContentResponse chunks, either as objects from
the SDK or as SSE (``alt=sse``):

    {"candidates": [{"content": {"parts": [{"text": "Hello"}]},
                     "finishReason": "STOP"}],
     "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 7}}

Function calls arrive whole inside a part, never fragmented.
"""

import json
from typing import Any, Dict, List, Mapping, Optional

from .base import ProviderAdapter, TransportKind, first, map_finish_reason
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

FINISH_REASON_MAP: Dict[str, FinishReason] = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "OTHER": FinishReason.OTHER,
    "FINISH_REASON_UNSPECIFIED": FinishReason.UNKNOWN,
}


def _parts(chunk: Mapping[str, Any]) -> List[Any]:
    candidate = first(chunk.get("candidates"))
    if not isinstance(candidate, Mapping):
        return []
    parts = (candidate.get("content") or {}).get("parts")
    return parts if isinstance(parts, list) else []


def extract_google_delta(chunk: Mapping[str, Any]) -> Optional[StreamEvent]:
    """Extract the text or function call from the first candidate's first part."""
    error = chunk.get("error")
    if isinstance(error, Mapping):
        return ErrorEvent(
            ProviderStreamError(
                provider=Provider.GOOGLE.value,
                message=error.get("message", "Unknown streaming error"),
                error_type=str(error.get("status", "")),
            )
        )

    part = first(_parts(chunk))
    if not isinstance(part, Mapping):
        return None

    text = part.get("text")
    if isinstance(text, str):
        return TextDelta(text) if text else None

    function_call = part.get("functionCall")
    if isinstance(function_call, Mapping):
        return ToolCallDelta(
            index=0,
            tool_name=function_call.get("name"),
            args_fragment=json.dumps(function_call.get("args") or {}),
        )

    return None


def extract_google_finish(chunk: Mapping[str, Any]) -> Optional[Finish]:
    usage = None
    metadata = chunk.get("usageMetadata")
    if isinstance(metadata, Mapping):
        usage = Usage(
            prompt_tokens=metadata.get("promptTokenCount"),
            completion_tokens=metadata.get("candidatesTokenCount"),
        )

    candidate = first(chunk.get("candidates"))
    raw_reason = candidate.get("finishReason") if isinstance(candidate, Mapping) else None

    if raw_reason is None:
        feedback = chunk.get("promptFeedback")
        if isinstance(feedback, Mapping) and feedback.get("blockReason"):
            return Finish(reason=FinishReason.CONTENT_FILTER, usage=usage)

    if raw_reason is None and usage is None:
        return None
    return Finish(reason=map_finish_reason(raw_reason, FINISH_REASON_MAP), usage=usage)


def split_google_chunk(chunk: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    """One chunk per content part of the first candidate."""
    parts = _parts(chunk)
    if len(parts) <= 1:
        return [chunk]

    candidate = chunk["candidates"][0]
    content = candidate.get("content") or {}
    return [
        {**chunk, "candidates": [{**candidate, "content": {**content, "parts": [part]}}]}
        for part in parts
    ]


GOOGLE_ADAPTER = ProviderAdapter(
    provider=Provider.GOOGLE,
    transports=frozenset({TransportKind.OBJECTS, TransportKind.SSE}),
    extract=extract_google_delta,
    extract_finish=extract_google_finish,
    split=split_google_chunk,
)
