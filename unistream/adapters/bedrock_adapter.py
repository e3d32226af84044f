"""
unistream - AWS Bedrock Stream Adapters

Bedrock's InvokeModelWithResponseStream yields event frames of the form
``{"chunk": {"bytes": <payload>}}``. The iterator decodes each payload
(raw bytes from boto3, base64 text from the HTTP API) into the model
family's JSON body before the extractors below see it:

- Anthropic:  {"completion": "...", "stop_reason": null}
- Cohere:     {"generations": [{"text": "...", "finish_reason": "COMPLETE"}]}
- Llama 2:    {"generation": "...", "stop_reason": "stop"}

The last payload of every family may carry
``amazon-bedrock-invocationMetrics`` with token counts.
"""

from typing import Any, Dict, Mapping, Optional

from .base import ProviderAdapter, TransportKind, first, map_finish_reason
from ..core.models import Finish, FinishReason, Provider, StreamEvent, TextDelta, Usage

INVOCATION_METRICS_KEY = "amazon-bedrock-invocationMetrics"

ANTHROPIC_STOP_REASONS: Dict[str, FinishReason] = {
    "stop_sequence": FinishReason.STOP,
    "end_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
}

COHERE_FINISH_REASONS: Dict[str, FinishReason] = {
    "COMPLETE": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "ERROR": FinishReason.ERROR,
    "ERROR_TOXIC": FinishReason.CONTENT_FILTER,
}

LLAMA2_STOP_REASONS: Dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
}


def _invocation_usage(payload: Mapping[str, Any]) -> Optional[Usage]:
    metrics = payload.get(INVOCATION_METRICS_KEY)
    if not isinstance(metrics, Mapping):
        return None
    return Usage(
        prompt_tokens=metrics.get("inputTokenCount"),
        completion_tokens=metrics.get("outputTokenCount"),
    )


def _finish(raw_reason: Optional[str], mapping: Dict[str, FinishReason], usage: Optional[Usage]) -> Optional[Finish]:
    if raw_reason is None and usage is None:
        return None
    return Finish(reason=map_finish_reason(raw_reason, mapping), usage=usage)


# ============================================================
# Anthropic on Bedrock
# ============================================================

def extract_bedrock_anthropic_delta(payload: Mapping[str, Any]) -> Optional[StreamEvent]:
    completion = payload.get("completion")
    return TextDelta(completion) if isinstance(completion, str) and completion else None


def extract_bedrock_anthropic_finish(payload: Mapping[str, Any]) -> Optional[Finish]:
    return _finish(payload.get("stop_reason"), ANTHROPIC_STOP_REASONS, _invocation_usage(payload))


# ============================================================
# Cohere on Bedrock
# ============================================================

def extract_bedrock_cohere_delta(payload: Mapping[str, Any]) -> Optional[StreamEvent]:
    generation = first(payload.get("generations"))
    if not isinstance(generation, Mapping):
        return None
    text = generation.get("text")
    return TextDelta(text) if isinstance(text, str) and text else None


def extract_bedrock_cohere_finish(payload: Mapping[str, Any]) -> Optional[Finish]:
    raw_reason = payload.get("finish_reason")
    generation = first(payload.get("generations"))
    if raw_reason is None and isinstance(generation, Mapping):
        raw_reason = generation.get("finish_reason")
    return _finish(raw_reason, COHERE_FINISH_REASONS, _invocation_usage(payload))


# ============================================================
# Llama 2 on Bedrock
# ============================================================

def extract_bedrock_llama2_delta(payload: Mapping[str, Any]) -> Optional[StreamEvent]:
    generation = payload.get("generation")
    return TextDelta(generation) if isinstance(generation, str) and generation else None


def extract_bedrock_llama2_finish(payload: Mapping[str, Any]) -> Optional[Finish]:
    usage = _invocation_usage(payload)
    if usage is None and ("prompt_token_count" in payload or "generation_token_count" in payload):
        usage = Usage(
            prompt_tokens=payload.get("prompt_token_count"),
            completion_tokens=payload.get("generation_token_count"),
        )
    return _finish(payload.get("stop_reason"), LLAMA2_STOP_REASONS, usage)


BEDROCK_ANTHROPIC_ADAPTER = ProviderAdapter(
    provider=Provider.BEDROCK_ANTHROPIC,
    transports=frozenset({TransportKind.BINARY_FRAMES}),
    extract=extract_bedrock_anthropic_delta,
    extract_finish=extract_bedrock_anthropic_finish,
)

BEDROCK_COHERE_ADAPTER = ProviderAdapter(
    provider=Provider.BEDROCK_COHERE,
    transports=frozenset({TransportKind.BINARY_FRAMES}),
    extract=extract_bedrock_cohere_delta,
    extract_finish=extract_bedrock_cohere_finish,
)

BEDROCK_LLAMA2_ADAPTER = ProviderAdapter(
    provider=Provider.BEDROCK_LLAMA2,
    transports=frozenset({TransportKind.BINARY_FRAMES}),
    extract=extract_bedrock_llama2_delta,
    extract_finish=extract_bedrock_llama2_finish,
)
