"""
unistream - Pytest Configuration

Configures:
- Integration test markers
- Provider chunk snapshots
- SSE / async iterable builders
- Deterministic id generation and isolated metrics registries
"""

import itertools
import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import pytest
from prometheus_client import REGISTRY, CollectorRegistry

from unistream.config import StreamConfig
from unistream.observability.metrics import setup_metrics


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "unit: fast isolated test of one stage"
    )
    config.addinivalue_line(
        "markers",
        "integration: test that runs the whole pipeline"
    )


# ============================================================
# Builders
# ============================================================

async def _aiter(items: Iterable[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


async def _collect(stream) -> List[Any]:
    return [item async for item in stream]


def _sse(*payloads: Any, sentinel: Optional[str] = "[DONE]", event: Optional[str] = None) -> bytes:
    """Encode payloads as one SSE body (dicts are JSON-encoded)."""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        if event:
            lines.append(f"event: {event}\n")
        lines.append(f"data: {data}\n\n")
    if sentinel is not None:
        lines.append(f"data: {sentinel}\n\n")
    return "".join(lines).encode("utf-8")


def _split_bytes(body: bytes, size: int) -> List[bytes]:
    return [body[i:i + size] for i in range(0, len(body), size)]


@pytest.fixture
def async_items():
    """Build an async iterable from a list."""
    return _aiter


@pytest.fixture
def collect():
    """Drain an async iterable into a list."""
    return _collect


@pytest.fixture
def sse_body():
    """Build an SSE byte body from payloads."""
    return _sse


@pytest.fixture
def split_bytes():
    """Split a body into fixed-size transport pieces."""
    return _split_bytes


# ============================================================
# Configuration
# ============================================================

@pytest.fixture
def fixed_ids():
    """Deterministic id generator: call_1, call_2, ..."""
    counter = itertools.count(1)
    return lambda: f"call_{next(counter)}"


@pytest.fixture
def config(fixed_ids):
    """Stream config with deterministic ids and tracing off."""
    return StreamConfig(id_generator=fixed_ids, tracing_enabled=False)


@pytest.fixture
def metrics_registry():
    """Route stream metrics to a fresh registry for the test."""
    registry = CollectorRegistry()
    collector = setup_metrics(registry)
    yield collector
    setup_metrics(REGISTRY)


# ============================================================
# Provider Chunk Snapshots
# ============================================================

def _openai_chunk(delta: Dict[str, Any], finish_reason: Optional[str] = None, **extra) -> Dict[str, Any]:
    chunk = {
        "id": "chatcmpl-test123",
        "object": "chat.completion.chunk",
        "created": 1234567890,
        "model": "gpt-4o",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    chunk.update(extra)
    return chunk


@pytest.fixture
def openai_chunk():
    """Build one OpenAI chat completion chunk."""
    return _openai_chunk


@pytest.fixture
def openai_text_chunks():
    """OpenAI chunks streaming "Hello, world." then stop."""
    return [
        _openai_chunk({"role": "assistant", "content": ""}),
        _openai_chunk({"content": "Hello"}),
        _openai_chunk({"content": ","}),
        _openai_chunk({"content": " world"}),
        _openai_chunk({"content": "."}),
        _openai_chunk({}, finish_reason="stop"),
    ]


@pytest.fixture
def openai_tool_chunks():
    """OpenAI chunks streaming one get_weather tool call."""
    return [
        _openai_chunk({
            "role": "assistant",
            "tool_calls": [{
                "index": 0,
                "id": "call_abc",
                "type": "function",
                "function": {"name": "get_weather", "arguments": ""},
            }],
        }),
        _openai_chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"city": '}}]}),
        _openai_chunk({"tool_calls": [{"index": 0, "function": {"arguments": '"Paris"}'}}]}),
        _openai_chunk({}, finish_reason="tool_calls"),
    ]


@pytest.fixture
def anthropic_message_events():
    """Anthropic Messages API events streaming "Hi there"."""
    return [
        {
            "type": "message_start",
            "message": {
                "id": "msg_test123",
                "type": "message",
                "role": "assistant",
                "content": [],
                "usage": {"input_tokens": 12, "output_tokens": 1},
            },
        },
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "ping"},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " there"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 5}},
        {"type": "message_stop"},
    ]
