"""
unistream - Tool Call Assembly Tests

Verifies:
- Fragments close into exactly one ToolCall once arguments parse as JSON
- Interleaved indices close independently
- Concatenated fragments equal the final arguments
- Incomplete calls are dropped at finish
- Id synthesis and index reuse by whole-call providers
"""

import json
import random

import pytest

from unistream.adapters import get_adapter
from unistream.core.errors import IncompleteToolCallError, ProviderStreamError
from unistream.core.models import ErrorEvent, Finish, FinishReason, ToolCall, ToolCallDelta
from unistream.streaming.normalizer import normalize_events
from unistream.streaming.tool_calls import ToolCallAssembler, assemble_tool_calls, is_complete_json


def _feed_all(assembler, deltas):
    events = []
    for delta in deltas:
        events.extend(assembler.feed(delta))
    return events


# ============================================================
# Assembler State Machine
# ============================================================

class TestToolCallAssembler:
    """Test per-index accumulation."""

    def test_name_then_arguments(self, fixed_ids):
        """A named fragment followed by "{}" closes one call."""
        assembler = ToolCallAssembler(fixed_ids)

        events = _feed_all(assembler, [
            ToolCallDelta(index=0, tool_name="f"),
            ToolCallDelta(index=0, args_fragment="{}"),
        ])

        assert events == [
            ToolCallDelta(index=0, args_fragment="", call_id="call_1", tool_name="f"),
            ToolCallDelta(index=0, args_fragment="{}", call_id="call_1", tool_name="f"),
            ToolCall(call_id="call_1", tool_name="f", args="{}"),
        ]
        assert assembler.open_count() == 0

    def test_provider_id_kept(self, fixed_ids):
        assembler = ToolCallAssembler(fixed_ids)
        events = _feed_all(assembler, [ToolCallDelta(index=0, args_fragment="{}", call_id="call_abc", tool_name="f")])
        assert events[-1] == ToolCall(call_id="call_abc", tool_name="f", args="{}")

    def test_later_provider_id_replaces_synthesized(self, fixed_ids):
        assembler = ToolCallAssembler(fixed_ids)

        events = _feed_all(assembler, [
            ToolCallDelta(index=0, args_fragment='{"a"'),
            ToolCallDelta(index=0, args_fragment=": 1}", call_id="toolu_9", tool_name="f"),
        ])

        assert events[-1].call_id == "toolu_9"

    def test_waits_for_name(self, fixed_ids):
        """Complete JSON without a name does not close the call."""
        assembler = ToolCallAssembler(fixed_ids)

        assert len(assembler.feed(ToolCallDelta(index=0, args_fragment="{}"))) == 1
        events = assembler.feed(ToolCallDelta(index=0, tool_name="late"))

        assert events[-1] == ToolCall(call_id="call_1", tool_name="late", args="{}")

    def test_fragment_for_closed_call_dropped(self, fixed_ids):
        assembler = ToolCallAssembler(fixed_ids)
        _feed_all(assembler, [ToolCallDelta(index=0, args_fragment="{}", tool_name="f")])

        assert assembler.feed(ToolCallDelta(index=0, args_fragment=" ")) == []
        assert len(assembler.completed) == 1

    def test_index_reuse_opens_new_call(self, fixed_ids):
        """Whole calls sent at index 0 each get their own id."""
        assembler = ToolCallAssembler(fixed_ids)

        events = _feed_all(assembler, [
            ToolCallDelta(index=0, args_fragment='{"city": "Paris"}', tool_name="get_weather"),
            ToolCallDelta(index=0, args_fragment='{"city": "Rome"}', tool_name="get_weather"),
        ])
        calls = [e for e in events if isinstance(e, ToolCall)]

        assert [c.call_id for c in calls] == ["call_1", "call_2"]
        assert [c.args for c in calls] == ['{"city": "Paris"}', '{"city": "Rome"}']

    def test_interleaved_indices(self, fixed_ids):
        """Calls at different indices close independently."""
        assembler = ToolCallAssembler(fixed_ids)

        events = _feed_all(assembler, [
            ToolCallDelta(index=0, call_id="a", tool_name="search"),
            ToolCallDelta(index=1, call_id="b", tool_name="lookup"),
            ToolCallDelta(index=1, args_fragment='{"id": 7}'),
            ToolCallDelta(index=0, args_fragment='{"q": '),
            ToolCallDelta(index=0, args_fragment='"x"}'),
        ])
        calls = [e for e in events if isinstance(e, ToolCall)]

        assert calls == [
            ToolCall(call_id="b", tool_name="lookup", args='{"id": 7}'),
            ToolCall(call_id="a", tool_name="search", args='{"q": "x"}'),
        ]

    def test_any_interleaving_concatenates_fragments(self, fixed_ids):
        """Per index, the fragments always add up to the final arguments."""
        per_index = {
            0: [ToolCallDelta(index=0, call_id="c0", tool_name="f"),
                ToolCallDelta(index=0, args_fragment='{"a": [1, '),
                ToolCallDelta(index=0, args_fragment="2]}")],
            1: [ToolCallDelta(index=1, call_id="c1", tool_name="g", args_fragment='{"b"'),
                ToolCallDelta(index=1, args_fragment=': "x'),
                ToolCallDelta(index=1, args_fragment='y"}')],
            2: [ToolCallDelta(index=2, call_id="c2", tool_name="h"),
                ToolCallDelta(index=2, args_fragment="{}")],
        }
        rng = random.Random(1234)

        for _ in range(20):
            queues = {index: list(deltas) for index, deltas in per_index.items()}
            order = []
            while any(queues.values()):
                index = rng.choice([i for i, q in queues.items() if q])
                order.append(queues[index].pop(0))

            events = _feed_all(ToolCallAssembler(fixed_ids), order)
            calls = {e.call_id: e for e in events if isinstance(e, ToolCall)}

            assert sorted(calls) == ["c0", "c1", "c2"]
            for call_id, call in calls.items():
                fragments = "".join(
                    e.args_fragment for e in events
                    if isinstance(e, ToolCallDelta) and e.call_id == call_id
                )
                assert fragments == call.args

    def test_finish_closes_named_call_without_arguments(self, fixed_ids):
        """A tool that takes no arguments closes with {} at finish."""
        assembler = ToolCallAssembler(fixed_ids)
        assembler.feed(ToolCallDelta(index=0, call_id="toolu_1", tool_name="get_time"))

        events = assembler.finish()

        assert events == [
            ToolCallDelta(index=0, args_fragment="{}", call_id="toolu_1", tool_name="get_time"),
            ToolCall(call_id="toolu_1", tool_name="get_time", args="{}"),
        ]

    def test_finish_keeps_whitespace_before_closing_braces(self, fixed_ids):
        """Whitespace-only arguments still concatenate to the final args."""
        assembler = ToolCallAssembler(fixed_ids)
        fragments = [e.args_fragment for e in assembler.feed(ToolCallDelta(index=0, tool_name="f", args_fragment="  "))]

        events = assembler.finish()
        fragments += [e.args_fragment for e in events if isinstance(e, ToolCallDelta)]
        calls = [e for e in events if isinstance(e, ToolCall)]

        assert len(calls) == 1
        assert calls[0].args == "  {}"
        assert "".join(fragments) == calls[0].args
        assert json.loads(calls[0].args) == {}

    def test_finish_drops_incomplete_call(self, fixed_ids):
        """Arguments that never became JSON are dropped with a diagnostic."""
        assembler = ToolCallAssembler(fixed_ids)
        assembler.feed(ToolCallDelta(index=0, tool_name="f", args_fragment='{"a": '))

        assert assembler.finish() == []
        assert len(assembler.incomplete) == 1
        diagnostic = assembler.incomplete[0]
        assert isinstance(diagnostic, IncompleteToolCallError)
        assert diagnostic.tool_name == "f"
        assert diagnostic.tool_args == '{"a": '

    def test_is_complete_json(self):
        assert is_complete_json("{}")
        assert is_complete_json('"x"')
        assert not is_complete_json("")
        assert not is_complete_json('{"a": ')


# ============================================================
# Assembly Stage
# ============================================================

class TestAssembleToolCalls:
    """Test the assembly stage inside an event stream."""

    @pytest.mark.asyncio
    async def test_openai_tool_stream(self, openai_tool_chunks, fixed_ids, async_items, collect, metrics_registry):
        events = await collect(assemble_tool_calls(
            normalize_events(async_items(openai_tool_chunks), get_adapter("openai")),
            id_generator=fixed_ids,
            provider="openai",
            metrics=metrics_registry,
        ))

        assert events == [
            ToolCallDelta(index=0, args_fragment="", call_id="call_abc", tool_name="get_weather"),
            ToolCallDelta(index=0, args_fragment='{"city": ', call_id="call_abc", tool_name="get_weather"),
            ToolCallDelta(index=0, args_fragment='"Paris"}', call_id="call_abc", tool_name="get_weather"),
            ToolCall(call_id="call_abc", tool_name="get_weather", args='{"city": "Paris"}'),
            Finish(FinishReason.TOOL_CALLS),
        ]
        assert metrics_registry.registry.get_sample_value(
            "unistream_tool_calls_total", {"provider": "openai", "outcome": "completed"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_anthropic_tool_use(self, fixed_ids, async_items, collect):
        """tool_use blocks assemble by content block index."""
        raw = [
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me check."}},
            {"type": "content_block_start", "index": 1,
             "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {}}},
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": ""}},
            {"type": "content_block_delta", "index": 1,
             "delta": {"type": "input_json_delta", "partial_json": '{"city": "Oslo"}'}},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 20}},
        ]

        events = await collect(assemble_tool_calls(
            normalize_events(async_items(raw), get_adapter("anthropic")),
            id_generator=fixed_ids,
        ))
        calls = [e for e in events if isinstance(e, ToolCall)]

        assert calls == [ToolCall(call_id="toolu_1", tool_name="get_weather", args='{"city": "Oslo"}')]
        assert events[-1].reason == FinishReason.TOOL_CALLS

    @pytest.mark.asyncio
    async def test_incomplete_call_counted(self, fixed_ids, async_items, collect, metrics_registry):
        events = await collect(assemble_tool_calls(
            async_items([ToolCallDelta(index=0, tool_name="f", args_fragment="{"), Finish()]),
            id_generator=fixed_ids,
            provider="openai",
            metrics=metrics_registry,
        ))

        assert not any(isinstance(e, ToolCall) for e in events)
        assert isinstance(events[-1], Finish)
        assert metrics_registry.registry.get_sample_value(
            "unistream_tool_calls_total", {"provider": "openai", "outcome": "incomplete"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_fatal_error_passes_through(self, fixed_ids, async_items, collect):
        error = ErrorEvent(ProviderStreamError("openai", "boom"))
        events = await collect(assemble_tool_calls(
            async_items([ToolCallDelta(index=0, tool_name="f", args_fragment="{"), error, Finish()]),
            id_generator=fixed_ids,
        ))
        assert events[-1] is error
