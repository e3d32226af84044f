"""
unistream - Tool Call Assembly

Tool calls are streamed in pieces:
1. A first fragment with the call index (and usually id and name)
2. Further fragments appending to the arguments JSON
3. Completion once the arguments parse as JSON and the name is known

Each index moves absent -> open -> closed. Every fragment is passed
through as a ``ToolCallDelta``; the transition to closed emits exactly
one ``ToolCall`` whose ``args`` equal the concatenated fragments.
"""

import json
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Dict, List, Optional

from ..core.errors import IncompleteToolCallError
from ..core.models import ErrorEvent, Finish, IdGenerator, StreamEvent, ToolCall, ToolCallDelta
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector
from .iterators import aclose_iterator

logger = get_logger(__name__)


def is_complete_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


@dataclass
class ToolCallAccumulator:
    """Accumulates one streaming tool call."""
    index: int
    call_id: str
    function_name: Optional[str] = None
    arguments_buffer: str = ""
    id_synthesized: bool = False
    is_complete: bool = False

    def update(self, delta: ToolCallDelta):
        if delta.call_id and (self.id_synthesized or not self.call_id):
            self.call_id = delta.call_id
            self.id_synthesized = False
        if delta.tool_name:
            self.function_name = delta.tool_name
        self.arguments_buffer += delta.args_fragment or ""

    def ready(self) -> bool:
        return bool(self.function_name) and is_complete_json(self.arguments_buffer)

    def to_tool_call(self) -> ToolCall:
        return ToolCall(
            call_id=self.call_id,
            tool_name=self.function_name or "",
            args=self.arguments_buffer,
        )


class ToolCallAssembler:
    """
    Tracks all tool calls of one stream, keyed by index.

    Calls interleave freely by index and close independently. A fragment
    for an already closed index is dropped, unless it carries a new id
    or name, in which case it opens a new call at that index (providers
    that send whole calls reuse index 0).
    """

    def __init__(self, id_generator: IdGenerator):
        self._id_generator = id_generator
        self._calls: Dict[int, ToolCallAccumulator] = {}
        self.completed: List[ToolCall] = []
        self.incomplete: List[IncompleteToolCallError] = []

    def feed(self, delta: ToolCallDelta) -> List[StreamEvent]:
        """Apply one fragment; returns the events to emit for it."""
        call = self._calls.get(delta.index)

        if call is not None and call.is_complete:
            starts_new = delta.tool_name is not None or (
                delta.call_id is not None and delta.call_id != call.call_id
            )
            if not starts_new:
                logger.warning(
                    "Dropping fragment for completed tool call",
                    index=delta.index,
                    tool_name=call.function_name,
                )
                return []
            call = None

        if call is None:
            call = ToolCallAccumulator(
                index=delta.index,
                call_id=delta.call_id or self._id_generator(),
                id_synthesized=delta.call_id is None,
            )
            self._calls[delta.index] = call

        call.update(delta)

        events: List[StreamEvent] = [
            ToolCallDelta(
                index=delta.index,
                args_fragment=delta.args_fragment or "",
                call_id=call.call_id,
                tool_name=call.function_name,
            )
        ]
        if call.ready():
            events.append(self._close(call))
        return events

    def finish(self) -> List[StreamEvent]:
        """
        Resolve calls still open at the end of the stream.

        A named call that never received arguments closes by appending
        ``{}`` to whatever whitespace it holds;
        anything else is dropped and reported as incomplete.
        """
        events: List[StreamEvent] = []
        for index in sorted(self._calls):
            call = self._calls[index]
            if call.is_complete:
                continue

            if call.function_name and not call.arguments_buffer.strip():
                call.arguments_buffer += "{}"
                events.append(ToolCallDelta(
                    index=index,
                    args_fragment="{}",
                    call_id=call.call_id,
                    tool_name=call.function_name,
                ))
                events.append(self._close(call))
                continue

            diagnostic = IncompleteToolCallError(index, call.function_name, call.arguments_buffer)
            logger.warning(
                "Dropping incomplete tool call",
                index=index,
                tool_name=call.function_name,
                error_code=diagnostic.code,
                args_length=len(call.arguments_buffer),
            )
            self.incomplete.append(diagnostic)
        return events

    def _close(self, call: ToolCallAccumulator) -> ToolCall:
        call.is_complete = True
        tool_call = call.to_tool_call()
        self.completed.append(tool_call)
        return tool_call

    def open_count(self) -> int:
        return sum(1 for call in self._calls.values() if not call.is_complete)


async def assemble_tool_calls(
    events: AsyncIterable[StreamEvent],
    *,
    id_generator: IdGenerator,
    provider: str = "",
    metrics: Optional[MetricsCollector] = None,
) -> AsyncIterator[StreamEvent]:
    """Pass events through, expanding tool call fragments into complete calls."""
    assembler = ToolCallAssembler(id_generator)
    iterator = events.__aiter__()

    try:
        async for event in iterator:
            if isinstance(event, ToolCallDelta):
                for out in assembler.feed(event):
                    if isinstance(out, ToolCall) and metrics is not None:
                        metrics.record_tool_call(provider, "completed")
                    yield out
                continue

            if isinstance(event, Finish):
                for out in assembler.finish():
                    if isinstance(out, ToolCall) and metrics is not None:
                        metrics.record_tool_call(provider, "completed")
                    yield out
                if metrics is not None:
                    for _ in assembler.incomplete:
                        metrics.record_tool_call(provider, "incomplete")

            yield event
            if isinstance(event, Finish) or (isinstance(event, ErrorEvent) and event.fatal):
                return
    finally:
        await aclose_iterator(iterator)
