"""
unistream - Stream Callbacks

Pass-through stage invoking lifecycle hooks on the emission timeline.
Hooks may be plain functions or coroutines; each is awaited before the
event it observes is passed downstream.

Order for a successful stream:
    on_start -> on_token* / on_tool_call* -> on_completion -> on_final -> Finish

On a fatal error ``on_error`` runs and ``on_completion``/``on_final``
are skipped. An aborted stream runs neither.
"""

import inspect
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Callable, Optional

from ..core.errors import InvalidToolArgumentsError, NoSuchToolError
from ..core.models import ErrorEvent, Finish, StreamEvent, TextDelta, ToolCall
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector
from .iterators import aclose_iterator

logger = get_logger(__name__)


@dataclass
class StreamCallbacks:
    """
    Optional lifecycle hooks.

    ``on_tool_call`` may return a string; it is then streamed as text in
    place of the tool call.
    """
    on_start: Optional[Callable[[], Any]] = None
    on_token: Optional[Callable[[str], Any]] = None
    on_tool_call: Optional[Callable[[ToolCall], Any]] = None
    on_completion: Optional[Callable[[str], Any]] = None
    on_final: Optional[Callable[[str], Any]] = None
    on_error: Optional[Callable[[Any], Any]] = None


async def _invoke(callback: Optional[Callable[..., Any]], *args) -> Any:
    if callback is None:
        return None
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def with_callbacks(
    events: AsyncIterable[StreamEvent],
    callbacks: StreamCallbacks,
    *,
    tools=None,
    provider: str = "",
    metrics: Optional[MetricsCollector] = None,
) -> AsyncIterator[StreamEvent]:
    """
    Invoke ``callbacks`` for each event and accumulate the full text.

    Args:
        events: Canonical events, tool calls already assembled
        callbacks: Hooks to run
        tools: Optional ToolRegistry; calls it rejects become non-fatal
            ErrorEvents instead of ToolCalls
        provider: Label for metrics
        metrics: Collector for rejected tool calls
    """
    started = False
    text = ""
    iterator = events.__aiter__()

    try:
        async for event in iterator:
            if not started:
                started = True
                await _invoke(callbacks.on_start)

            if isinstance(event, TextDelta):
                text += event.text
                await _invoke(callbacks.on_token, event.text)
                yield event

            elif isinstance(event, ToolCall):
                if tools is not None:
                    try:
                        tools.parse_tool_call(event)
                    except (NoSuchToolError, InvalidToolArgumentsError) as e:
                        logger.warning(
                            "Rejected tool call",
                            tool_name=event.tool_name,
                            error_code=e.code,
                            tool_args=event.args,
                        )
                        if metrics is not None:
                            metrics.record_tool_call(provider, "rejected")
                        await _invoke(callbacks.on_error, e)
                        yield ErrorEvent(e, fatal=False)
                        continue

                replacement = await _invoke(callbacks.on_tool_call, event)
                if isinstance(replacement, str):
                    text += replacement
                    await _invoke(callbacks.on_token, replacement)
                    yield TextDelta(replacement)
                else:
                    yield event

            elif isinstance(event, ErrorEvent):
                await _invoke(callbacks.on_error, event.cause)
                yield event
                if event.fatal:
                    return

            elif isinstance(event, Finish):
                await _invoke(callbacks.on_completion, text)
                await _invoke(callbacks.on_final, text)
                yield event
                return

            else:
                yield event
    finally:
        await aclose_iterator(iterator)
