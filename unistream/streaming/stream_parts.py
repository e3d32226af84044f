"""
unistream - Wire Protocol

Line-oriented framing of the canonical event stream. Every line is

    <code>:<json>\\n

with the code drawn from a closed registry:

    code  name           payload
    0     text           JSON string
    1     function_call  {"function_call": {"name": str, "arguments": str}}
    2     data           JSON array

Unknown codes are a hard parse error on the reading side.
"""

import codecs
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, Optional, Union

from ..config import WireProtocol
from ..core.errors import StreamPartParseError
from ..core.models import ErrorEvent, StreamEvent, TextDelta, ToolCall
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector
from .iterators import aclose_iterator

logger = get_logger(__name__)


class StreamPartType(str, Enum):
    """Names of the registered wire parts."""
    TEXT = "text"
    FUNCTION_CALL = "function_call"
    DATA = "data"


def _is_text(value: Any) -> bool:
    return isinstance(value, str)


def _is_function_call(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    call = value.get("function_call")
    return (
        isinstance(call, dict)
        and isinstance(call.get("name"), str)
        and isinstance(call.get("arguments"), str)
    )


def _is_data(value: Any) -> bool:
    return isinstance(value, list)


@dataclass(frozen=True)
class StreamPartSpec:
    """Registry entry: code, name and payload shape check."""
    code: str
    type: StreamPartType
    validate: Callable[[Any], bool]
    shape: str


STREAM_PARTS = (
    StreamPartSpec("0", StreamPartType.TEXT, _is_text, "a string"),
    StreamPartSpec("1", StreamPartType.FUNCTION_CALL, _is_function_call,
                   'an object with a "function_call" holding string "name" and "arguments"'),
    StreamPartSpec("2", StreamPartType.DATA, _is_data, "an array"),
)

PARTS_BY_CODE: Dict[str, StreamPartSpec] = {part.code: part for part in STREAM_PARTS}
PARTS_BY_TYPE: Dict[StreamPartType, StreamPartSpec] = {part.type: part for part in STREAM_PARTS}


@dataclass(frozen=True)
class StreamPart:
    """A decoded wire line."""
    type: StreamPartType
    value: Any

    @property
    def code(self) -> str:
        return PARTS_BY_TYPE[self.type].code


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def format_stream_part(part_type: Union[StreamPartType, str], value: Any) -> str:
    """
    Serialize one part as a complete wire line.

    Raises:
        ValueError: If the payload does not match the part's shape
    """
    definition = PARTS_BY_TYPE[StreamPartType(part_type)]
    if not definition.validate(value):
        raise ValueError(f'"{definition.type.value}" parts must be {definition.shape}')
    return f"{definition.code}:{_dumps(value)}\n"


def parse_stream_part(line: str) -> StreamPart:
    """
    Decode one wire line (trailing newline optional).

    Raises:
        StreamPartParseError: Missing separator, unknown code, invalid
            JSON, or a payload of the wrong shape
    """
    code, sep, payload = line.partition(":")
    if not sep:
        raise StreamPartParseError(
            "missing_separator",
            "Failed to parse stream string. No separator found.",
            line,
        )

    definition = PARTS_BY_CODE.get(code)
    if definition is None:
        raise StreamPartParseError("invalid_code", f"Invalid code {code}.", line)

    try:
        value = json.loads(payload)
    except json.JSONDecodeError as e:
        raise StreamPartParseError("invalid_json", f"Invalid JSON in stream part: {e}", line) from e

    if not definition.validate(value):
        raise StreamPartParseError(
            "invalid_shape",
            f'"{definition.type.value}" parts expect {definition.shape}.',
            line,
        )

    return StreamPart(type=definition.type, value=value)


# ============================================================
# Encoding
# ============================================================

async def encode_events(
    events: AsyncIterable[StreamEvent],
    protocol: WireProtocol = WireProtocol.DATA,
    *,
    metrics: Optional[MetricsCollector] = None,
) -> AsyncIterator[str]:
    """
    Serialize canonical events into wire lines.

    Text deltas become ``0`` parts, completed tool calls ``1`` parts.
    Tool call fragments, finish markers and isolated errors produce no
    line. A fatal error ends the output. With the ``text`` protocol only
    raw text is written.
    """
    iterator = events.__aiter__()

    try:
        async for event in iterator:
            if isinstance(event, TextDelta):
                if protocol == WireProtocol.TEXT:
                    yield event.text
                    continue
                line = format_stream_part(StreamPartType.TEXT, event.text)
                if metrics is not None:
                    metrics.record_wire_part("0")
                yield line

            elif isinstance(event, ToolCall):
                if protocol == WireProtocol.TEXT:
                    logger.debug("Tool call not representable in text protocol", tool_name=event.tool_name)
                    continue
                line = format_stream_part(StreamPartType.FUNCTION_CALL, event.to_function_call())
                if metrics is not None:
                    metrics.record_wire_part("1")
                yield line

            elif isinstance(event, ErrorEvent) and event.fatal:
                return
    finally:
        await aclose_iterator(iterator)


# ============================================================
# Decoding
# ============================================================

async def read_stream_parts(source: AsyncIterable[Union[bytes, str]]) -> AsyncIterator[StreamPart]:
    """
    Decode a wire byte stream into parts, buffering across chunk boundaries.

    Usage:
        async with client.stream("POST", "/api/chat", json=body) as response:
            async for part in read_stream_parts(response.aiter_bytes()):
                if part.type == StreamPartType.TEXT:
                    print(part.value, end="")
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""

    async for chunk in source:
        buffer += chunk if isinstance(chunk, str) else decoder.decode(chunk)
        while True:
            newline = buffer.find("\n")
            if newline == -1:
                break
            line, buffer = buffer[:newline], buffer[newline + 1:]
            if line.strip():
                yield parse_stream_part(line)

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield parse_stream_part(buffer)
