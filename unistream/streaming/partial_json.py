"""
unistream - Partial JSON Reconstruction

Parses a growing JSON text buffer into the most specific value it
resolves to so far.

Closure rules:
- An unterminated string keeps its content up to the last complete
  character; a dangling escape is dropped.
- An unterminated array or object is closed after its last complete
  element. An object member whose key is unterminated, or whose value
  has not started, is dropped.
- A partial number keeps its longest valid prefix; a lone ``-`` is
  dropped. Partial ``true``/``false``/``null`` are dropped.
- Parsing stops at the first character that cannot continue valid
  JSON; everything before it is kept.
"""

import json
import re
from typing import Any, AsyncIterable, AsyncIterator, List, Optional

from ..core.models import ErrorEvent, StreamEvent, TextDelta, ToolCallDelta
from ..observability.logging import get_logger
from .iterators import aclose_iterator

logger = get_logger(__name__)

_MISSING = object()

_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_NUMBER_CHARS = frozenset("+-.eE0123456789")
_HEX = frozenset("0123456789abcdefABCDEF")
_WHITESPACE = " \t\n\r"
_LITERALS = (("true", True), ("false", False), ("null", None))


class _PartialParser:
    """Single-use recursive descent parser over one buffer snapshot."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.end = len(text)
        # set once input ran out inside a value, or an invalid character was hit
        self.halted = False

    def parse(self) -> Any:
        self._skip_whitespace()
        if self.pos >= self.end:
            return _MISSING
        return self._value()

    def _skip_whitespace(self):
        while self.pos < self.end and self.text[self.pos] in _WHITESPACE:
            self.pos += 1

    def _value(self) -> Any:
        char = self.text[self.pos]
        if char == "{":
            return self._object()
        if char == "[":
            return self._array()
        if char == '"':
            value, _ = self._string()
            return value
        if char == "-" or char.isdigit():
            return self._number()
        return self._literal()

    def _object(self) -> Any:
        self.pos += 1
        result = {}

        while True:
            self._skip_whitespace()
            if self.pos >= self.end:
                self.halted = True
                return result

            char = self.text[self.pos]
            if char == "}":
                self.pos += 1
                return result
            if char == ",":
                self.pos += 1
                continue
            if char != '"':
                self.halted = True
                return result

            key, complete = self._string()
            if not complete or key is _MISSING:
                return result

            self._skip_whitespace()
            if self.pos >= self.end:
                self.halted = True
                return result
            if self.text[self.pos] != ":":
                self.halted = True
                return result
            self.pos += 1

            self._skip_whitespace()
            if self.pos >= self.end:
                self.halted = True
                return result

            value = self._value()
            if value is not _MISSING:
                result[key] = value
            if self.halted:
                return result

    def _array(self) -> Any:
        self.pos += 1
        result: List[Any] = []

        while True:
            self._skip_whitespace()
            if self.pos >= self.end:
                self.halted = True
                return result

            char = self.text[self.pos]
            if char == "]":
                self.pos += 1
                return result
            if char == ",":
                self.pos += 1
                continue

            value = self._value()
            if value is not _MISSING:
                result.append(value)
            if self.halted:
                return result

    def _string(self):
        """Returns (value, complete); value is _MISSING if it cannot be decoded."""
        start = self.pos
        self.pos += 1
        cut = None

        while self.pos < self.end:
            char = self.text[self.pos]
            if char == '"':
                self.pos += 1
                return self._decode_string(self.text[start:self.pos]), True
            if char == "\\":
                if self.pos + 1 >= self.end:
                    cut = self.pos
                    break
                if self.text[self.pos + 1] == "u":
                    digits = self.text[self.pos + 2:self.pos + 6]
                    if len(digits) < 4 and all(d in _HEX for d in digits):
                        cut = self.pos
                        break
                    self.pos += 6
                    continue
                self.pos += 2
                continue
            self.pos += 1

        self.halted = True
        body = self.text[start:cut if cut is not None else self.end]
        self.pos = self.end
        return self._decode_string(body + '"'), False

    def _decode_string(self, literal: str) -> Any:
        try:
            return json.loads(literal, strict=False)
        except ValueError:
            self.halted = True
            return _MISSING

    def _number(self) -> Any:
        stop = self.pos
        while stop < self.end and self.text[stop] in _NUMBER_CHARS:
            stop += 1

        token = self.text[self.pos:stop]
        match = _NUMBER.match(token)
        if match is None:
            self.pos = stop
            self.halted = True
            return _MISSING

        literal = match.group()
        if len(literal) < len(token) or stop >= self.end:
            self.halted = True
        self.pos += len(literal)

        if any(c in literal for c in ".eE"):
            return float(literal)
        return int(literal)

    def _literal(self) -> Any:
        rest = self.text[self.pos:self.pos + 5]
        for word, value in _LITERALS:
            if rest.startswith(word):
                self.pos += len(word)
                return value
            if word.startswith(rest) and self.pos + len(rest) >= self.end:
                self.pos = self.end
                self.halted = True
                return _MISSING
        self.halted = True
        return _MISSING


def parse_partial_json(text: Optional[str], default: Any = None) -> Any:
    """
    Best-effort value of a possibly incomplete JSON text.

    Returns ``default`` when nothing has resolved yet. Never raises on
    malformed input.
    """
    if not text:
        return default
    value = _PartialParser(text).parse()
    return default if value is _MISSING else value


def is_deep_equal_data(left: Any, right: Any) -> bool:
    """Structural equality of JSON values; booleans never equal numbers."""
    if left is right:
        return True
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if left is None or right is None:
        return False
    if isinstance(left, dict):
        if not isinstance(right, dict) or left.keys() != right.keys():
            return False
        return all(is_deep_equal_data(left[key], right[key]) for key in left)
    if isinstance(left, list):
        if not isinstance(right, list) or len(left) != len(right):
            return False
        return all(is_deep_equal_data(a, b) for a, b in zip(left, right))
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


class PartialObjectReconstructor:
    """
    Growing buffer plus the last emitted snapshot.

    ``feed`` returns a new snapshot only when it differs structurally
    from the previous one.
    """

    def __init__(self):
        self.buffer = ""
        self._latest: Any = _MISSING

    @property
    def has_snapshot(self) -> bool:
        return self._latest is not _MISSING

    @property
    def latest(self) -> Any:
        return None if self._latest is _MISSING else self._latest

    def feed(self, text: str) -> List[Any]:
        self.buffer += text
        value = parse_partial_json(self.buffer, default=_MISSING)
        if value is _MISSING:
            return []
        if self._latest is not _MISSING and is_deep_equal_data(self._latest, value):
            return []
        self._latest = value
        return [value]


async def partial_objects(
    events: AsyncIterable[StreamEvent],
    mode: str = "json",
    reconstructor: Optional[PartialObjectReconstructor] = None,
) -> AsyncIterator[Any]:
    """
    Deduplicated partial snapshots of the JSON a stream is producing.

    ``mode="json"`` reads text deltas; ``mode="tool"`` reads the argument
    fragments of the first tool call. A fatal ErrorEvent is raised to
    the consumer.
    """
    if mode not in ("json", "tool"):
        raise ValueError(f"Unsupported object mode: {mode}")

    reconstructor = reconstructor or PartialObjectReconstructor()
    tool_index: Optional[int] = None
    iterator = events.__aiter__()

    try:
        async for event in iterator:
            if isinstance(event, ErrorEvent):
                if not event.fatal:
                    logger.debug("Ignoring isolated stream error", error=str(event.cause))
                    continue
                cause = event.cause
                if isinstance(cause, BaseException):
                    raise cause
                raise RuntimeError(str(cause))

            fragment = None
            if mode == "json" and isinstance(event, TextDelta):
                fragment = event.text
            elif mode == "tool" and isinstance(event, ToolCallDelta):
                if tool_index is None:
                    tool_index = event.index
                if event.index == tool_index:
                    fragment = event.args_fragment

            if fragment:
                for snapshot in reconstructor.feed(fragment):
                    yield snapshot
    finally:
        await aclose_iterator(iterator)
