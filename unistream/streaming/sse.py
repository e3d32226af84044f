"""
unistream - Incremental SSE Decoder

Turns an arbitrarily chunked byte (or text) stream into server-sent
events. Chunk boundaries may fall anywhere: inside a multi-byte UTF-8
sequence, inside a line, or between the CR and LF of a line ending.

Usage:
    decoder = SSEDecoder()
    async for piece in response.aiter_bytes():
        for event in decoder.decode(piece):
            handle(event.data)
    for event in decoder.flush():
        handle(event.data)
"""

import codecs
import re
from dataclasses import dataclass
from typing import List, Optional, Union

_LINE_END = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched event; ``data`` joins multiple data lines with newlines."""
    data: str
    event: Optional[str] = None
    id: Optional[str] = None


class SSEDecoder:
    """
    Stateful SSE line parser.

    Raises UnicodeDecodeError when the byte stream is not valid UTF-8;
    the framing cannot be trusted after that point.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
        self._buffer = ""
        self._data_lines: List[str] = []
        self._event: Optional[str] = None
        self._last_id: Optional[str] = None

    def decode(self, chunk: Union[bytes, str]) -> List[SSEEvent]:
        """Feed one transport chunk; returns the events it completed."""
        if isinstance(chunk, str):
            text = chunk
        else:
            text = self._decoder.decode(chunk)
        return self._feed(text)

    def flush(self) -> List[SSEEvent]:
        """
        Finish the stream.

        A trailing line without terminator and an event without the
        closing blank line are still dispatched.
        """
        events = self._feed(self._decoder.decode(b"", final=True))

        if self._buffer:
            line = self._buffer[:-1] if self._buffer.endswith("\r") else self._buffer
            self._buffer = ""
            event = self._process_line(line)
            if event is not None:
                events.append(event)

        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _feed(self, text: str) -> List[SSEEvent]:
        self._buffer += text
        events: List[SSEEvent] = []

        while True:
            match = _LINE_END.search(self._buffer)
            if match is None:
                break
            # a CR at the very end may be the first half of CRLF
            if match.group() == "\r" and match.end() == len(self._buffer):
                break

            line = self._buffer[:match.start()]
            self._buffer = self._buffer[match.end():]

            event = self._process_line(line)
            if event is not None:
                events.append(event)

        return events

    def _process_line(self, line: str) -> Optional[SSEEvent]:
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None  # comment / keep-alive

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            if "\0" not in value:
                self._last_id = value
        # "retry" and unknown fields are ignored

        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        if not self._data_lines:
            self._event = None
            return None

        event = SSEEvent(
            data="\n".join(self._data_lines),
            event=self._event,
            id=self._last_id,
        )
        self._data_lines = []
        self._event = None
        return event
