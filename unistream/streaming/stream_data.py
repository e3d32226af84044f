"""
unistream - Stream Data Side Channel

Ordered, append-only queue of JSON values sent alongside the primary
stream as ``2`` parts. Values appended while the stream runs are
written ahead of the next primary line; whatever is still pending when
the primary stream ends is written last.

Usage:
    data = StreamData()
    data.append({"source": "kb-42"})
    return stream_response(source, "openai", data=data)
"""

from typing import Any, List, Optional

from ..core.errors import StreamDataClosedError
from .stream_parts import StreamPartType, format_stream_part


class StreamData:
    """Side channel for one response."""

    def __init__(self):
        self._pending: List[Any] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, value: Any):
        """
        Queue a JSON value.

        Raises:
            StreamDataClosedError: If the channel was already closed
        """
        if self._closed:
            raise StreamDataClosedError()
        self._pending.append(value)

    def close(self):
        """Close the channel. Safe to call more than once."""
        self._closed = True

    def drain(self) -> List[Any]:
        """Take all pending values in arrival order."""
        values, self._pending = self._pending, []
        return values

    def format_pending(self) -> Optional[str]:
        """Pending values as one ``2`` line, or None when nothing is queued."""
        values = self.drain()
        if not values:
            return None
        return format_stream_part(StreamPartType.DATA, values)
