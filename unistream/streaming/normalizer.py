"""
unistream - Stream Normalizer

Runs the provider extractors over raw chunks and produces the
canonical event sequence.

Guarantees:
- Finish reasons and usage reported on any chunk are folded into one
  ``Finish``, emitted once, after the last delta.
- A fatal ``ErrorEvent`` ends the sequence; no ``Finish`` follows it.
- An aborted stream ends without ``Finish``.
"""

from typing import AsyncIterable, AsyncIterator, Optional

from ..adapters.base import ProviderAdapter
from ..core.errors import StreamDecodeError
from ..core.models import ErrorEvent, Finish, StreamEvent
from ..observability.logging import get_logger
from .cancellation import AbortSignal
from .iterators import RawItem, aclose_iterator

logger = get_logger(__name__)


class StreamNormalizer:
    """
    Per-stream extraction state.

    Usage:
        normalizer = StreamNormalizer(OPENAI_ADAPTER)
        for event in normalizer.normalize_chunk(chunk):
            ...
        finish = normalizer.finish()
    """

    def __init__(self, adapter: ProviderAdapter):
        self.adapter = adapter
        self.provider = adapter.provider.value
        self._finish: Optional[Finish] = None
        self.chunks_seen = 0

    def normalize_chunk(self, chunk) -> list:
        """Events carried by one raw chunk, in order."""
        self.chunks_seen += 1
        try:
            pieces = list(self.adapter.split(chunk))
            events = [self.adapter.extract(piece) for piece in pieces]
            reported = self.adapter.extract_finish(chunk)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping chunk the extractor could not read", error=str(e))
            return [ErrorEvent(StreamDecodeError(self.provider, f"Unreadable chunk: {e}", raw=chunk), fatal=False)]

        if reported is not None:
            self._finish = reported if self._finish is None else self._finish.merge(reported)

        return [event for event in events if event is not None]

    def finish(self) -> Finish:
        return self._finish or Finish()


async def normalize_events(
    items: AsyncIterable[RawItem],
    adapter: ProviderAdapter,
    *,
    signal: Optional[AbortSignal] = None,
) -> AsyncIterator[StreamEvent]:
    """Canonical events for a raw chunk sequence."""
    normalizer = StreamNormalizer(adapter)
    iterator = items.__aiter__()

    try:
        async for item in iterator:
            if isinstance(item, ErrorEvent):
                yield item
                if item.fatal:
                    return
                continue

            for event in normalizer.normalize_chunk(item):
                yield event
                if isinstance(event, ErrorEvent) and event.fatal:
                    return
    finally:
        await aclose_iterator(iterator)

    if signal is not None and signal.aborted:
        logger.debug("Stream aborted before finish", reason=signal.reason, chunks=normalizer.chunks_seen)
        return

    yield normalizer.finish()
