"""
unistream - Provider Adapter Base

A provider adapter is a capability set, not a class hierarchy:
each provider is described by a frozen ``ProviderAdapter`` value
naming the transports it can arrive over and the pure functions
that read its chunks.

The adapter is responsible for:
1. Declaring which transports the provider's stream can use
2. Extracting zero-or-one canonical event from one raw chunk
3. Extracting finish reason / usage when a chunk carries them
4. Splitting chunks that pack several deltas into single-delta chunks
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from ..core.models import Finish, FinishReason, Provider, StreamEvent


class TransportKind(str, Enum):
    """How raw chunks arrive from the provider."""
    SSE = "sse"                       # async byte/str stream with "data: <json>" events
    OBJECTS = "objects"               # async iterable of already decoded chunks
    BINARY_FRAMES = "binary_frames"   # async iterable of frames embedding a byte payload


DeltaExtractor = Callable[[Mapping[str, Any]], Optional[StreamEvent]]
FinishExtractor = Callable[[Mapping[str, Any]], Optional[Finish]]
ChunkSplitter = Callable[[Mapping[str, Any]], Iterable[Mapping[str, Any]]]


def _single(chunk: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    return [chunk]


def _no_finish(chunk: Mapping[str, Any]) -> Optional[Finish]:
    return None


@dataclass(frozen=True)
class ProviderAdapter:
    """Everything the pipeline needs to know about one provider's stream."""
    provider: Provider
    transports: FrozenSet[TransportKind]
    extract: DeltaExtractor
    extract_finish: FinishExtractor = _no_finish
    split: ChunkSplitter = _single
    sse_sentinel: Optional[str] = None

    @property
    def default_transport(self) -> TransportKind:
        """Preferred transport when the source gives no hint."""
        for kind in (TransportKind.SSE, TransportKind.BINARY_FRAMES, TransportKind.OBJECTS):
            if kind in self.transports:
                return kind
        raise ValueError(f"Adapter for {self.provider.value} declares no transport")

    def supports(self, transport: TransportKind) -> bool:
        return transport in self.transports


# ============================================================
# Helpers shared by the provider modules
# ============================================================

def as_mapping(chunk: Any) -> Mapping[str, Any]:
    """
    View a raw chunk as a mapping.

    SDK clients yield pydantic models; those are dumped so extractors
    only ever see plain dicts.
    """
    if isinstance(chunk, Mapping):
        return chunk
    model_dump = getattr(chunk, "model_dump", None)
    if callable(model_dump):
        return model_dump(exclude_none=True)
    to_dict = getattr(chunk, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Cannot read chunk of type {type(chunk).__name__}")


def first(items: Any) -> Optional[Any]:
    """First element of a list-like value, or None."""
    if isinstance(items, list) and items:
        return items[0]
    return None


def map_finish_reason(raw: Optional[str], mapping: Dict[str, FinishReason]) -> FinishReason:
    """Map a provider finish reason string; unknown strings become OTHER."""
    if raw is None:
        return FinishReason.UNKNOWN
    return mapping.get(raw, FinishReason.OTHER)
