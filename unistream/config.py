"""
unistream - Stream Configuration

Per-stream settings plus environment loading.

Environment variables:
- UNISTREAM_PROTOCOL: "data" (code-prefixed lines, default) or "text"
- UNISTREAM_METRICS_ENABLED: record Prometheus metrics (default true)
- UNISTREAM_TRACING_ENABLED: open an OpenTelemetry span per stream (default false)
- UNISTREAM_LOG_LEVEL / UNISTREAM_LOG_FORMAT: see observability.logging
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .core.models import IdGenerator, create_id_generator


class WireProtocol(str, Enum):
    """Output framing of the encoded byte stream."""

    DATA = "data"  # code-prefixed JSON lines, side channel supported
    TEXT = "text"  # raw UTF-8 text deltas only


def _is_truthy(value: Optional[str], default: bool) -> bool:
    """Parse a boolean environment value."""
    if value is None or not value.strip():
        return default
    lowered = value.lower().strip()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def get_wire_protocol() -> WireProtocol:
    """
    Get the configured wire protocol.

    UNISTREAM_PROTOCOL must be one of: data, text.
    """
    raw = os.getenv("UNISTREAM_PROTOCOL", "data").lower().strip()
    try:
        return WireProtocol(raw)
    except ValueError:
        raise ValueError("Invalid UNISTREAM_PROTOCOL. Use one of: data, text") from None


@dataclass
class StreamConfig:
    """Settings threaded through one stream's pipeline."""
    id_generator: IdGenerator = field(default_factory=create_id_generator)
    protocol: WireProtocol = WireProtocol.DATA
    sse_sentinel: Optional[str] = None  # overrides the adapter default when set
    metrics_enabled: bool = True
    tracing_enabled: bool = False

    @classmethod
    def from_env(cls, id_generator: Optional[IdGenerator] = None) -> "StreamConfig":
        """Build a config from UNISTREAM_* environment variables."""
        return cls(
            id_generator=id_generator or create_id_generator(),
            protocol=get_wire_protocol(),
            sse_sentinel=os.getenv("UNISTREAM_SSE_SENTINEL") or None,
            metrics_enabled=_is_truthy(os.getenv("UNISTREAM_METRICS_ENABLED"), True),
            tracing_enabled=_is_truthy(os.getenv("UNISTREAM_TRACING_ENABLED"), False),
        )
