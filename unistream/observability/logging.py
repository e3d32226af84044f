"""
unistream - Structured JSON Logging

Structured logging with automatic stream context injection.

Features:
- JSON-formatted logs for easy parsing
- Per-stream context (stream_id, provider, mode) held in a contextvar
- Log level and format configurable via environment
- Sensitive data redaction

Usage:
    from unistream.observability.logging import get_logger, LogContext

    logger = get_logger(__name__)
    LogContext.set_current(LogContext(stream_id="str_abc", provider="openai"))
    logger.info("Stream opened", transport="sse")

Output:
    {"timestamp": "2026-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "unistream.streaming.pipeline", "message": "Stream opened",
     "stream_id": "str_abc", "provider": "openai", "transport": "sse"}
"""

import os
import sys
import json
import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

_stream_context: ContextVar[Optional["LogContext"]] = ContextVar("unistream_log_context", default=None)


@dataclass
class LogContext:
    """Correlation fields for the stream currently being processed."""
    stream_id: str = ""
    provider: str = ""
    mode: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _stream_context.get()

    @classmethod
    def set_current(cls, ctx: Optional["LogContext"]):
        """Set current log context; returns a token for ``reset``."""
        return _stream_context.set(ctx)

    @classmethod
    def reset(cls, token) -> None:
        _stream_context.reset(token)

    @classmethod
    def clear(cls):
        _stream_context.set(None)

    def update(self, **kwargs):
        for key, value in kwargs.items():
            if key in ("stream_id", "provider", "mode"):
                setattr(self, key, value)
            else:
                self.extra[key] = value

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.stream_id:
            result["stream_id"] = self.stream_id
        if self.provider:
            result["provider"] = self.provider
        if self.mode:
            result["mode"] = self.mode
        result.update(self.extra)
        return result


class JSONFormatter(logging.Formatter):
    """JSON log formatter with automatic context injection."""

    SENSITIVE_FIELDS = {
        "password", "secret", "token", "api_key", "apikey",
        "authorization", "credential", "private_key",
    }

    # attributes every LogRecord carries; anything else came in via extra=
    _RESERVED = {
        "name", "msg", "args", "created", "filename",
        "funcName", "levelname", "levelno", "lineno",
        "module", "msecs", "pathname", "process",
        "processName", "relativeCreated", "stack_info",
        "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    }

    def __init__(self, include_location: bool = False, redact_sensitive: bool = True):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        if ctx:
            log_data.update(ctx.to_dict())

        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            if self.redact_sensitive and self._is_sensitive(key):
                value = "[REDACTED]"
            log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _is_sensitive(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        # "tokens" fields are usage counts, not credentials
        if field_lower.endswith("_tokens"):
            return False
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)


class StructuredLogger:
    """
    Structured logger wrapper.

    Keyword arguments other than the standard logging ones are
    attached to the record as structured fields.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        extra = dict(kwargs.pop("extra", {}))

        for key in list(kwargs.keys()):
            if key not in {"exc_info", "stack_info", "stacklevel"}:
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


_logging_configured = False


def setup_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = True,
    include_location: bool = False,
    redact_sensitive: bool = True,
) -> None:
    """
    Configure the ``unistream`` logger hierarchy.

    Only the package logger is touched so that embedding applications
    keep control of the root logger.
    """
    global _logging_configured

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger("unistream")
    package_logger.setLevel(level)

    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_output:
        formatter: logging.Formatter = JSONFormatter(
            include_location=include_location,
            redact_sensitive=redact_sensitive,
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    package_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Auto-configures from UNISTREAM_LOG_LEVEL / UNISTREAM_LOG_FORMAT on
    first use.
    """
    if not _logging_configured:
        level = os.getenv("UNISTREAM_LOG_LEVEL", "WARNING")
        json_output = os.getenv("UNISTREAM_LOG_FORMAT", "json").lower() == "json"
        setup_logging(level=level, json_output=json_output)

    return StructuredLogger(logging.getLogger(name))
