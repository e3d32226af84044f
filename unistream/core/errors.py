"""
unistream - Error Definitions

Error taxonomy with infra vs semantic classification.

- Infra errors come from the upstream transport or its payloads
  (connection drops, non-2xx responses, undecodable frames).
- Semantic errors come from the caller's side of the contract
  (malformed wire input, unknown tools, invalid tool arguments).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


@dataclass
class ErrorDetails:
    """Full error information, serializable for the side channel."""
    code: str
    message: str
    type: ErrorType

    provider: Optional[str] = None
    retryable: bool = False
    partial_content: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.partial_content:
            result["partial_content"] = self.partial_content
        if self.details:
            result["details"] = self.details

        return {"error": result}


class UnistreamError(Exception):
    """Base exception for all unistream errors."""

    def __init__(self, error: ErrorDetails):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code


# ============================================================
# Infra Errors
# ============================================================

class InfraError(UnistreamError):
    """Base class for upstream transport and payload errors."""
    pass


class TransportError(InfraError):
    """The upstream connection failed or returned an error status."""

    def __init__(
        self,
        provider: str,
        message: str,
        code: str = "transport_error",
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            ErrorDetails(
                code=code,
                message=message,
                type=ErrorType.INFRA,
                provider=provider,
                retryable=retryable,
                details=details,
            )
        )
        self.status_code = status_code


class StreamDecodeError(InfraError):
    """A frame or SSE event could not be decoded."""

    def __init__(self, provider: str, message: str, raw: Any = None):
        details: Dict[str, Any] = {}
        if raw is not None:
            details["raw"] = raw if isinstance(raw, str) else repr(raw)
        super().__init__(
            ErrorDetails(
                code="decode_error",
                message=message,
                type=ErrorType.INFRA,
                provider=provider,
                retryable=False,
                details=details,
            )
        )
        self.raw = raw


class ProviderStreamError(InfraError):
    """The provider reported an error inside an otherwise healthy stream."""

    def __init__(self, provider: str, message: str, error_type: str = ""):
        super().__init__(
            ErrorDetails(
                code="provider_stream_error",
                message=message,
                type=ErrorType.INFRA,
                provider=provider,
                retryable=False,
                details={"error_type": error_type} if error_type else {},
            )
        )


# ============================================================
# Semantic Errors
# ============================================================

class SemanticError(UnistreamError):
    """Base class for errors on the caller's side of the contract."""
    pass


class StreamPartParseError(SemanticError, ValueError):
    """A wire line could not be parsed."""

    def __init__(self, reason: str, message: str, line: str = ""):
        super().__init__(
            ErrorDetails(
                code=f"stream_part_{reason}",
                message=message,
                type=ErrorType.SEMANTIC,
                details={"line": line} if line else {},
            )
        )
        self.reason = reason
        self.line = line


class UnsupportedProviderError(SemanticError, ValueError):
    """No adapter is registered for the requested provider tag."""

    def __init__(self, provider: str, supported: List[str]):
        super().__init__(
            ErrorDetails(
                code="unsupported_provider",
                message=f"Unsupported provider: {provider}",
                type=ErrorType.SEMANTIC,
                details={"supported": supported},
            )
        )


class StreamDataClosedError(SemanticError, RuntimeError):
    """Data was appended to a side channel that is already closed."""

    def __init__(self):
        super().__init__(
            ErrorDetails(
                code="stream_data_closed",
                message="Data stream is already closed",
                type=ErrorType.SEMANTIC,
            )
        )


class NoSuchToolError(SemanticError):
    """The model invoked a tool that the caller did not register."""

    def __init__(self, tool_name: str, available_tools: Optional[List[str]] = None, tool_args: str = ""):
        if available_tools is None:
            message = f"Tool {tool_name} not found (no tools provided)."
        else:
            message = f"Tool {tool_name} not found."
        super().__init__(
            ErrorDetails(
                code="no_such_tool",
                message=message,
                type=ErrorType.SEMANTIC,
                details={
                    "tool_name": tool_name,
                    "tool_args": tool_args,
                    "available_tools": available_tools or [],
                },
            )
        )
        self.tool_name = tool_name
        self.tool_args = tool_args


class InvalidToolArgumentsError(SemanticError):
    """Tool arguments were not valid JSON or failed schema validation."""

    def __init__(self, tool_name: str, tool_args: str, cause: Exception):
        super().__init__(
            ErrorDetails(
                code="invalid_tool_arguments",
                message=f"Invalid arguments for tool {tool_name}: {cause}",
                type=ErrorType.SEMANTIC,
                details={"tool_name": tool_name, "tool_args": tool_args},
            )
        )
        self.tool_name = tool_name
        self.tool_args = tool_args
        self.cause = cause


class IncompleteToolCallError(SemanticError):
    """
    Diagnostic for a tool call whose arguments never became valid JSON.

    Never raised by the pipeline; logged and counted when the stream
    finishes with the call still open.
    """

    def __init__(self, index: int, tool_name: Optional[str], tool_args: str):
        super().__init__(
            ErrorDetails(
                code="incomplete_tool_call",
                message=f"Tool call {index} ({tool_name or 'unnamed'}) did not complete before finish",
                type=ErrorType.SEMANTIC,
                details={"index": index, "tool_name": tool_name, "tool_args": tool_args},
            )
        )
        self.index = index
        self.tool_name = tool_name
        self.tool_args = tool_args


class NoObjectGeneratedError(SemanticError):
    """The stream ended without text that parses as the requested object."""

    def __init__(self, text: str, cause: Optional[Exception] = None):
        super().__init__(
            ErrorDetails(
                code="no_object_generated",
                message=f"No object generated: {cause}" if cause else "No object generated",
                type=ErrorType.SEMANTIC,
                partial_content=text,
            )
        )
        self.text = text
        self.cause = cause


# ============================================================
# Classification helpers
# ============================================================

def classify_transport_error(exception: Exception, provider: str) -> InfraError:
    """
    Convert an exception raised by the upstream transport into an infra error.

    httpx exceptions are mapped by kind; anything else becomes a generic
    transport error carrying the original message.
    """
    if isinstance(exception, InfraError):
        return exception

    if isinstance(exception, httpx.TimeoutException):
        return TransportError(
            provider,
            f"{provider} did not respond within timeout",
            code="read_timeout",
        )

    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        if status == 429:
            code = "rate_limited"
        elif status >= 500:
            code = f"upstream_{status}"
        else:
            code = "upstream_error"
        return TransportError(
            provider,
            f"{provider} returned error {status}",
            code=code,
            status_code=status,
            retryable=status == 429 or status >= 500,
        )

    if isinstance(exception, httpx.TransportError):
        return TransportError(
            provider,
            f"Connection to {provider} failed: {exception}",
            code="connection_failed",
        )

    return TransportError(
        provider,
        str(exception) or exception.__class__.__name__,
        retryable=False,
    )


def error_payload(cause: Any) -> Dict[str, Any]:
    """Render any error cause as the ``{"error": {...}}`` side-channel value."""
    if isinstance(cause, UnistreamError):
        return cause.error.to_dict()
    return {
        "error": {
            "code": "internal_error",
            "message": str(cause),
            "type": ErrorType.INFRA.value,
            "retryable": False,
        }
    }
