"""
unistream Tools Module

Tool registry used to validate and execute assembled tool calls.
"""

from .registry import ParsedToolCall, Tool, ToolRegistry, ToolResult

__all__ = [
    "Tool",
    "ToolRegistry",
    "ParsedToolCall",
    "ToolResult",
]
