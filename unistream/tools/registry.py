"""
unistream - Tool Registry

Tools the caller makes available to the model. A tool has a name, a
description, an optional pydantic model describing its parameters and
an optional ``execute`` function.

The registry checks assembled tool calls against the declared tools:
- an unknown tool name raises NoSuchToolError
- arguments that are not JSON, or that fail the parameter model,
  raise InvalidToolArgumentsError

Usage:
    class WeatherArgs(BaseModel):
        city: str

    registry = ToolRegistry([
        Tool(name="get_weather", parameters=WeatherArgs, execute=fetch_weather),
    ])
    parsed = registry.parse_tool_call(tool_call)
    result = await registry.execute_tool_call(tool_call)
"""

import inspect
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel, ValidationError

from ..core.errors import InvalidToolArgumentsError, NoSuchToolError
from ..core.models import ToolCall


@dataclass
class Tool:
    """A callable tool exposed to the model."""
    name: str
    description: str = ""
    parameters: Optional[Type[BaseModel]] = None
    execute: Optional[Callable[..., Any]] = None

    def json_schema(self) -> Dict[str, Any]:
        """OpenAI-style function definition."""
        parameters = (
            self.parameters.model_json_schema()
            if self.parameters is not None
            else {"type": "object", "properties": {}}
        )
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass
class ParsedToolCall:
    """A tool call whose arguments passed validation."""
    call_id: str
    tool_name: str
    args: Any  # parameter model instance, or the decoded JSON when no model is declared
    raw_args: str


@dataclass
class ToolResult:
    """Outcome of executing a tool call."""
    call_id: str
    tool_name: str
    args: Any
    result: Any


class ToolRegistry:
    """Named tools available to one request."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> Tool:
        if tool.name in self._tools:
            raise ValueError(f"Tool {tool.name} is already registered")
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool.json_schema() for tool in self._tools.values()]

    def parse_tool_call(self, call: ToolCall) -> ParsedToolCall:
        """
        Validate a tool call against the registry.

        Raises:
            NoSuchToolError: If the tool is not registered
            InvalidToolArgumentsError: If the arguments are invalid
        """
        tool = self._tools.get(call.tool_name)
        if tool is None:
            raise NoSuchToolError(
                call.tool_name,
                available_tools=self.names if self._tools else None,
                tool_args=call.args,
            )

        try:
            decoded = json.loads(call.args) if call.args.strip() else {}
        except json.JSONDecodeError as e:
            raise InvalidToolArgumentsError(call.tool_name, call.args, e) from e

        args: Any = decoded
        if tool.parameters is not None:
            try:
                args = tool.parameters.model_validate(decoded)
            except ValidationError as e:
                raise InvalidToolArgumentsError(call.tool_name, call.args, e) from e

        return ParsedToolCall(
            call_id=call.call_id,
            tool_name=call.tool_name,
            args=args,
            raw_args=call.args,
        )

    async def execute_tool_call(self, call: ToolCall) -> ToolResult:
        """
        Validate and run a tool call.

        Raises:
            NoSuchToolError / InvalidToolArgumentsError: As parse_tool_call
            ValueError: If the tool declares no execute function
        """
        parsed = self.parse_tool_call(call)
        tool = self._tools[call.tool_name]
        if tool.execute is None:
            raise ValueError(f"Tool {tool.name} has no execute function")

        result = tool.execute(parsed.args)
        if inspect.isawaitable(result):
            result = await result

        return ToolResult(
            call_id=parsed.call_id,
            tool_name=parsed.tool_name,
            args=parsed.args,
            result=result,
        )
