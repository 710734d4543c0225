"""
Base classes for tools.
"""

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..llm.base import ToolDefinition


@dataclass
class ToolResult:
    """Result from a tool execution.

    Tools never touch the agent context. A tool that wants to remember
    something returns ``memory_updates``; the owning run applies them.
    A successful result with ``terminal`` set completes the run once the
    current batch of tool calls has been merged.
    """

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None
    memory_updates: list[Any] = field(default_factory=list)
    terminal: bool = False


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    The handler receives ``(args, context)`` where ``context`` is a read-only
    snapshot of the agent context, and may be sync or async. Sync handlers
    run in a worker thread. It returns a ``ToolResult`` or any value, which
    becomes the output.

    ``side_effects`` names the resources the tool writes. ``None`` means
    undeclared: the call never runs concurrently with another call. An
    empty set marks the tool as side-effect free.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Any]
    approval_required: bool = False
    side_effects: Optional[frozenset[str]] = None
    input_schema: dict[str, Any] | None = None

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        if self.input_schema is not None:
            return self.input_schema

        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    async def execute(self, args: dict[str, Any], context: Any = None) -> ToolResult:
        """Execute the tool handler."""
        if inspect.iscoroutinefunction(self.handler):
            result = await self.handler(args, context)
        else:
            result = await asyncio.to_thread(self.handler, args, context)
        if inspect.isawaitable(result):
            result = await result
        return as_tool_result(result)

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )


class BaseTool(ABC):
    """Base class for class-based tools."""

    approval_required: bool = False
    side_effects: Optional[frozenset[str]] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""
        pass

    @abstractmethod
    async def execute(self, args: dict[str, Any], context: Any = None) -> ToolResult:
        """Execute the tool with given arguments."""
        pass

    def get_parameters_schema(self) -> dict[str, Any]:
        return self.parameters

    def to_definition(self) -> ToolDefinition:
        """Convert to a tool definition for LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


def as_tool_result(value: Any) -> ToolResult:
    """Wrap a handler return value in a ToolResult."""
    if isinstance(value, ToolResult):
        return value
    return ToolResult(success=True, output=stringify_output(value), data=value)


def stringify_output(value: Any) -> str:
    """Render a tool output for the model."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return "0x" + bytes(value).hex()
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)
