"""
Tool registry for managing available tools.
"""

from typing import Iterable, Union

import structlog
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ..errors import FatalConfigError
from ..llm.base import ToolDefinition
from .base import BaseTool, Tool

logger = structlog.get_logger()

AnyTool = Union[BaseTool, Tool]


class ToolRegistry:
    """Registry for managing tools.

    Registries are plain values passed to the agent; there is no global
    instance, so independent runs never share tools by accident.
    """

    def __init__(self, tools: Iterable[AnyTool] | None = None):
        self._tools: dict[str, AnyTool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: AnyTool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise FatalConfigError(f"duplicate tool name: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.debug("Tool unregistered", tool_name=name)

    def get(self, name: str) -> AnyTool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for LLM."""
        return [tool.to_definition() for tool in self._tools.values()]

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        """Build a registry holding only the named tools."""
        selected = ToolRegistry()
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                raise FatalConfigError(f"unknown tool referenced: {name}")
            selected.register(tool)
        return selected

    def validate(self) -> None:
        """Check every tool declaration before a run starts.

        Raises:
            FatalConfigError: a tool has no name or an invalid parameter schema
        """
        for name, tool in self._tools.items():
            if not name:
                raise FatalConfigError("tool registered without a name")
            schema = tool.get_parameters_schema()
            if not isinstance(schema, dict):
                raise FatalConfigError(f"tool '{name}' parameter schema must be an object")
            try:
                Draft202012Validator.check_schema(schema)
            except SchemaError as e:
                raise FatalConfigError(
                    f"tool '{name}' has an invalid parameter schema: {e.message}", e
                ) from e
