"""
Memory tools.

``save_memory`` asks the run to store, update or delete a memory entry and
needs approval. ``recall_memory`` reads entries from the context snapshot.
Neither touches the context directly.
"""

from typing import Any

from ..memory import MemoryEntry, MemoryScope
from .base import Tool, ToolParameter, ToolResult

MEMORY_RESOURCE = "memory"


def _save_memory(args: dict[str, Any], context: Any) -> ToolResult:
    key = args["key"].strip()
    value = args.get("value", "")
    scope = MemoryScope(args.get("scope") or MemoryScope.RUN.value)

    entry = MemoryEntry(
        key=key,
        value=value,
        scope=scope,
        description=args.get("description", ""),
    )
    output = f"Memory '{key}' deleted" if not value else f"Memory '{key}' saved ({scope.value})"
    return ToolResult(success=True, output=output, memory_updates=[entry])


def _recall_memory(args: dict[str, Any], context: Any) -> ToolResult:
    memories = list(context.memories) if context is not None else []
    key = args.get("key")

    if key:
        for entry in memories:
            if entry.key == key:
                return ToolResult(success=True, output=entry.value, data=entry.to_dict())
        return ToolResult(success=True, output=f"No memory stored under '{key}'.")

    if not memories:
        return ToolResult(success=True, output="No memories stored.")
    return ToolResult(
        success=True,
        output="\n\n".join(f"## Memory: {m.key}\n{m.value}" for m in memories),
        data=[m.to_dict() for m in memories],
    )


def create_memory_tools() -> list[Tool]:
    """Build the save/recall memory tool pair."""
    save = Tool(
        name="save_memory",
        description=(
            "Save, update or delete a named memory entry. Memories are shown to you "
            "in every prompt. Set value to an empty string to delete the entry."
        ),
        parameters=[
            ToolParameter(
                name="key",
                param_type="string",
                description="Name of the memory entry",
            ),
            ToolParameter(
                name="value",
                param_type="string",
                description="Content to remember (empty string to delete)",
            ),
            ToolParameter(
                name="description",
                param_type="string",
                description="Short description of what the entry holds",
                required=False,
            ),
            ToolParameter(
                name="scope",
                param_type="string",
                description="'run' keeps the entry for this run, 'conversation' keeps it for later runs",
                required=False,
                enum=[s.value for s in MemoryScope],
            ),
        ],
        handler=_save_memory,
        approval_required=True,
        side_effects=frozenset({MEMORY_RESOURCE}),
    )

    recall = Tool(
        name="recall_memory",
        description="Read a memory entry by key, or list all entries when no key is given.",
        parameters=[
            ToolParameter(
                name="key",
                param_type="string",
                description="Name of the memory entry",
                required=False,
            ),
        ],
        handler=_recall_memory,
        side_effects=frozenset(),
    )

    return [save, recall]
