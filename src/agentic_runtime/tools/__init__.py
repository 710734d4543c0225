"""Tools available to an agent run."""

from .approval import ApprovalGate, PendingApproval
from .base import BaseTool, Tool, ToolParameter, ToolResult
from .invoker import Invocation, ToolInvoker, conflicts, plan_batches
from .memory_tools import create_memory_tools
from .registry import ToolRegistry

__all__ = [
    "ApprovalGate",
    "BaseTool",
    "Invocation",
    "PendingApproval",
    "Tool",
    "ToolInvoker",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "conflicts",
    "create_memory_tools",
    "plan_batches",
]
