"""
Model adapter contract.

Concrete provider SDK adapters live outside this package; they subclass
``BaseLLM``. ``ScriptedLLM`` replays canned responses for tests and dry runs.
"""

from .base import (
    BaseLLM,
    LLMMessage,
    LLMResponse,
    LLMStreamChunk,
    ToolCall,
    ToolDefinition,
)
from .scripted import ScriptedLLM

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMResponse",
    "LLMStreamChunk",
    "ToolCall",
    "ToolDefinition",
    "ScriptedLLM",
]
