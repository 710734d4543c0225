"""
Base classes for model adapters.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM.

    ``status`` moves pending -> approved/denied -> executed/failed as the run
    processes the call.
    """

    id: str
    name: str
    arguments: dict[str, Any]
    status: Literal["pending", "approved", "denied", "executed", "failed"] = "pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
            status=data.get("status", "pending"),
        )


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.name:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LLMMessage":
        tool_calls = data.get("tool_calls")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls else None,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    thinking: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: str | None = None
    raw_response: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "thinking": self.thinking,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "model": self.model,
            "stop_reason": self.stop_reason,
        }


@dataclass
class LLMStreamChunk:
    """An incremental piece of a streamed response.

    The last chunk of a stream carries ``final``; earlier chunks carry
    content or thinking deltas.
    """

    content: str = ""
    thinking: str = ""
    final: LLMResponse | None = None


class BaseLLM(ABC):
    """Base class for model adapters.

    Adapters raise ``TransientModelError`` for failures worth retrying
    (rate limits, timeouts, 5xx). Any other exception is final. The
    ``cancel_event`` is set when the owning run is cancelled; adapters
    should abort the in-flight request when they observe it.
    """

    def __init__(
        self,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        pass

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[LLMStreamChunk]:
        """Stream a response from the LLM.

        The default implementation delivers the whole response as one
        content chunk followed by the final response.
        """
        response = await self.generate(
            messages,
            tools=tools,
            system_prompt=system_prompt,
            cancel_event=cancel_event,
        )
        if response.thinking:
            yield LLMStreamChunk(thinking=response.thinking)
        if response.content:
            yield LLMStreamChunk(content=response.content)
        yield LLMStreamChunk(final=response)

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass
