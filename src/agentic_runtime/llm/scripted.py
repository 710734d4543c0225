"""
Scripted model adapter for tests and dry runs.
"""

import asyncio
from typing import Any, AsyncIterator, Callable, Union

import structlog

from ..errors import ModelError
from .base import BaseLLM, LLMMessage, LLMResponse, LLMStreamChunk, ToolDefinition

logger = structlog.get_logger()

ScriptStep = Union[LLMResponse, Exception, Callable[..., LLMResponse]]


class ScriptedLLM(BaseLLM):
    """Replays a fixed script of responses.

    Each call consumes one step. A step is an ``LLMResponse`` (returned), an
    exception instance (raised) or a callable receiving the prompt and
    returning a response. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        script: list[ScriptStep],
        model: str = "scripted",
        delay: float = 0.0,
        chunk_size: int = 8,
    ):
        super().__init__(model=model)
        self._script = list(script)
        self._position = 0
        self.delay = delay
        self.chunk_size = chunk_size
        self.calls: list[dict[str, Any]] = []
        self.cancel_signals = 0

    @property
    def provider_name(self) -> str:
        return "scripted"

    @property
    def remaining(self) -> int:
        return len(self._script) - self._position

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": list(messages),
            "tools": list(tools or []),
            "system_prompt": system_prompt,
        })

        if self.delay:
            await self._sleep(cancel_event)

        if self._position >= len(self._script):
            raise ModelError(f"script exhausted after {len(self._script)} calls")

        step = self._script[self._position]
        self._position += 1

        if isinstance(step, Exception):
            logger.debug("Scripted failure", error=str(step), step=self._position)
            raise step
        if callable(step):
            step = step(messages=messages, tools=tools, system_prompt=system_prompt)

        if not step.model:
            step.model = self.model
        return step

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[LLMStreamChunk]:
        response = await self.generate(
            messages,
            tools=tools,
            system_prompt=system_prompt,
            cancel_event=cancel_event,
        )
        if response.thinking:
            yield LLMStreamChunk(thinking=response.thinking)
        content = response.content
        for start in range(0, len(content), self.chunk_size):
            yield LLMStreamChunk(content=content[start:start + self.chunk_size])
        yield LLMStreamChunk(final=response)

    async def _sleep(self, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is None:
            await asyncio.sleep(self.delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.delay)
            self.cancel_signals += 1
        except asyncio.TimeoutError:
            pass
