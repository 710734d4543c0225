"""
Interceptors wrapped around every model call and tool execution.

An interceptor is a named set of optional functions:

- ``before_call(request)`` returns a (possibly rewritten) ``ModelRequest``,
  or an ``LLMResponse`` to answer without contacting the model.
- ``after_call(request, response)`` returns a (possibly rewritten)
  ``LLMResponse``.
- ``before_tool_call(call, context)`` returns the arguments the tool runs
  with. Raising rejects the call.
- ``after_tool_call(call, result)`` returns a (possibly rewritten)
  ``ToolResult``.

Outbound functions run in chain order, inbound functions in reverse order.
When an interceptor short-circuits, only the interceptors before it see the
synthetic response on the way back. Any function may be sync or async.
"""

import inspect
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

import structlog

from ..errors import InterceptorError
from ..llm.base import LLMMessage, LLMResponse, ToolCall, ToolDefinition
from ..tools.base import ToolResult

logger = structlog.get_logger()


@dataclass(frozen=True)
class ModelRequest:
    """Outbound model call as seen by interceptors."""

    run_id: str
    turn_id: int
    system_prompt: str
    messages: list[LLMMessage]
    tools: list[ToolDefinition]
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_changes(self, **changes: Any) -> "ModelRequest":
        return replace(self, **changes)


BeforeCall = Callable[[ModelRequest], Union[ModelRequest, LLMResponse, Awaitable[Any]]]
AfterCall = Callable[[ModelRequest, LLMResponse], Union[LLMResponse, Awaitable[LLMResponse]]]
Send = Callable[[ModelRequest], Awaitable[LLMResponse]]
BeforeToolCall = Callable[[ToolCall, Any], Union[dict, Awaitable[dict]]]
AfterToolCall = Callable[[ToolCall, ToolResult], Union[ToolResult, Awaitable[ToolResult]]]


@dataclass(frozen=True)
class Interceptor:
    name: str
    before_call: Optional[BeforeCall] = None
    after_call: Optional[AfterCall] = None
    before_tool_call: Optional[BeforeToolCall] = None
    after_tool_call: Optional[AfterToolCall] = None


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class InterceptorChain:
    """Ordered interceptors composed around a send function."""

    def __init__(self, interceptors: Sequence[Interceptor] = ()):
        self.interceptors: tuple[Interceptor, ...] = tuple(interceptors)

    def __len__(self) -> int:
        return len(self.interceptors)

    def with_interceptor(self, interceptor: Interceptor) -> "InterceptorChain":
        return InterceptorChain(self.interceptors + (interceptor,))

    async def call(self, request: ModelRequest, send: Send) -> LLMResponse:
        """Run the outbound transforms, the call, then the inbound transforms.

        Raises:
            InterceptorError: an interceptor raised or returned a wrong type.
            Errors raised by ``send`` propagate unchanged.
        """
        entered: list[Interceptor] = []
        response: LLMResponse | None = None

        for interceptor in self.interceptors:
            if interceptor.before_call is None:
                entered.append(interceptor)
                continue
            try:
                result = await _resolve(interceptor.before_call(request))
            except Exception as e:
                raise InterceptorError(interceptor.name, e) from e

            if isinstance(result, LLMResponse):
                logger.debug("Model call short-circuited", interceptor=interceptor.name)
                response = result
                break
            if not isinstance(result, ModelRequest):
                raise InterceptorError(
                    interceptor.name,
                    TypeError(f"before_call returned {type(result).__name__}"),
                )
            request = result
            entered.append(interceptor)

        if response is None:
            response = await send(request)

        for interceptor in reversed(entered):
            if interceptor.after_call is None:
                continue
            try:
                result = await _resolve(interceptor.after_call(request, response))
            except Exception as e:
                raise InterceptorError(interceptor.name, e) from e
            if not isinstance(result, LLMResponse):
                raise InterceptorError(
                    interceptor.name,
                    TypeError(f"after_call returned {type(result).__name__}"),
                )
            response = result

        return response

    async def before_tool_call(self, call: ToolCall, context: Any) -> dict[str, Any]:
        """Run the tool-call hooks in chain order and return the arguments.

        Raises:
            InterceptorError: an interceptor rejected the call or returned
                something other than a dict.
        """
        arguments = dict(call.arguments)
        for interceptor in self.interceptors:
            if interceptor.before_tool_call is None:
                continue
            proposed = replace(call, arguments=dict(arguments))
            try:
                result = await _resolve(interceptor.before_tool_call(proposed, context))
            except Exception as e:
                raise InterceptorError(interceptor.name, e) from e
            if not isinstance(result, dict):
                raise InterceptorError(
                    interceptor.name,
                    TypeError(f"before_tool_call returned {type(result).__name__}"),
                )
            arguments = dict(result)
        return arguments

    async def after_tool_call(self, call: ToolCall, result: ToolResult) -> ToolResult:
        """Run the tool-result hooks in reverse chain order."""
        for interceptor in reversed(self.interceptors):
            if interceptor.after_tool_call is None:
                continue
            try:
                rewritten = await _resolve(interceptor.after_tool_call(replace(call), result))
            except Exception as e:
                raise InterceptorError(interceptor.name, e) from e
            if not isinstance(rewritten, ToolResult):
                raise InterceptorError(
                    interceptor.name,
                    TypeError(f"after_tool_call returned {type(rewritten).__name__}"),
                )
            result = rewritten
        return result
