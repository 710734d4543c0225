"""
Tool invocation for one turn of a run.

Each tool call requested by the model goes through:

1. resolution against the registry and argument validation,
2. the approval gate, for tools flagged ``approval_required``,
3. execution, sequential or in conflict-free parallel batches, wrapped in
   the interceptors' tool-call hooks when any are configured.

Results are buffered and reported in the original call order, whatever
order the executions actually finished in. Tools receive a read-only
context snapshot and hand memory changes back through ``ToolResult``.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

import structlog
from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from ..errors import ApprovalDenied, InterceptorError, ToolExecutionError
from ..events import ApprovalPayload, EventKind, ToolPayload
from ..llm.base import ToolCall
from .approval import ApprovalGate
from .base import ToolResult
from .registry import AnyTool, ToolRegistry

logger = structlog.get_logger()

Emit = Callable[[EventKind, Any], Awaitable[Any]]

FINAL_STATUSES = frozenset({"executed", "failed", "denied"})


@dataclass
class Invocation:
    """One tool call and what became of it."""

    call: ToolCall
    tool: AnyTool | None = None
    result: ToolResult | None = None
    error: str | None = None

    @property
    def status(self) -> str:
        return self.call.status

    @property
    def is_final(self) -> bool:
        return self.call.status in FINAL_STATUSES

    @property
    def terminal(self) -> bool:
        return self.call.status == "executed" and self.result is not None and self.result.terminal

    @property
    def output(self) -> str:
        return self.result.output if self.result is not None else ""

    def message_text(self) -> str:
        """Text of the tool message fed back to the model."""
        if self.call.status == "executed":
            return self.output
        if self.call.status == "denied":
            return self.error or ""
        return f"Error: {self.error}"

    def to_payload(self) -> ToolPayload:
        return ToolPayload(
            call_id=self.call.id,
            tool_name=self.call.name,
            arguments=dict(self.call.arguments),
            status=self.call.status,
            output=self.output,
            error=self.error,
        )


def side_effects_of(tool: AnyTool) -> frozenset[str] | None:
    return getattr(tool, "side_effects", None)


def conflicts(a: AnyTool, b: AnyTool) -> bool:
    """Whether two tools must not run at the same time.

    Undeclared side effects conflict with everything; declared ones conflict
    only when they share a resource.
    """
    effects_a, effects_b = side_effects_of(a), side_effects_of(b)
    if effects_a is None or effects_b is None:
        return True
    return bool(effects_a & effects_b)


def plan_batches(invocations: Sequence[Invocation]) -> list[list[Invocation]]:
    """Group calls, in order, into consecutive conflict-free batches."""
    batches: list[list[Invocation]] = []
    for inv in invocations:
        if batches and not any(conflicts(inv.tool, other.tool) for other in batches[-1]):
            batches[-1].append(inv)
        else:
            batches.append([inv])
    return batches


class ToolInvoker:
    """Resolves, gates and executes the tool calls of a model response."""

    def __init__(
        self,
        registry: ToolRegistry,
        gate: ApprovalGate,
        parallel: bool = False,
        fail_fast: bool = False,
        interceptors: Any = None,
    ):
        self.registry = registry
        self.gate = gate
        self.parallel = parallel
        self.fail_fast = fail_fast
        self.interceptors = interceptors

    async def invoke(
        self,
        calls: Sequence[ToolCall],
        context: Any,
        emit: Emit,
        cancel_event: asyncio.Event | None = None,
        on_waiting: Callable[[bool], None] | None = None,
    ) -> list[Invocation]:
        """Run the calls and emit their approval and tool events.

        Tool events are emitted only for calls that reached a final status.
        Calls left undispatched because of cancellation or fail-fast keep
        their pending/approved status and produce no tool event.
        """
        invocations = [self._resolve(call) for call in calls]

        await self._gate(invocations, emit, cancel_event, on_waiting)

        runnable = [inv for inv in invocations if not inv.is_final]
        batches = plan_batches(runnable) if self.parallel else [[inv] for inv in runnable]

        for batch in batches:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Tool dispatch cancelled", remaining=sum(len(b) for b in batches))
                break
            if len(batch) == 1:
                await self._execute(batch[0], context)
            else:
                logger.debug("Executing tools in parallel", tools=[inv.call.name for inv in batch])
                await asyncio.gather(*(self._execute(inv, context) for inv in batch))
            if self.fail_fast and any(inv.status == "failed" for inv in batch):
                break

        for inv in invocations:
            if inv.is_final:
                await emit(EventKind.TOOL, inv.to_payload())
        return invocations

    def _resolve(self, call: ToolCall) -> Invocation:
        inv = Invocation(call=call, tool=self.registry.get(call.name))
        if inv.tool is None:
            logger.warning("Tool not found", tool=call.name, call_id=call.id)
            self._fail(inv, f"tool not found: {call.name}")
            return inv

        schema = inv.tool.get_parameters_schema()
        error = best_match(Draft202012Validator(schema).iter_errors(call.arguments))
        if error is not None:
            path = ".".join(str(p) for p in error.absolute_path)
            where = f" at '{path}'" if path else ""
            logger.warning("Invalid tool arguments", tool=call.name, call_id=call.id, error=error.message)
            self._fail(inv, f"invalid arguments for tool {call.name}{where}: {error.message}")
        return inv

    async def _gate(
        self,
        invocations: list[Invocation],
        emit: Emit,
        cancel_event: asyncio.Event | None,
        on_waiting: Callable[[bool], None] | None,
    ) -> None:
        gated = [
            inv for inv in invocations
            if not inv.is_final and getattr(inv.tool, "approval_required", False)
        ]
        if not gated:
            return

        for inv in gated:
            self.gate.request(inv.call.id, inv.call.name, dict(inv.call.arguments))
            await emit(EventKind.APPROVAL, ApprovalPayload(
                call_id=inv.call.id,
                tool_name=inv.call.name,
                arguments=dict(inv.call.arguments),
            ))

        if on_waiting is not None:
            on_waiting(True)
        try:
            for inv in gated:
                approval = await self.gate.wait(inv.call.id, cancel_event)
                await emit(EventKind.APPROVAL, ApprovalPayload(
                    call_id=inv.call.id,
                    tool_name=inv.call.name,
                    arguments=dict(inv.call.arguments),
                    decision=approval.decision,
                    reason=approval.reason,
                ))
                if approval.decision == "approved":
                    inv.call.status = "approved"
                else:
                    denied = ApprovalDenied(inv.call.name, inv.call.id, approval.reason or "user")
                    inv.call.status = "denied"
                    inv.error = denied.message
        finally:
            if on_waiting is not None:
                on_waiting(False)

    async def _execute(self, inv: Invocation, context: Any) -> None:
        call = inv.call
        arguments = dict(call.arguments)
        if self.interceptors is not None:
            try:
                arguments = await self.interceptors.before_tool_call(call, context)
            except InterceptorError as e:
                logger.warning("Tool call rejected", tool=call.name, call_id=call.id, interceptor=e.interceptor)
                self._fail(inv, f"tool call rejected: {e.message}")
                return
            call.arguments = arguments

        logger.info("Executing tool", tool=call.name, call_id=call.id, arguments=arguments)
        try:
            result = await inv.tool.execute(dict(arguments), context)
        except Exception as e:
            error = ToolExecutionError(call.name, str(e) or e.__class__.__name__, call.id, e)
            logger.error("Tool execution error", tool=call.name, call_id=call.id, error=error.message)
            self._fail(inv, error.message)
            return

        if self.interceptors is not None:
            try:
                result = await self.interceptors.after_tool_call(call, result)
            except InterceptorError as e:
                logger.warning("Tool result rejected", tool=call.name, call_id=call.id, interceptor=e.interceptor)
                self._fail(inv, f"tool result rejected: {e.message}")
                return

        inv.result = result
        if result.success:
            call.status = "executed"
        else:
            self._fail(inv, result.error or "tool reported failure")

    @staticmethod
    def _fail(inv: Invocation, message: str) -> None:
        inv.call.status = "failed"
        inv.error = message
