"""
Agent run - the turn loop of one agent execution.

A run owns its context and drives it through turns until the model answers
without tool calls, a tool returns a terminal result, the run is
cancelled, or an unrecoverable error occurs:

1. build the prompt from the context (truncating to the token budget)
2. call the model through the interceptor chain, retrying transient errors
3. emit thinking and content
4. resolve, gate and execute any tool calls and merge their results
5. repeat

Everything the caller observes arrives through the run's event stream,
which always ends with exactly one COMPLETED, FAILED or CANCELLED event.
"""

import asyncio
import random
import time
import uuid
from enum import Enum
from typing import Any, Iterable, Sequence

import structlog

from ..config import RuntimeSettings, get_settings
from ..documents import Document
from ..errors import (
    AgentRuntimeError,
    ContextOverflowError,
    InterceptorError,
    ModelError,
    ToolExecutionError,
    TransientModelError,
    TurnLimitExceeded,
)
from ..events import (
    ContentPayload,
    ErrorPayload,
    EvalPayload,
    Event,
    EventKind,
    LLMCallPayload,
    RunEndPayload,
    ThinkingPayload,
)
from ..llm.base import BaseLLM, LLMResponse, ToolCall
from ..memory import MemoryEntry
from ..tools.approval import ApprovalGate
from ..tools.invoker import Invocation, ToolInvoker
from ..tools.registry import ToolRegistry
from .context import DEFAULT_SYSTEM_RULES, AgentContext, Prompt
from .environment import ExecutionEnvironment
from .history import ConversationHistory, ConversationTurn
from .interceptors import Interceptor, InterceptorChain, ModelRequest
from .stream import EventStream
from .tracer import Tracer

logger = structlog.get_logger()


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})

_END_KINDS = {
    RunStatus.COMPLETED: EventKind.COMPLETED,
    RunStatus.FAILED: EventKind.FAILED,
    RunStatus.CANCELLED: EventKind.CANCELLED,
}


class _CancelRequested(Exception):
    """Raised inside the loop once a cancellation has been observed."""


class AgentRun:
    """A single execution of an agent.

    The run is driven by one asyncio task started by ``start()``. Callers
    consume the returned stream and may call ``cancel()``, ``approve()`` or
    ``deny()`` concurrently; nothing else mutates the run's context.
    """

    def __init__(
        self,
        llm: BaseLLM,
        tool_registry: ToolRegistry | None = None,
        settings: RuntimeSettings | None = None,
        system_rules: str = DEFAULT_SYSTEM_RULES,
        interceptors: InterceptorChain | Sequence[Interceptor] = (),
        documents: Iterable[Document] = (),
        tracer: Tracer | None = None,
        enabled_tools: Iterable[str] | None = None,
        run_id: str | None = None,
    ):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.settings = settings or get_settings()
        self.llm = llm
        self.tool_registry = tool_registry if tool_registry is not None else ToolRegistry()
        self.enabled_tools = list(enabled_tools) if enabled_tools is not None else None
        self.system_rules = system_rules
        if isinstance(interceptors, InterceptorChain):
            self.interceptors = interceptors
        else:
            self.interceptors = InterceptorChain(interceptors)
        self.documents = list(documents)
        self.tracer = tracer

        self.max_turns = self.settings.max_turns
        self.retry_policy = self.settings.get_retry_policy()
        self.gate = ApprovalGate(timeout=self.settings.approval_timeout)

        self.status = RunStatus.IDLE
        self.turn_count = 0
        self.cancelled = False
        self.output = ""
        self.error: AgentRuntimeError | None = None
        self.context: AgentContext | None = None
        self.history: ConversationHistory | None = None
        self.stream: EventStream | None = None
        self.task: asyncio.Task | None = None
        self.events: list[Event] = []

        self._cancel_event = asyncio.Event()
        self._used_call_ids: set[str] = set()
        self._tools: ToolRegistry | None = None
        self._invoker: ToolInvoker | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # Caller surface

    def start(
        self,
        user_input: str,
        context: AgentContext | None = None,
        history: ConversationHistory | None = None,
    ) -> EventStream:
        """Start the turn loop and return the event stream.

        Must be called from a running event loop. A run starts only once.
        """
        if self.status is not RunStatus.IDLE or self.stream is not None:
            raise RuntimeError(f"run {self.run_id} has already been started")

        if context is None:
            context = AgentContext(
                system_rules=self.system_rules,
                max_context_tokens=self.settings.max_context_tokens,
                environment=ExecutionEnvironment.for_run(self.settings.base_dir, self.run_id),
                run_id=self.run_id,
            )
        elif not context.run_id:
            context.run_id = self.run_id
        for document in self.documents:
            context.attach_document(document)

        self.context = context
        self.history = history
        self.stream = EventStream(self.run_id, maxsize=self.settings.event_buffer_size)
        self.stream.subscribe(self.events.append)
        if history is not None:
            self.stream.subscribe(self._record_turn)
        if self.tracer is not None:
            self.stream.subscribe(self.tracer.record)

        self.status = RunStatus.RUNNING
        logger.info("Run started", run_id=self.run_id, max_turns=self.max_turns)
        self.task = asyncio.get_running_loop().create_task(
            self._run(user_input), name=f"agent-run-{self.run_id}"
        )
        return self.stream

    def cancel(self) -> None:
        """Request cooperative cancellation.

        The in-flight model call is signalled through its cancel event; the
        run finishes once the call returns, at the next turn boundary or
        before tool dispatch. Pending approvals resolve as denied.
        """
        if self.is_finished or self.cancelled:
            return
        self.cancelled = True
        self._cancel_event.set()
        logger.info("Run cancellation requested", run_id=self.run_id, status=self.status.value)

    def approve(self, call_id: str) -> bool:
        """Approve a pending tool call."""
        return self.gate.approve(call_id)

    def deny(self, call_id: str, reason: str = "user") -> bool:
        """Deny a pending tool call."""
        return self.gate.deny(call_id, reason)

    async def wait(self) -> RunStatus:
        """Wait for the run task to finish and return the final status."""
        if self.task is not None:
            await asyncio.shield(self.task)
        return self.status

    # Loop

    async def _run(self, user_input: str) -> None:
        try:
            self._prepare(user_input)
            await self._loop()
        except _CancelRequested:
            await self._finish(RunStatus.CANCELLED)
        except InterceptorError as e:
            await self._fail(e, source=e.interceptor)
        except ToolExecutionError as e:
            await self._fail(e, source=e.tool_name, call_id=e.call_id)
        except AgentRuntimeError as e:
            await self._fail(e)
        except asyncio.CancelledError:
            logger.warning("Run task cancelled", run_id=self.run_id)
            self.cancelled = True
            await self._finish(RunStatus.CANCELLED)
            raise
        except Exception as e:
            logger.exception("Unexpected run error", run_id=self.run_id)
            await self._fail(AgentRuntimeError.wrap(e))

    def _prepare(self, user_input: str) -> None:
        tools = self.tool_registry
        if self.enabled_tools is not None:
            tools = tools.subset(self.enabled_tools)
        tools.validate()
        self._tools = tools
        self._invoker = ToolInvoker(
            tools,
            self.gate,
            parallel=self.settings.parallel_tool_execution,
            fail_fast=self.settings.fail_fast,
            interceptors=self.interceptors,
        )

        if self.history is not None:
            self.context.load_history(self.history, self.settings.history_carry_turns)
        self.context.begin_turn(user_input)

    async def _loop(self) -> None:
        while True:
            self._check_cancelled()
            if self.turn_count >= self.max_turns:
                raise TurnLimitExceeded(self.max_turns)
            self.turn_count += 1
            turn = self.turn_count
            log = logger.bind(run_id=self.run_id, turn=turn)

            prompt = await self._build_prompt(turn)
            response, attempts = await self._call_model(prompt, turn)
            self._check_cancelled()

            if not response.tool_calls:
                self.context.add_assistant_message(response.content)
                self.output = response.content
                log.info("Run completed", turns=turn)
                await self._finish(RunStatus.COMPLETED)
                return

            calls = self._normalize_calls(response.tool_calls)
            self.context.add_assistant_message(response.content, calls)
            await self._emit(EventKind.LLM_CALL, LLMCallPayload(
                model=response.model or self.llm.model,
                tool_calls=[call.to_dict() for call in calls],
                attempts=attempts,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            ))
            log.info("Tool calls requested", tools=[call.name for call in calls])

            self._check_cancelled()
            started = time.monotonic()
            invocations = await self._invoker.invoke(
                calls,
                self.context.snapshot(),
                self._emit,
                cancel_event=self._cancel_event,
                on_waiting=self._set_waiting,
            )
            self._trace_step(turn, "tools", started, tools=[call.name for call in calls])

            self._merge(invocations)
            self._check_cancelled()

            if self.settings.fail_fast:
                failed = next((inv for inv in invocations if inv.status == "failed"), None)
                if failed is not None:
                    raise ToolExecutionError(failed.call.name, failed.error or "tool failed", failed.call.id)

            terminal = next((inv for inv in invocations if inv.terminal), None)
            if terminal is not None:
                self.output = terminal.output
                log.info("Run completed by tool", tool=terminal.call.name, turns=turn)
                await self._finish(RunStatus.COMPLETED)
                return

    async def _build_prompt(self, turn: int) -> Prompt:
        started = time.monotonic()
        prompt = self.context.build_prompt()
        self._trace_step(
            turn,
            "prompt",
            started,
            estimated_tokens=prompt.estimated_tokens,
            dropped_messages=prompt.dropped_messages,
        )
        if prompt.overflow:
            await self._emit_error(ContextOverflowError(prompt.minimal_tokens, prompt.budget), fatal=False)
        return prompt

    async def _call_model(self, prompt: Prompt, turn: int) -> tuple[LLMResponse, int]:
        """Call the model through the interceptors.

        Returns the response and the number of attempts it took.
        """
        request = ModelRequest(
            run_id=self.run_id,
            turn_id=turn,
            system_prompt=prompt.system_prompt,
            messages=prompt.messages,
            tools=self._tools.get_definitions(),
        )
        attempts = 0
        streamed = False

        async def send(req: ModelRequest) -> LLMResponse:
            nonlocal attempts, streamed
            policy = self.retry_policy
            for attempt in range(policy.attempts):
                attempts += 1
                try:
                    if self.settings.streaming:
                        streamed = True
                        return await self._stream_once(req, turn)
                    return await self.llm.generate(
                        messages=req.messages,
                        tools=req.tools or None,
                        system_prompt=req.system_prompt,
                        cancel_event=self._cancel_event,
                    )
                except TransientModelError as e:
                    if attempt + 1 >= policy.attempts:
                        logger.error(
                            "Model retries exhausted",
                            run_id=self.run_id,
                            turn=turn,
                            attempts=attempts,
                            error=e.message,
                        )
                        raise
                    delay = policy.delay_for(attempt, random.random())
                    logger.warning(
                        "Transient model error, retrying",
                        run_id=self.run_id,
                        turn=turn,
                        attempt=attempts,
                        delay=round(delay, 3),
                        error=e.message,
                    )
                    await self._backoff(delay)
            raise ModelError("no model attempts configured")

        started = time.monotonic()
        try:
            response = await self.interceptors.call(request, send)
        except (_CancelRequested, InterceptorError):
            raise
        except AgentRuntimeError as e:
            self._check_cancelled()
            await self._emit_eval(request, started, None, error=e.message)
            raise
        except Exception as e:
            self._check_cancelled()
            error = ModelError.wrap(e)
            await self._emit_eval(request, started, None, error=error.message)
            raise error from e
        finally:
            self._trace_step(turn, "model", started, attempts=attempts)

        self._check_cancelled()
        await self._emit_eval(request, started, response)
        if not streamed:
            if response.thinking:
                await self._emit(EventKind.THINKING, ThinkingPayload(thought=response.thinking))
            if response.content:
                await self._emit(EventKind.CONTENT, ContentPayload(content=response.content))
        return response, attempts

    async def _stream_once(self, request: ModelRequest, turn: int) -> LLMResponse:
        final: LLMResponse | None = None
        async for chunk in self.llm.stream(
            messages=request.messages,
            tools=request.tools or None,
            system_prompt=request.system_prompt,
            cancel_event=self._cancel_event,
        ):
            if chunk.thinking:
                await self._emit(EventKind.THINKING, ThinkingPayload(thought=chunk.thinking))
            if chunk.content:
                await self._emit(EventKind.CONTENT, ContentPayload(content=chunk.content, chunk=True))
            if chunk.final is not None:
                final = chunk.final
        if final is None:
            raise ModelError("model stream ended without a final response")
        return final

    async def _backoff(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise _CancelRequested()

    def _normalize_calls(self, tool_calls: Sequence[ToolCall]) -> list[ToolCall]:
        """Copy the model's tool calls, making every id unique within the run."""
        calls = []
        for tc in tool_calls:
            call_id = tc.id
            if not call_id or call_id in self._used_call_ids:
                call_id = f"call_{uuid.uuid4().hex[:8]}"
                logger.warning(
                    "Replaced tool call id",
                    run_id=self.run_id,
                    tool=tc.name,
                    original_id=tc.id,
                    call_id=call_id,
                )
            self._used_call_ids.add(call_id)
            calls.append(ToolCall(id=call_id, name=tc.name, arguments=dict(tc.arguments or {})))
        return calls

    def _merge(self, invocations: list[Invocation]) -> None:
        for inv in invocations:
            if not inv.is_final:
                continue
            self.context.add_tool_result(inv.call.id, inv.message_text(), inv.call.name)
            if inv.status != "executed" or inv.result is None:
                continue
            for update in inv.result.memory_updates:
                if not isinstance(update, MemoryEntry):
                    logger.warning(
                        "Ignoring invalid memory update",
                        run_id=self.run_id,
                        tool=inv.call.name,
                        update_type=type(update).__name__,
                    )
                    continue
                self.context.set_memory(update.stamped(self.run_id))
                logger.debug("Memory updated", run_id=self.run_id, key=update.key, scope=update.scope.value)

    def _set_waiting(self, waiting: bool) -> None:
        if self.is_finished:
            return
        self.status = RunStatus.WAITING_APPROVAL if waiting else RunStatus.RUNNING

    def _check_cancelled(self) -> None:
        if self.cancelled:
            raise _CancelRequested()

    # Events

    async def _emit(self, kind: EventKind, payload: Any) -> Event:
        return await self.stream.emit(kind, payload, turn_id=self.turn_count)

    async def _emit_error(
        self,
        error: AgentRuntimeError,
        fatal: bool,
        source: str | None = None,
        call_id: str | None = None,
    ) -> None:
        log = logger.error if fatal else logger.warning
        log("Run error", run_id=self.run_id, turn=self.turn_count, error_type=type(error).__name__, error=error.message)
        await self._emit(EventKind.ERROR, ErrorPayload(
            error_type=type(error).__name__,
            code=error.code,
            message=error.message,
            fatal=fatal,
            source=source,
            call_id=call_id,
        ))

    async def _emit_eval(
        self,
        request: ModelRequest,
        started: float,
        response: LLMResponse | None,
        error: str | None = None,
    ) -> None:
        if not self.settings.enable_evaluation:
            return
        await self._emit(EventKind.EVAL, EvalPayload(
            model=(response.model if response is not None else "") or self.llm.model,
            duration_ms=(time.monotonic() - started) * 1000,
            system_prompt=request.system_prompt,
            messages=[m.to_dict() for m in request.messages],
            tools=[t.name for t in request.tools],
            response=response.to_dict() if response is not None else None,
            input_tokens=response.input_tokens if response is not None else 0,
            output_tokens=response.output_tokens if response is not None else 0,
            error=error,
        ))

    def _trace_step(self, turn: int, step: str, started: float, **details: Any) -> None:
        if self.tracer is None:
            return
        self.tracer.record_step(
            self.run_id,
            turn,
            step,
            (time.monotonic() - started) * 1000,
            snapshot=self.context.snapshot(),
            **details,
        )

    # Termination

    async def _fail(
        self,
        error: AgentRuntimeError,
        source: str | None = None,
        call_id: str | None = None,
    ) -> None:
        self.error = error
        await self._emit_error(error, fatal=True, source=source, call_id=call_id)
        await self._finish(RunStatus.FAILED)

    async def _finish(self, status: RunStatus) -> None:
        if self.stream.closed:
            return
        self.status = status
        await self._emit(_END_KINDS[status], RunEndPayload(
            status=status.value,
            output=self.output,
            error=self.error.message if self.error is not None else None,
            turns=self.turn_count,
        ))
        logger.info("Run finished", run_id=self.run_id, status=status.value, turns=self.turn_count)

    def _record_turn(self, event: Event) -> None:
        """Append the completed turn, terminal event included, to the history."""
        if event.kind is not EventKind.COMPLETED:
            return
        self.history.append(ConversationTurn(
            input=self._turn_input(),
            output=self.output,
            run_id=self.run_id,
            events=tuple(self.events),
        ))
        self.history.save_memories(self.context.memories)

    def _turn_input(self) -> str:
        current = self.context.current_messages
        return current[0].content if current else ""
