"""
Agent facade.

An ``Agent`` is a declarative description of what every run should use:
the model, the tool registry, settings, system rules, interceptors,
attached documents and an optional tracer. Each call to ``start`` or
``execute`` creates a fresh ``AgentRun``; the agent itself holds no
per-run state.

An agent can also be handed to another agent as a tool (``as_tool``); each
call then runs the agent to completion on the tool's ``input`` argument.
"""

import asyncio
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import structlog

from ..config import RuntimeSettings, get_settings
from ..documents import Document
from ..errors import AgentRuntimeError
from ..events import EventKind
from ..llm.base import BaseLLM
from ..tools.base import Tool, ToolParameter, ToolResult
from ..tools.registry import ToolRegistry
from .context import DEFAULT_SYSTEM_RULES, AgentContext
from .history import ConversationHistory
from .interceptors import Interceptor, InterceptorChain
from .run import AgentRun, RunStatus
from .stream import EventStream
from .tracer import Tracer

logger = structlog.get_logger()


class Agent:
    """Builds and starts agent runs."""

    def __init__(
        self,
        llm: BaseLLM,
        tool_registry: ToolRegistry | None = None,
        settings: RuntimeSettings | None = None,
        system_rules: str | None = None,
        interceptors: Sequence[Interceptor] = (),
        documents: Iterable[Document] = (),
        tracer: Tracer | None = None,
        enabled_tools: Iterable[str] | None = None,
        name: str = "agent",
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.tool_registry = tool_registry if tool_registry is not None else ToolRegistry()
        self.system_rules = system_rules or DEFAULT_SYSTEM_RULES
        self.interceptors = InterceptorChain(interceptors)
        self.documents = list(documents)
        self.enabled_tools = list(enabled_tools) if enabled_tools is not None else None
        self.name = name

        if tracer is None and self.settings.enable_trace:
            tracer = Tracer(
                directory=Path(self.settings.base_dir) / "traces",
                max_buffer=self.settings.trace_buffer_size,
            )
        self.tracer = tracer

    def add_interceptor(self, interceptor: Interceptor) -> None:
        self.interceptors = self.interceptors.with_interceptor(interceptor)

    def new_run(self, run_id: str | None = None) -> AgentRun:
        """Create an idle run configured from this agent."""
        return AgentRun(
            llm=self.llm,
            tool_registry=self.tool_registry,
            settings=self.settings,
            system_rules=self.system_rules,
            interceptors=self.interceptors,
            documents=self.documents,
            tracer=self.tracer,
            enabled_tools=self.enabled_tools,
            run_id=run_id,
        )

    def start(
        self,
        message: str,
        history: ConversationHistory | None = None,
        context: AgentContext | None = None,
    ) -> tuple[AgentRun, EventStream]:
        """Start a new run and return it with its event stream."""
        run = self.new_run()
        stream = run.start(message, context=context, history=history)
        logger.debug("Agent run started", agent=self.name, run_id=run.run_id)
        return run, stream

    async def execute(
        self,
        message: str,
        history: ConversationHistory | None = None,
    ) -> str:
        """Run to completion and return the concatenated content.

        Approval requests are not answered here; they resolve as denied once
        the approval timeout elapses.

        Raises:
            AgentRuntimeError: the run ended FAILED.
        """
        run, stream = self.start(message, history=history)
        parts = []
        async for event in stream:
            if event.kind is EventKind.CONTENT:
                parts.append(event.payload.content)
        await run.wait()

        if run.status is RunStatus.FAILED:
            raise run.error or AgentRuntimeError(f"run {run.run_id} failed")
        return "".join(parts)

    def as_tool(
        self,
        name: str | None = None,
        description: str | None = None,
        approval_required: bool = False,
        side_effects: Optional[frozenset[str]] = None,
    ) -> Tool:
        """Expose this agent as a tool another agent can call.

        Every call starts a fresh run of this agent. A failed run becomes a
        failed tool result; cancelling the calling task cancels the run.
        """
        tool_name = name or self.name

        async def delegate(args: dict[str, Any], context: Any) -> ToolResult:
            run, stream = self.start(args["input"])
            try:
                async for _ in stream:
                    pass
                await run.wait()
            except asyncio.CancelledError:
                run.cancel()
                raise

            if run.status is RunStatus.COMPLETED:
                return ToolResult(success=True, output=run.output, data={"run_id": run.run_id})
            message = run.error.message if run.error is not None else f"run {run.status.value}"
            logger.warning("Sub-agent run did not complete", agent=self.name, run_id=run.run_id, error=message)
            return ToolResult(success=False, error=message, data={"run_id": run.run_id})

        return Tool(
            name=tool_name,
            description=description or f"Delegate a task to the {self.name} agent and return its answer.",
            parameters=[
                ToolParameter(name="input", param_type="string", description="The input to send to the agent"),
            ],
            handler=delegate,
            approval_required=approval_required,
            side_effects=side_effects,
        )

    async def aclose(self) -> None:
        """Flush and stop the tracer, if any."""
        if self.tracer is not None:
            await self.tracer.close()
