"""
Tests for tool invocation: validation, approval, parallelism and ordering.
"""

import asyncio
import time

import pytest

from agentic_runtime.agent.interceptors import Interceptor, InterceptorChain
from agentic_runtime.events import EventKind
from agentic_runtime.llm.base import ToolCall
from agentic_runtime.tools import (
    ApprovalGate,
    Tool,
    ToolParameter,
    ToolInvoker,
    ToolRegistry,
    ToolResult,
    conflicts,
)
from agentic_runtime.tools.invoker import Invocation, plan_batches


class Recorder:
    """Collects emitted events."""

    def __init__(self):
        self.events = []

    async def __call__(self, kind, payload):
        self.events.append((kind, payload))

    def kinds(self):
        return [kind for kind, _ in self.events]

    def tool_payloads(self):
        return [payload for kind, payload in self.events if kind is EventKind.TOOL]


def make_tool(name, handler=None, side_effects=None, approval_required=False):
    return Tool(
        name=name,
        description=f"{name} tool",
        parameters=[ToolParameter(name="value", param_type="string", description="Input", required=False)],
        handler=handler or (lambda args, context: f"{name} ok"),
        side_effects=side_effects,
        approval_required=approval_required,
    )


def call(call_id, name, **arguments):
    return ToolCall(id=call_id, name=name, arguments=arguments)


def test_conflict_rules():
    """Test side-effect conflict detection."""
    undeclared = make_tool("a")
    pure = make_tool("b", side_effects=frozenset())
    files = make_tool("c", side_effects=frozenset({"files"}))
    more_files = make_tool("d", side_effects=frozenset({"files", "net"}))
    memory = make_tool("e", side_effects=frozenset({"memory"}))

    assert conflicts(undeclared, pure)
    assert not conflicts(pure, files)
    assert conflicts(files, more_files)
    assert not conflicts(files, memory)


def test_plan_batches_keeps_call_order():
    """Test greedy packing into consecutive batches."""
    pure = make_tool("pure", side_effects=frozenset())
    files = make_tool("files", side_effects=frozenset({"files"}))
    undeclared = make_tool("shell")
    invocations = [
        Invocation(call=call("1", "pure"), tool=pure),
        Invocation(call=call("2", "files"), tool=files),
        Invocation(call=call("3", "files"), tool=files),
        Invocation(call=call("4", "shell"), tool=undeclared),
        Invocation(call=call("5", "pure"), tool=pure),
    ]

    batches = plan_batches(invocations)

    assert [[inv.call.id for inv in batch] for batch in batches] == [["1", "2"], ["3"], ["4"], ["5"]]


@pytest.mark.asyncio
async def test_sequential_execution():
    """Test that calls run in order and report executed."""
    order = []

    def handler(name):
        def run(args, context):
            order.append(name)
            return f"{name} done"
        return run

    registry = ToolRegistry([make_tool("a", handler("a")), make_tool("b", handler("b"))])
    invoker = ToolInvoker(registry, ApprovalGate())
    emit = Recorder()

    results = await invoker.invoke([call("1", "a"), call("2", "b")], None, emit)

    assert order == ["a", "b"]
    assert [inv.status for inv in results] == ["executed", "executed"]
    assert [p.output for p in emit.tool_payloads()] == ["a done", "b done"]


@pytest.mark.asyncio
async def test_parallel_results_flushed_in_call_order():
    """Test that parallel completions are reported in call order."""
    finished = []

    async def slow(args, context):
        await asyncio.sleep(0.05)
        finished.append("slow")
        return "slow"

    async def fast(args, context):
        finished.append("fast")
        return "fast"

    registry = ToolRegistry([
        make_tool("slow", slow, side_effects=frozenset()),
        make_tool("fast", fast, side_effects=frozenset()),
    ])
    invoker = ToolInvoker(registry, ApprovalGate(), parallel=True)
    emit = Recorder()

    await invoker.invoke([call("1", "slow"), call("2", "fast")], None, emit)

    assert finished == ["fast", "slow"]
    assert [p.call_id for p in emit.tool_payloads()] == ["1", "2"]


@pytest.mark.asyncio
async def test_conflicting_calls_do_not_overlap():
    """Test that calls sharing a resource run one at a time."""
    running = []
    overlaps = []

    async def write(args, context):
        if running:
            overlaps.append(args["value"])
        running.append(args["value"])
        await asyncio.sleep(0.01)
        running.pop()
        return "written"

    registry = ToolRegistry([make_tool("write", write, side_effects=frozenset({"files"}))])
    invoker = ToolInvoker(registry, ApprovalGate(), parallel=True)

    await invoker.invoke([call("1", "write", value="a"), call("2", "write", value="b")], None, Recorder())

    assert overlaps == []


@pytest.mark.asyncio
async def test_unknown_tool_fails_without_execution():
    """Test that unregistered tools produce a failed result."""
    invoker = ToolInvoker(ToolRegistry(), ApprovalGate())
    emit = Recorder()

    results = await invoker.invoke([call("1", "missing")], None, emit)

    assert results[0].status == "failed"
    assert emit.tool_payloads()[0].error == "tool not found: missing"
    assert results[0].message_text() == "Error: tool not found: missing"


@pytest.mark.asyncio
async def test_invalid_arguments_fail_without_execution():
    """Test that schema violations never reach the tool."""
    executed = []
    registry = ToolRegistry([make_tool("a", lambda args, context: executed.append(args))])
    invoker = ToolInvoker(registry, ApprovalGate())
    emit = Recorder()

    results = await invoker.invoke([call("1", "a", value=5)], None, emit)

    assert executed == []
    assert results[0].status == "failed"
    assert "invalid arguments for tool a" in results[0].error


@pytest.mark.asyncio
async def test_tool_errors_are_captured():
    """Test that exceptions and failed results become failed calls."""
    def boom(args, context):
        raise RuntimeError("boom")

    registry = ToolRegistry([
        make_tool("boom", boom),
        make_tool("soft", lambda args, context: ToolResult(success=False, error="not today")),
        make_tool("ok"),
    ])
    invoker = ToolInvoker(registry, ApprovalGate())
    emit = Recorder()

    results = await invoker.invoke([call("1", "boom"), call("2", "soft"), call("3", "ok")], None, emit)

    assert [inv.status for inv in results] == ["failed", "failed", "executed"]
    assert results[0].error == "boom"
    assert results[1].error == "not today"


@pytest.mark.asyncio
async def test_fail_fast_stops_dispatch():
    """Test that fail-fast leaves later calls undispatched."""
    def boom(args, context):
        raise RuntimeError("boom")

    registry = ToolRegistry([make_tool("boom", boom), make_tool("ok")])
    invoker = ToolInvoker(registry, ApprovalGate(), fail_fast=True)
    emit = Recorder()

    results = await invoker.invoke([call("1", "boom"), call("2", "ok")], None, emit)

    assert [inv.status for inv in results] == ["failed", "pending"]
    assert [p.call_id for p in emit.tool_payloads()] == ["1"]


@pytest.mark.asyncio
async def test_approval_required_waits_for_decision():
    """Test that a gated tool runs only after approval."""
    executed = []
    gate = ApprovalGate(timeout=5)
    registry = ToolRegistry([
        make_tool("danger", lambda args, context: executed.append("danger"), approval_required=True),
    ])
    invoker = ToolInvoker(registry, gate)
    waiting = []

    async def emit(kind, payload):
        if kind is EventKind.APPROVAL and payload.decision is None:
            assert executed == []
            gate.approve(payload.call_id)
        emit.events.append((kind, payload))

    emit.events = []

    results = await invoker.invoke([call("1", "danger")], None, emit, on_waiting=waiting.append)

    assert executed == ["danger"]
    assert results[0].status == "executed"
    assert [k for k, _ in emit.events] == [EventKind.APPROVAL, EventKind.APPROVAL, EventKind.TOOL]
    assert emit.events[1][1].decision == "approved"
    assert waiting == [True, False]


@pytest.mark.asyncio
async def test_approval_timeout_denies():
    """Test that an unanswered approval is denied."""
    executed = []
    registry = ToolRegistry([
        make_tool("danger", lambda args, context: executed.append("danger"), approval_required=True),
    ])
    invoker = ToolInvoker(registry, ApprovalGate(timeout=0.01))
    emit = Recorder()

    results = await invoker.invoke([call("1", "danger")], None, emit)

    assert executed == []
    assert results[0].status == "denied"
    assert results[0].message_text() == "approval denied for tool: danger (timeout)"
    tool_event = emit.tool_payloads()[0]
    assert tool_event.status == "denied"


@pytest.mark.asyncio
async def test_cancel_before_dispatch():
    """Test that nothing is dispatched once cancelled."""
    executed = []
    registry = ToolRegistry([make_tool("a", lambda args, context: executed.append("a"))])
    invoker = ToolInvoker(registry, ApprovalGate())
    cancel_event = asyncio.Event()
    cancel_event.set()
    emit = Recorder()

    results = await invoker.invoke([call("1", "a")], None, emit, cancel_event=cancel_event)

    assert executed == []
    assert results[0].status == "pending"
    assert emit.events == []


@pytest.mark.asyncio
async def test_parallel_sync_tools_overlap():
    """Test that blocking sync handlers in one batch run at the same time."""
    spans = {}

    def blocking(name):
        def handler(args, context):
            started = time.monotonic()
            time.sleep(0.2)
            spans[name] = (started, time.monotonic())
            return name
        return handler

    registry = ToolRegistry([
        make_tool("left", blocking("left"), side_effects=frozenset()),
        make_tool("right", blocking("right"), side_effects=frozenset()),
    ])
    invoker = ToolInvoker(registry, ApprovalGate(), parallel=True)

    results = await invoker.invoke([call("1", "left"), call("2", "right")], None, Recorder())

    assert [inv.status for inv in results] == ["executed", "executed"]
    assert max(start for start, _ in spans.values()) < min(end for _, end in spans.values())


@pytest.mark.asyncio
async def test_tool_call_hooks_rewrite_arguments_and_results():
    """Test interceptor hooks around a tool execution."""
    seen = []

    def handler(args, context):
        seen.append(args["value"])
        return f"got {args['value']}"

    def before(call, context):
        return {**call.arguments, "value": call.arguments["value"].upper()}

    def after(call, result):
        result.output += "!"
        return result

    chain = InterceptorChain([Interceptor(name="shout", before_tool_call=before, after_tool_call=after)])
    invoker = ToolInvoker(ToolRegistry([make_tool("echo", handler)]), ApprovalGate(), interceptors=chain)
    emit = Recorder()

    results = await invoker.invoke([call("1", "echo", value="hi")], None, emit)

    assert seen == ["HI"]
    assert results[0].output == "got HI!"
    assert emit.tool_payloads()[0].arguments == {"value": "HI"}


@pytest.mark.asyncio
async def test_rejected_tool_call_is_a_failed_tool_event():
    """Test that a hook error fails the call without running the tool."""
    executed = []

    def veto(call, context):
        raise PermissionError("not allowed")

    chain = InterceptorChain([Interceptor(name="policy", before_tool_call=veto)])
    registry = ToolRegistry([make_tool("a", lambda args, context: executed.append("a"))])
    invoker = ToolInvoker(registry, ApprovalGate(), interceptors=chain)
    emit = Recorder()

    results = await invoker.invoke([call("1", "a")], None, emit)

    assert executed == []
    assert results[0].status == "failed"
    assert results[0].error == "tool call rejected: interceptor 'policy' failed: not allowed"
    assert emit.tool_payloads()[0].status == "failed"


@pytest.mark.asyncio
async def test_terminal_result_is_exposed():
    """Test that only executed terminal results count as terminal."""
    registry = ToolRegistry([
        make_tool("stop", lambda args, context: ToolResult(success=True, output="done", terminal=True)),
        make_tool("halt", lambda args, context: ToolResult(success=False, error="no", terminal=True)),
    ])
    invoker = ToolInvoker(registry, ApprovalGate())

    results = await invoker.invoke([call("1", "stop"), call("2", "halt")], None, Recorder())

    assert [inv.terminal for inv in results] == [True, False]
