"""
Events emitted by an agent run.

Every event shares one envelope (run id, turn id, sequence number, timestamp)
and carries a payload selected by ``kind``. Consumers branch on ``kind``:

    async for event in stream:
        if event.kind is EventKind.CONTENT:
            print(event.payload.content)
        elif event.kind is EventKind.APPROVAL and event.payload.decision is None:
            run.approve(event.payload.call_id)

The run ends with exactly one terminal event (COMPLETED, FAILED or CANCELLED).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


class EventKind(str, Enum):
    CONTENT = "content"
    TOOL = "tool"
    THINKING = "thinking"
    ERROR = "error"
    APPROVAL = "approval"
    LLM_CALL = "llm_call"
    EVAL = "eval"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_KINDS = frozenset({EventKind.COMPLETED, EventKind.FAILED, EventKind.CANCELLED})


@dataclass(frozen=True)
class ContentPayload:
    content: str
    chunk: bool = False


@dataclass(frozen=True)
class ThinkingPayload:
    thought: str


@dataclass(frozen=True)
class ToolPayload:
    call_id: str
    tool_name: str
    arguments: dict[str, Any]
    status: str
    output: str = ""
    error: str | None = None


@dataclass(frozen=True)
class ApprovalPayload:
    """An approval request (``decision`` is None) or its resolution."""

    call_id: str
    tool_name: str
    arguments: dict[str, Any]
    decision: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class LLMCallPayload:
    model: str
    tool_calls: list[dict[str, Any]]
    attempts: int = 1
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class ErrorPayload:
    error_type: str
    code: str
    message: str
    fatal: bool = False
    source: str | None = None
    call_id: str | None = None


@dataclass(frozen=True)
class EvalPayload:
    model: str
    duration_ms: float
    system_prompt: str
    messages: list[dict[str, Any]]
    tools: list[str]
    response: dict[str, Any] | None
    input_tokens: int = 0
    output_tokens: int = 0
    error: str | None = None


@dataclass(frozen=True)
class RunEndPayload:
    status: str
    output: str = ""
    error: str | None = None
    turns: int = 0


Payload = Union[
    ContentPayload,
    ThinkingPayload,
    ToolPayload,
    ApprovalPayload,
    LLMCallPayload,
    ErrorPayload,
    EvalPayload,
    RunEndPayload,
]

PAYLOAD_TYPES: dict[EventKind, type] = {
    EventKind.CONTENT: ContentPayload,
    EventKind.TOOL: ToolPayload,
    EventKind.THINKING: ThinkingPayload,
    EventKind.ERROR: ErrorPayload,
    EventKind.APPROVAL: ApprovalPayload,
    EventKind.LLM_CALL: LLMCallPayload,
    EventKind.EVAL: EvalPayload,
    EventKind.COMPLETED: RunEndPayload,
    EventKind.FAILED: RunEndPayload,
    EventKind.CANCELLED: RunEndPayload,
}


@dataclass(frozen=True)
class Event:
    run_id: str
    turn_id: int
    sequence_no: int
    kind: EventKind
    payload: Payload
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} event needs {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "turn_id": self.turn_id,
            "sequence_no": self.sequence_no,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "payload": asdict(self.payload),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create from dictionary."""
        kind = EventKind(data["kind"])
        return cls(
            run_id=data["run_id"],
            turn_id=data["turn_id"],
            sequence_no=data["sequence_no"],
            kind=kind,
            payload=PAYLOAD_TYPES[kind](**data["payload"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


def summarize_event(event: Event) -> str:
    """One-line, human-readable description of an event."""
    p = event.payload
    kind = event.kind
    if kind is EventKind.CONTENT:
        return f"content: {p.content[:80]}"
    elif kind is EventKind.THINKING:
        return f"thinking: {p.thought[:80]}"
    elif kind is EventKind.TOOL:
        detail = f" ({p.error})" if p.error else ""
        return f"tool {p.tool_name}[{p.call_id}] {p.status}{detail}"
    elif kind is EventKind.APPROVAL:
        state = p.decision or "requested"
        return f"approval {p.tool_name}[{p.call_id}] {state}"
    elif kind is EventKind.LLM_CALL:
        names = ", ".join(tc["name"] for tc in p.tool_calls)
        return f"llm call {p.model} -> {names}"
    elif kind is EventKind.ERROR:
        return f"error {p.error_type}: {p.message}"
    elif kind is EventKind.EVAL:
        return f"eval {p.model} {p.duration_ms:.0f}ms"
    elif kind in TERMINAL_KINDS:
        return f"run {p.status}" + (f": {p.error}" if p.error else "")
    raise ValueError(f"unhandled event kind: {kind}")
