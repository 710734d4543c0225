"""
Conversation history carried across runs.

A history is an append-only list of completed turns plus the
conversation-scoped memory entries. It is the unit of persistence: it
serializes to a plain record (and JSON) and loads back without loss.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

import structlog

from ..events import Event, summarize_event
from ..llm.base import LLMMessage
from ..memory import MemoryEntry
from .compaction import condense_turns

logger = structlog.get_logger()

RECORD_VERSION = 1


@dataclass(frozen=True)
class ConversationTurn:
    """One complete input/output cycle."""

    input: str
    output: str
    run_id: str
    events: tuple[Event, ...] = ()
    turn_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_messages(self) -> list[LLMMessage]:
        messages = [LLMMessage(role="user", content=self.input)]
        if self.output:
            messages.append(LLMMessage(role="assistant", content=self.output))
        return messages

    def to_record(self) -> dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "run_id": self.run_id,
            "input": self.input,
            "output": self.output,
            "timestamp": self.timestamp.isoformat(),
            "events": [
                {**event.to_dict(), "summary": summarize_event(event)}
                for event in self.events
            ],
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "ConversationTurn":
        return cls(
            input=data["input"],
            output=data["output"],
            run_id=data["run_id"],
            events=tuple(Event.from_dict(e) for e in data.get("events", [])),
            turn_id=data["turn_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class ConversationHistory:
    """Append-only log of turns shared by the runs of one conversation.

    New runs read it to seed their context; only the run that completes a
    turn writes to it.
    """

    def __init__(
        self,
        turns: list[ConversationTurn] | None = None,
        memories: list[MemoryEntry] | None = None,
        conversation_id: str | None = None,
    ):
        self.conversation_id = conversation_id or uuid.uuid4().hex
        self._turns: list[ConversationTurn] = list(turns or [])
        self._memories: dict[str, MemoryEntry] = {m.key: m for m in memories or []}

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def memories(self) -> tuple[MemoryEntry, ...]:
        return tuple(self._memories.values())

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)
        logger.debug(
            "Turn appended",
            conversation_id=self.conversation_id,
            turn_id=turn.turn_id,
            turns=len(self._turns),
        )

    def save_memories(self, entries: list[MemoryEntry]) -> None:
        """Replace the conversation-scoped memories with ``entries``."""
        self._memories = {m.key: m for m in entries if m.is_persistent}

    def find_by_run_id(self, run_id: str) -> list[ConversationTurn]:
        return [t for t in self._turns if t.run_id == run_id]

    def messages(self, carry_turns: int | None = None) -> list[LLMMessage]:
        """Messages for seeding a new run's context."""
        if carry_turns is None:
            carry_turns = len(self._turns)
        return condense_turns(self._turns, carry_turns)

    def to_record(self) -> dict[str, Any]:
        return {
            "version": RECORD_VERSION,
            "conversation_id": self.conversation_id,
            "turns": [t.to_record() for t in self._turns],
            "memories": [m.to_dict() for m in self._memories.values()],
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "ConversationHistory":
        version = data.get("version", RECORD_VERSION)
        if version != RECORD_VERSION:
            raise ValueError(f"unsupported history record version: {version}")
        return cls(
            turns=[ConversationTurn.from_record(t) for t in data.get("turns", [])],
            memories=[MemoryEntry.from_dict(m) for m in data.get("memories", [])],
            conversation_id=data.get("conversation_id"),
        )

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_record(), **kwargs)

    @classmethod
    def from_json(cls, raw: str) -> "ConversationHistory":
        return cls.from_record(json.loads(raw))
