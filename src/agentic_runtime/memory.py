"""
Memory entries held by the agent context.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class MemoryScope(str, Enum):
    RUN = "run"                     # dropped when the run ends
    CONVERSATION = "conversation"   # saved into the conversation history


@dataclass(frozen=True)
class MemoryEntry:
    """A named piece of information surfaced in every prompt.

    An entry with empty ``value`` is a deletion request when returned by a
    tool.
    """

    key: str
    value: str
    scope: MemoryScope = MemoryScope.RUN
    description: str = ""
    run_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_persistent(self) -> bool:
        return self.scope is MemoryScope.CONVERSATION

    def stamped(self, run_id: str) -> "MemoryEntry":
        return replace(self, run_id=run_id, timestamp=datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "scope": self.scope.value,
            "description": self.description,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryEntry":
        return cls(
            key=data["key"],
            value=data["value"],
            scope=MemoryScope(data.get("scope", MemoryScope.RUN.value)),
            description=data.get("description", ""),
            run_id=data.get("run_id", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
