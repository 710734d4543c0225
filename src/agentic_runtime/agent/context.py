"""
Agent context - everything the next prompt is built from.

The context is owned and mutated by a single run. Anything else (tools,
the tracer) reads it through ``snapshot()``, which returns an immutable copy.
Built prompts hold copies of the messages, so interceptors and model
adapters cannot rewrite the conversation in place.

Prompt layout, in order:
1. system rules
2. memory entries (part of the system prompt)
3. document references
4. prior conversation turns
5. current-turn messages

When the estimated size exceeds the budget, whole prior-turn messages are
dropped from the oldest end first, then document references (oldest
first), then memory entries (oldest first). System rules and current-turn
messages are never dropped; if they alone exceed the budget the prompt is
flagged as overflowing.
"""

from dataclasses import dataclass, replace
from typing import Any

import structlog

from ..documents import Document
from ..llm.base import LLMMessage, ToolCall
from ..memory import MemoryEntry
from .compaction import estimate_text_tokens, estimate_tokens
from .environment import ExecutionEnvironment
from .history import ConversationHistory

logger = structlog.get_logger()

DEFAULT_SYSTEM_RULES = """You are an autonomous agent working to complete a task.
Consider all the information you were given and reason about the next step to take.
Use the available tools when they help; when the task is done, answer without calling tools."""


@dataclass(frozen=True)
class Prompt:
    """A built prompt and how it was fitted to the budget."""

    system_prompt: str
    messages: list[LLMMessage]
    estimated_tokens: int
    budget: int
    dropped_messages: int = 0
    dropped_documents: int = 0
    dropped_memories: int = 0
    overflow: bool = False
    minimal_tokens: int = 0


@dataclass(frozen=True)
class ContextSnapshot:
    """Read-only copy of an agent context."""

    run_id: str
    system_rules: str
    prior_messages: tuple[LLMMessage, ...]
    current_messages: tuple[LLMMessage, ...]
    memories: tuple[MemoryEntry, ...]
    documents: tuple[Document, ...]
    environment: ExecutionEnvironment | None

    @property
    def messages(self) -> tuple[LLMMessage, ...]:
        return self.prior_messages + self.current_messages

    def memory(self, key: str) -> MemoryEntry | None:
        for entry in self.memories:
            if entry.key == key:
                return entry
        return None


class AgentContext:
    """Conversation messages, memories and documents for one run."""

    def __init__(
        self,
        system_rules: str = DEFAULT_SYSTEM_RULES,
        max_context_tokens: int = 100_000,
        environment: ExecutionEnvironment | None = None,
        run_id: str = "",
    ):
        self.system_rules = system_rules
        self.max_context_tokens = max_context_tokens
        self.environment = environment
        self.run_id = run_id
        self._messages: list[LLMMessage] = []
        self._turn_start = 0
        self._memories: dict[str, MemoryEntry] = {}
        self._documents: list[tuple[Document, bool]] = []
        self.truncated_count = 0

    # Messages

    @property
    def messages(self) -> list[LLMMessage]:
        return list(self._messages)

    @property
    def prior_messages(self) -> list[LLMMessage]:
        return self._messages[:self._turn_start]

    @property
    def current_messages(self) -> list[LLMMessage]:
        return self._messages[self._turn_start:]

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def load_history(self, history: ConversationHistory, carry_turns: int | None = None) -> None:
        """Seed prior turns and conversation memories from a history."""
        if self.current_messages:
            raise RuntimeError("history must be loaded before the turn begins")
        self._messages.extend(history.messages(carry_turns))
        self._turn_start = len(self._messages)
        for entry in history.memories:
            self._memories[entry.key] = entry

    def begin_turn(self, user_input: str) -> None:
        """Mark the start of the current turn with the user's input."""
        self._turn_start = len(self._messages)
        self.add_user_message(user_input)

    def add_user_message(self, content: str) -> None:
        """Add a user message."""
        self._messages.append(LLMMessage(role="user", content=content))

    def add_assistant_message(
        self, content: str, tool_calls: list[ToolCall] | None = None
    ) -> None:
        """Add an assistant message, keeping its own copies of the tool calls."""
        self._messages.append(_copy_message(LLMMessage(
            role="assistant",
            content=content,
            tool_calls=tool_calls,
        )))

    def add_tool_result(self, tool_call_id: str, result: str, tool_name: str = "") -> None:
        """Add a tool result."""
        self._messages.append(LLMMessage(
            role="tool",
            content=result,
            tool_call_id=tool_call_id,
            name=tool_name,
        ))

    def truncate(self, count: int) -> int:
        """Drop up to ``count`` of the oldest prior-turn messages.

        Returns the number of messages actually dropped.
        """
        count = max(0, min(count, self._turn_start))
        if count:
            del self._messages[:count]
            self._turn_start -= count
            self.truncated_count += count
        return count

    # Memories

    @property
    def memories(self) -> list[MemoryEntry]:
        return list(self._memories.values())

    def set_memory(self, entry: MemoryEntry) -> None:
        """Add or update a memory entry; an empty value deletes it."""
        if not entry.value:
            self.delete_memory(entry.key)
            return
        self._memories.pop(entry.key, None)
        self._memories[entry.key] = entry

    def delete_memory(self, key: str) -> None:
        self._memories.pop(key, None)

    def get_memory(self, key: str) -> MemoryEntry | None:
        return self._memories.get(key)

    # Documents

    @property
    def documents(self) -> list[Document]:
        return [doc for doc, _ in self._documents]

    def attach_document(self, document: Document, embed: bool = False) -> None:
        """Attach a read-only document; ``embed`` inlines its text."""
        self._documents.append((document, embed))

    # Prompt

    def build_prompt(self) -> Prompt:
        """Build the next prompt, truncating to the token budget."""
        budget = self.max_context_tokens
        rules_tokens = estimate_text_tokens(self.system_rules)
        current_tokens = estimate_tokens(self.current_messages)
        minimal = rules_tokens + current_tokens

        if minimal > budget:
            dropped = self.truncate(self._turn_start)
            logger.warning(
                "Minimal context exceeds budget",
                run_id=self.run_id,
                minimal_tokens=minimal,
                budget=budget,
            )
            return Prompt(
                system_prompt=self.system_rules,
                messages=[_copy_message(m) for m in self.current_messages],
                estimated_tokens=minimal,
                budget=budget,
                dropped_messages=dropped,
                dropped_documents=len(self._documents),
                dropped_memories=len(self._memories),
                overflow=True,
                minimal_tokens=minimal,
            )

        memories = list(self._memories.values())
        documents = list(self._documents)

        system_prompt = self._render_system(memories)
        doc_messages = self._render_documents(documents)
        prior = self.prior_messages
        size = (
            estimate_text_tokens(system_prompt)
            + estimate_tokens(doc_messages)
            + estimate_tokens(prior)
            + current_tokens
        )

        drop = 0
        while size > budget and drop < len(prior):
            size -= estimate_tokens([prior[drop]])
            drop += 1
        dropped_messages = self.truncate(drop)

        dropped_documents = 0
        while size > budget and documents:
            documents.pop(0)
            dropped_documents += 1
            new_docs = self._render_documents(documents)
            size += estimate_tokens(new_docs) - estimate_tokens(doc_messages)
            doc_messages = new_docs

        dropped_memories = 0
        while size > budget and memories:
            memories.pop(0)
            dropped_memories += 1
            new_system = self._render_system(memories)
            size += estimate_text_tokens(new_system) - estimate_text_tokens(system_prompt)
            system_prompt = new_system

        if dropped_messages or dropped_documents or dropped_memories:
            logger.info(
                "Context truncated",
                run_id=self.run_id,
                dropped_messages=dropped_messages,
                dropped_documents=dropped_documents,
                dropped_memories=dropped_memories,
                budget=budget,
            )

        return Prompt(
            system_prompt=system_prompt,
            messages=doc_messages + [_copy_message(m) for m in self._messages],
            estimated_tokens=size,
            budget=budget,
            dropped_messages=dropped_messages,
            dropped_documents=dropped_documents,
            dropped_memories=dropped_memories,
            minimal_tokens=minimal,
        )

    def _render_system(self, memories: list[MemoryEntry]) -> str:
        if not memories:
            return self.system_rules
        blocks = []
        for entry in memories:
            description = f' description="{entry.description}"' if entry.description else ""
            blocks.append(f'<memory key="{entry.key}"{description}>\n{entry.value}\n</memory>')
        return f"{self.system_rules}\n\n<memories>\n" + "\n".join(blocks) + "\n</memories>"

    def _render_documents(self, documents: list[tuple[Document, bool]]) -> list[LLMMessage]:
        if not documents:
            return []
        parts = ["Attached documents:"]
        for doc, embed in documents:
            parts.append(doc.reference())
            if embed:
                try:
                    parts.append(f"<content id=\"{doc.id}\">\n{doc.text()}\n</content>")
                except Exception as e:
                    logger.error("Failed to load document", document_id=doc.id, error=str(e))
                    parts.append(f"<content id=\"{doc.id}\">unavailable: {e}</content>")
        return [LLMMessage(role="user", content="\n".join(parts))]

    def snapshot(self) -> ContextSnapshot:
        """Immutable copy for readers other than the owning run."""
        return ContextSnapshot(
            run_id=self.run_id,
            system_rules=self.system_rules,
            prior_messages=tuple(_copy_message(m) for m in self.prior_messages),
            current_messages=tuple(_copy_message(m) for m in self.current_messages),
            memories=tuple(self._memories.values()),
            documents=tuple(self.documents),
            environment=self.environment,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "messages": [m.to_dict() for m in self._messages],
            "turn_start": self._turn_start,
            "memories": [m.to_dict() for m in self._memories.values()],
            "documents": [doc.id for doc in self.documents],
        }


def _copy_message(message: LLMMessage) -> LLMMessage:
    tool_calls = [replace(tc, arguments=dict(tc.arguments)) for tc in message.tool_calls] if message.tool_calls else None
    return replace(message, tool_calls=tool_calls)
