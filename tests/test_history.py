"""
Tests for conversation history.
"""

import pytest

from agentic_runtime.agent.compaction import SUMMARY_PREFIX
from agentic_runtime.agent.history import ConversationHistory, ConversationTurn
from agentic_runtime.events import ContentPayload, Event, EventKind
from agentic_runtime.memory import MemoryEntry, MemoryScope


def make_turn(i: int, with_event: bool = False) -> ConversationTurn:
    events = ()
    if with_event:
        events = (Event(f"run-{i}", 1, 1, EventKind.CONTENT, ContentPayload(content=f"answer {i}")),)
    return ConversationTurn(
        input=f"question {i}",
        output=f"answer {i}",
        run_id=f"run-{i}",
        events=events,
    )


def test_append_and_iterate():
    """Test that turns are kept in order."""
    history = ConversationHistory()
    history.append(make_turn(0))
    history.append(make_turn(1))

    assert len(history) == 2
    assert [t.input for t in history] == ["question 0", "question 1"]


def test_find_by_run_id():
    """Test looking turns up by run id."""
    history = ConversationHistory([make_turn(0), make_turn(1)])

    assert history.find_by_run_id("run-1")[0].output == "answer 1"
    assert history.find_by_run_id("missing") == []


def test_save_memories_keeps_only_persistent_entries():
    """Test that run-scoped memories are not persisted."""
    history = ConversationHistory()
    history.save_memories([
        MemoryEntry(key="a", value="1", scope=MemoryScope.RUN),
        MemoryEntry(key="b", value="2", scope=MemoryScope.CONVERSATION),
    ])

    assert [m.key for m in history.memories] == ["b"]


def test_json_roundtrip_is_lossless():
    """Test saving a history and loading it back."""
    history = ConversationHistory(conversation_id="conv-1")
    history.append(make_turn(0, with_event=True))
    history.append(make_turn(1))
    history.save_memories([MemoryEntry(key="b", value="2", scope=MemoryScope.CONVERSATION)])

    restored = ConversationHistory.from_json(history.to_json())

    assert restored.conversation_id == "conv-1"
    assert restored.turns == history.turns
    assert restored.memories == history.memories
    assert restored.to_record() == history.to_record()


def test_record_includes_event_summaries():
    """Test that recorded events carry a readable summary."""
    history = ConversationHistory([make_turn(0, with_event=True)])

    event = history.to_record()["turns"][0]["events"][0]

    assert event["summary"] == "content: answer 0"


def test_from_record_rejects_unknown_version():
    """Test that future record versions are refused."""
    with pytest.raises(ValueError):
        ConversationHistory.from_record({"version": 99, "turns": []})


def test_messages_condense_older_turns():
    """Test seeding messages with a carry limit."""
    history = ConversationHistory([make_turn(i) for i in range(4)])

    messages = history.messages(carry_turns=1)

    assert messages[0].content.startswith(SUMMARY_PREFIX)
    assert [m.content for m in messages[1:]] == ["question 3", "answer 3"]
    assert len(history.messages()) == 8
