"""
Tests for token estimation and history condensation.
"""

from agentic_runtime.agent.compaction import (
    SUMMARY_PREFIX,
    _extract_key_facts,
    condense_turns,
    estimate_message_tokens,
    estimate_text_tokens,
    estimate_tokens,
    summarize_turns,
)
from agentic_runtime.agent.history import ConversationTurn
from agentic_runtime.llm.base import LLMMessage, ToolCall


def make_turns(count: int) -> list[ConversationTurn]:
    return [
        ConversationTurn(input=f"question {i}", output=f"answer {i}", run_id=f"run-{i}")
        for i in range(count)
    ]


def test_estimate_tokens_empty():
    """Test token estimation for empty messages."""
    assert estimate_tokens([]) == 0
    assert estimate_text_tokens("") == 0


def test_estimate_text_tokens_rounds_up():
    """Test that partial tokens count as whole tokens."""
    assert estimate_text_tokens("abcd") == 1
    assert estimate_text_tokens("abcde") == 2


def test_estimate_tokens_basic():
    """Test token estimation for basic messages."""
    messages = [
        LLMMessage(role="user", content="Hello, how are you?"),
        LLMMessage(role="assistant", content="I'm doing well, thanks!"),
    ]
    tokens = estimate_tokens(messages)
    assert tokens > 0
    assert tokens < 100  # Should be reasonable for short messages


def test_estimate_counts_tool_calls():
    """Test that tool call arguments add to the estimate."""
    plain = LLMMessage(role="assistant", content="")
    with_call = LLMMessage(
        role="assistant",
        content="",
        tool_calls=[ToolCall(id="c1", name="search", arguments={"query": "x" * 100})],
    )

    assert estimate_message_tokens(with_call) > estimate_message_tokens(plain)


def test_extract_key_facts():
    """Test key fact extraction from turns."""
    turns = [
        ConversationTurn(input="My name is Alex", output="Hi Alex", run_id="r1"),
        ConversationTurn(input="What's the weather?", output="Sunny", run_id="r2"),
        ConversationTurn(input="Remember that I prefer tea", output="Noted", run_id="r3"),
    ]

    facts = _extract_key_facts(turns)

    assert len(facts) == 2
    assert "My name is Alex" in facts[0]
    assert "prefer tea" in facts[1]


def test_summarize_turns():
    """Test the deterministic summary text."""
    summary = summarize_turns(make_turns(3))

    assert summary.startswith("Earlier in this conversation:")
    assert "[3 earlier turns summarized]" in summary
    assert "First topic: question 0" in summary
    assert "Last topic before this: question 2" in summary


def test_condense_turns_keeps_recent_verbatim():
    """Test that only older turns are condensed."""
    messages = condense_turns(make_turns(5), carry_turns=2)

    assert len(messages) == 5
    assert messages[0].content.startswith(SUMMARY_PREFIX)
    assert [m.content for m in messages[1:]] == [
        "question 3", "answer 3", "question 4", "answer 4",
    ]


def test_condense_turns_without_older_turns():
    """Test that no summary is added when every turn fits."""
    messages = condense_turns(make_turns(2), carry_turns=5)

    assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]


def test_condense_turns_with_zero_carry_summarizes_everything():
    """Test that a zero carry condenses every turn into the summary."""
    messages = condense_turns(make_turns(3), carry_turns=0)

    assert len(messages) == 1
    assert messages[0].content.startswith(SUMMARY_PREFIX)
    assert "[3 earlier turns summarized]" in messages[0].content
