"""
Token estimation and history condensation.

Prior conversation turns are carried into a new run verbatim up to a
configured count. Older turns are condensed into a single summary message
built from key facts, without calling the model, so the carried context is
deterministic for a given history.
"""

from typing import TYPE_CHECKING, Sequence

from ..llm.base import LLMMessage

if TYPE_CHECKING:
    from .history import ConversationTurn

# Approximate tokens per character (conservative estimate)
CHARS_PER_TOKEN = 4

# Role markers and formatting per message
MESSAGE_OVERHEAD_CHARS = 20

SUMMARY_PREFIX = "[Previous conversation summary]: "


def estimate_text_tokens(text: str) -> int:
    """Estimate token count for a plain string."""
    if not text:
        return 0
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def estimate_message_tokens(message: LLMMessage) -> int:
    """Estimate token count for one message, including its tool calls."""
    chars = len(message.content) + MESSAGE_OVERHEAD_CHARS
    for tc in message.tool_calls or ():
        chars += len(tc.name) + len(str(tc.arguments))
    return (chars + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def estimate_tokens(messages: Sequence[LLMMessage]) -> int:
    """Estimate token count for a list of messages."""
    return sum(estimate_message_tokens(m) for m in messages)


def _extract_key_facts(turns: Sequence["ConversationTurn"]) -> list[str]:
    """Extract key facts stated by the user for the summary."""
    facts = []

    for turn in turns:
        content_lower = turn.input.lower()
        if any(phrase in content_lower for phrase in [
            "my name is", "i work", "i live", "i prefer",
            "remember that", "don't forget", "important:",
        ]):
            facts.append(f"[User stated]: {turn.input[:200]}")

    return facts[:10]  # Cap at 10 key facts


def summarize_turns(turns: Sequence["ConversationTurn"]) -> str:
    """Create a basic summary of older turns."""
    parts = ["Earlier in this conversation:"]

    key_facts = _extract_key_facts(turns)
    if key_facts:
        parts.append("\nKey information:")
        for fact in key_facts:
            parts.append(f"  - {fact}")

    parts.append(f"\n[{len(turns)} earlier turns summarized]")

    if turns:
        parts.append(f"\nFirst topic: {turns[0].input[:150]}")
        if len(turns) > 1:
            parts.append(f"Last topic before this: {turns[-1].input[:150]}")
        if turns[-1].output:
            parts.append(f"Last answer: {turns[-1].output[:150]}")

    return "\n".join(parts)


def condense_turns(
    turns: Sequence["ConversationTurn"],
    carry_turns: int,
) -> list[LLMMessage]:
    """Messages carrying prior turns into a new run.

    The newest ``carry_turns`` turns are kept verbatim as user/assistant
    pairs; anything older collapses into one summary message placed first.
    """
    visible = list(turns)
    older = visible[:len(visible) - carry_turns] if carry_turns < len(visible) else []
    recent = visible[len(older):]

    messages: list[LLMMessage] = []
    if older:
        messages.append(LLMMessage(
            role="user",
            content=SUMMARY_PREFIX + summarize_turns(older),
        ))
    for turn in recent:
        messages.extend(turn.to_messages())
    return messages
