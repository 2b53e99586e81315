from __future__ import annotations

from typing import Sequence

FALLBACK_RESPONSES = (
    "I understand what you're saying. Let me help you with that.",
    "That's an interesting point. Here's what I think about it.",
    "I see what you mean. Let me provide some assistance.",
    "Thanks for sharing that with me. I'm here to help.",
    "I appreciate your message. How can I assist you further?",
)


def select_fallback(message: str, responses: Sequence[str] = FALLBACK_RESPONSES) -> str:
    """Pick a canned reply for `message` without calling any backend.

    The index is the sum of the message's Unicode code points modulo the
    number of responses, so the same text always gets the same reply.
    """
    if not responses:
        raise ValueError("responses must not be empty")
    score = sum(ord(ch) for ch in message)
    return responses[score % len(responses)]
