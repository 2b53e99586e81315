from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from models import Message

SYSTEM_PROMPT = (
    "You are a helpful AI assistant integrated with WhatsApp. Provide concise, helpful "
    "responses to user messages. Keep responses conversational and appropriate for a "
    "messaging context."
)
MAX_HISTORY_MESSAGES = 10

HistoryEntry = Union[Message, Mapping[str, Any]]


def _as_turn(entry: HistoryEntry) -> Dict[str, str]:
    if isinstance(entry, Message):
        return {"role": entry.role, "content": entry.content}
    return {"role": str(entry["role"]), "content": str(entry["content"])}


def build_window(
    history: Sequence[HistoryEntry],
    message: str,
    system_prompt: str = SYSTEM_PROMPT,
    max_history: int = MAX_HISTORY_MESSAGES,
) -> List[Dict[str, str]]:
    """Assemble the message list sent to the completion backend.

    The window is one system entry followed by at most `max_history` turns:
    the newest history entries (oldest first) and, last, the new user message.
    """
    keep = max_history - 1
    recent = list(history)[-keep:] if keep > 0 else []
    window = [{"role": "system", "content": system_prompt}]
    window.extend(_as_turn(entry) for entry in recent)
    window.append({"role": "user", "content": message})
    return window


class ContextManager:
    """Holds the system prompt and history bound used to build conversation windows."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config = config or {}
        self.system_prompt = self.config.get("system_prompt", SYSTEM_PROMPT)
        self.max_history = int(self.config.get("max_history", MAX_HISTORY_MESSAGES))

    def build_window(self, history: Sequence[HistoryEntry], message: str) -> List[Dict[str, str]]:
        return build_window(history, message, self.system_prompt, self.max_history)
