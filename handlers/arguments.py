from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict

from storage import DEFAULT_HISTORY_LIMIT, MAX_QUERY_LIMIT


class ValidationError(Exception):
    """Raised when tool arguments are missing or have the wrong type."""


@dataclass(frozen=True)
class ChatArguments:
    user_id: str
    message: str


@dataclass(frozen=True)
class HistoryArguments:
    user_id: str
    limit: int = DEFAULT_HISTORY_LIMIT


def _require_string(arguments: Dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{key} is required and must be a string")
    return value


def _coerce_limit(value: Any) -> int:
    """Numbers are truncated toward zero and capped at the SQLite LIMIT maximum.

    Anything else, or a non-positive result, means the default.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_HISTORY_LIMIT
    if isinstance(value, float) and not math.isfinite(value):
        return DEFAULT_HISTORY_LIMIT
    limit = int(value)
    if limit <= 0:
        return DEFAULT_HISTORY_LIMIT
    return min(limit, MAX_QUERY_LIMIT)


def parse_chat_arguments(arguments: Dict[str, Any]) -> ChatArguments:
    return ChatArguments(
        user_id=_require_string(arguments, "user_id"),
        message=_require_string(arguments, "message"),
    )


def parse_history_arguments(arguments: Dict[str, Any]) -> HistoryArguments:
    return HistoryArguments(
        user_id=_require_string(arguments, "user_id"),
        limit=_coerce_limit(arguments.get("limit")),
    )
