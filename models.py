from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
VALID_ROLES = (ROLE_USER, ROLE_ASSISTANT)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_rfc3339(ts: datetime) -> str:
    """Render a timestamp as RFC 3339 with second precision (`2026-10-19T08:30:00Z`)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc).replace(microsecond=0)
    return ts.isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        # SQLite's CURRENT_TIMESTAMP uses a space separator
        ts = datetime.fromisoformat(str(value).replace(" ", "T"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class Message:
    id: int
    user_id: str
    content: str
    role: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "role": self.role,
            "created_at": format_rfc3339(self.created_at),
        }


@dataclass(frozen=True)
class User:
    user_id: str
    phone_number: str
    name: str
    created_at: datetime
    last_seen: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "phone_number": self.phone_number,
            "name": self.name,
            "created_at": format_rfc3339(self.created_at),
            "last_seen": format_rfc3339(self.last_seen),
        }
