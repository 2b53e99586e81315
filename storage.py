import sqlite3
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from contextlib import contextmanager

from models import Message, User, VALID_ROLES, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20
DEFAULT_RECENT_USERS_LIMIT = 50
# Largest value SQLite accepts for a LIMIT parameter
MAX_QUERY_LIMIT = 2**63 - 1

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        role TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_user_id ON messages(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_user_time ON messages(user_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT UNIQUE NOT NULL,
        phone_number TEXT,
        name TEXT,
        created_at TEXT NOT NULL,
        last_seen TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_user_id ON users(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_users_phone ON users(phone_number)",
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        session_data TEXT,
        expires_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY(user_id) REFERENCES users(user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at)",
]


class StorageError(Exception):
    """Raised when the conversation store cannot complete an operation."""


def _iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


class ConversationStore:
    """SQLite-backed store for messages, users and expiring sessions.

    Every call opens its own connection, so the store is safe to share
    between request threads. An in-memory database (``":memory:"``) cannot
    be reopened, so it is kept on one connection guarded by a lock.
    """

    def __init__(self, db_path: str = "mcp_server.db"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._shared: Optional[sqlite3.Connection] = None
        if db_path == ":memory:":
            self._shared = self._connect()
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info("Initializing database at: %s", db_path)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_database(self):
        try:
            with self._get_connection() as conn:
                for statement in _SCHEMA:
                    conn.execute(statement)
        except sqlite3.Error as e:
            raise StorageError(f"failed to create tables: {e}") from e

    @contextmanager
    def _get_connection(self):
        """Yield a connection; commit on success, roll back and re-raise on error."""
        if self._shared is not None:
            with self._lock:
                try:
                    yield self._shared
                    self._shared.commit()
                except Exception as e:
                    self._shared.rollback()
                    logger.error("Database error: %s", e)
                    raise
            return

        conn = None
        try:
            conn = self._connect()
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error("Database error: %s", e)
            raise
        finally:
            if conn:
                conn.close()

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    # Messages
    def save_message(self, user_id: str, content: str, role: str) -> Message:
        if not user_id or not content or not role:
            raise StorageError("userID, content, and role are required")
        if role not in VALID_ROLES:
            raise StorageError("role must be 'user' or 'assistant'")

        created_at = utcnow()
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO messages (user_id, content, role, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, content, role, _iso(created_at)),
                )
                message_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise StorageError(f"failed to save message: {e}") from e

        logger.info("Saved %s message for user %s", role, user_id)
        return Message(id=message_id, user_id=user_id, content=content, role=role, created_at=created_at)

    def get_chat_history(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Message]:
        """Return the newest `limit` messages for a user, oldest first."""
        if not user_id:
            raise StorageError("userID is required")
        if limit <= 0:
            limit = DEFAULT_HISTORY_LIMIT
        limit = min(limit, MAX_QUERY_LIMIT)

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    SELECT id, user_id, content, role, created_at
                    FROM messages
                    WHERE user_id = ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                    """,
                    (user_id, limit),
                )
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"failed to query messages: {e}") from e

        messages = [
            Message(
                id=row["id"],
                user_id=row["user_id"],
                content=row["content"],
                role=row["role"],
                created_at=parse_timestamp(row["created_at"]),
            )
            for row in rows
        ]
        messages.reverse()
        return messages

    def get_user_message_count(self, user_id: str) -> int:
        if not user_id:
            raise StorageError("userID is required")
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM messages WHERE user_id = ?", (user_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"failed to count messages: {e}") from e
        return row["count"]

    # Users
    def create_or_update_user(self, user_id: str, phone_number: str = "", name: str = "") -> None:
        """Insert a user or refresh `last_seen`; empty phone/name keep the stored values."""
        if not user_id:
            raise StorageError("userID is required")

        now = _iso(utcnow())
        phone_number = phone_number or None
        name = name or None
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO users (user_id, phone_number, name, created_at, last_seen)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        phone_number = COALESCE(excluded.phone_number, phone_number),
                        name = COALESCE(excluded.name, name),
                        last_seen = excluded.last_seen
                    """,
                    (user_id, phone_number, name, now, now),
                )
        except sqlite3.Error as e:
            raise StorageError(f"failed to create/update user: {e}") from e

    def get_user(self, user_id: str) -> Optional[User]:
        if not user_id:
            raise StorageError("userID is required")
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT user_id, phone_number, name, created_at, last_seen FROM users WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"failed to get user: {e}") from e
        return self._row_to_user(row) if row else None

    def get_recent_users(self, limit: int = DEFAULT_RECENT_USERS_LIMIT) -> List[User]:
        if limit <= 0:
            limit = DEFAULT_RECENT_USERS_LIMIT
        limit = min(limit, MAX_QUERY_LIMIT)
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT user_id, phone_number, name, created_at, last_seen
                    FROM users
                    ORDER BY last_seen DESC, id DESC
                    LIMIT ?
                    """,
                    (limit,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"failed to query recent users: {e}") from e
        return [self._row_to_user(row) for row in rows]

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            user_id=row["user_id"],
            phone_number=row["phone_number"] or "",
            name=row["name"] or "",
            created_at=parse_timestamp(row["created_at"]),
            last_seen=parse_timestamp(row["last_seen"]),
        )

    # Sessions
    def save_session(self, user_id: str, session_data: str, expires_at: datetime) -> None:
        if not user_id:
            raise StorageError("userID is required")
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO sessions (user_id, session_data, expires_at, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, session_data, _iso(expires_at), _iso(utcnow())),
                )
        except sqlite3.Error as e:
            raise StorageError(f"failed to save session: {e}") from e

    def get_session(self, user_id: str) -> str:
        """Return the latest unexpired session payload, or "" when there is none."""
        if not user_id:
            raise StorageError("userID is required")
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT session_data
                    FROM sessions
                    WHERE user_id = ? AND expires_at > ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT 1
                    """,
                    (user_id, _iso(utcnow())),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"failed to get session: {e}") from e
        if row is None or row["session_data"] is None:
            return ""
        return row["session_data"]

    def cleanup_expired_sessions(self) -> int:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM sessions WHERE expires_at < ?", (_iso(utcnow()),))
                affected = cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"failed to cleanup sessions: {e}") from e

        if affected > 0:
            logger.info("Cleaned up %d expired sessions", affected)
        return affected

    # Stats
    def get_stats(self) -> Dict[str, Any]:
        now = utcnow()
        queries = [
            ("total_messages", "SELECT COUNT(*) AS count FROM messages", ()),
            ("total_users", "SELECT COUNT(*) AS count FROM users", ()),
            ("active_sessions", "SELECT COUNT(*) AS count FROM sessions WHERE expires_at > ?", (_iso(now),)),
            (
                "messages_today",
                "SELECT COUNT(*) AS count FROM messages WHERE substr(created_at, 1, 10) = ?",
                (now.date().isoformat(),),
            ),
        ]
        stats: Dict[str, Any] = {}
        try:
            with self._get_connection() as conn:
                for name, query, params in queries:
                    stats[name] = conn.execute(query, params).fetchone()["count"]
        except sqlite3.Error as e:
            raise StorageError(f"failed to collect stats: {e}") from e
        return stats
