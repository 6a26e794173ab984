"""
SQLite-based conversation store for chat sessions.
"""
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any
from dataclasses import dataclass
import json
import logging

from ..models import ChatMessage, utcnow

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "human_agent")


@dataclass
class SessionMeta:
    """Metadata about a conversation session."""
    session_id: str
    tenant_id: str
    user_id: Optional[str]
    created_at: datetime
    last_active: datetime
    message_count: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat(),
            "message_count": self.message_count,
        }


class ConversationStore:
    """SQLite-based storage for tenant conversation sessions."""

    def __init__(self, db_path: str):
        """
        Initialize conversation store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                user_id TEXT,
                created_at TEXT NOT NULL,
                last_active TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                metadata TEXT
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_session_id
            ON messages (session_id)
        """)

        conn.commit()
        conn.close()
        logger.info(f"Initialized conversation store at {self.db_path}")

    def create_session(self, tenant_id: str, user_id: Optional[str] = None) -> str:
        """
        Create a new session for a tenant.

        Returns:
            session_id: UUID string
        """
        session_id = str(uuid.uuid4())
        now = utcnow().isoformat()

        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute(
            "INSERT INTO sessions (session_id, tenant_id, user_id, created_at, last_active) "
            "VALUES (?, ?, ?, ?, ?)",
            (session_id, tenant_id, user_id, now, now)
        )
        conn.commit()
        conn.close()

        logger.info(f"Created session {session_id} for tenant {tenant_id}")
        return session_id

    def save_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Save a message to a session.

        Raises:
            ValueError: If the session doesn't exist or the role is unknown
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}")

        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("SELECT 1 FROM sessions WHERE session_id = ?", (session_id,))
        if not cursor.fetchone():
            conn.close()
            raise ValueError(f"Session {session_id} not found")

        now = utcnow().isoformat()
        metadata_json = json.dumps(metadata) if metadata else None

        cursor.execute(
            """INSERT INTO messages (session_id, role, content, timestamp, metadata)
               VALUES (?, ?, ?, ?, ?)""",
            (session_id, role, content, now, metadata_json)
        )
        cursor.execute(
            "UPDATE sessions SET last_active = ? WHERE session_id = ?",
            (now, session_id)
        )

        conn.commit()
        conn.close()
        logger.debug(f"Saved {role} message to session {session_id}")

    def get_history(self, session_id: str, limit: int = 50) -> List[ChatMessage]:
        """
        Get message history for a session, oldest first.

        Raises:
            ValueError: If session doesn't exist
        """
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("SELECT 1 FROM sessions WHERE session_id = ?", (session_id,))
        if not cursor.fetchone():
            conn.close()
            raise ValueError(f"Session {session_id} not found")

        cursor.execute(
            """SELECT role, content, timestamp
               FROM messages
               WHERE session_id = ?
               ORDER BY id DESC
               LIMIT ?""",
            (session_id, limit)
        )
        rows = cursor.fetchall()
        conn.close()

        return [
            ChatMessage(role=role, content=content, timestamp=datetime.fromisoformat(timestamp))
            for role, content, timestamp in reversed(rows)
        ]

    def get_session(self, session_id: str) -> Optional[SessionMeta]:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("""
            SELECT s.session_id, s.tenant_id, s.user_id, s.created_at, s.last_active, COUNT(m.id)
            FROM sessions s
            LEFT JOIN messages m ON s.session_id = m.session_id
            WHERE s.session_id = ?
            GROUP BY s.session_id
        """, (session_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None
        session_id, tenant_id, user_id, created_at, last_active, msg_count = row
        return SessionMeta(
            session_id=session_id,
            tenant_id=tenant_id,
            user_id=user_id,
            created_at=datetime.fromisoformat(created_at),
            last_active=datetime.fromisoformat(last_active),
            message_count=msg_count,
        )

    def delete_session(self, session_id: str) -> bool:
        """
        Delete a session and all its messages.

        Returns:
            True if session was deleted, False if not found
        """
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        cursor.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
        deleted = cursor.rowcount > 0

        conn.commit()
        conn.close()

        if deleted:
            logger.info(f"Deleted session {session_id}")
        else:
            logger.warning(f"Session {session_id} not found for deletion")

        return deleted

    def cleanup_expired(self, timeout_minutes: int = 30) -> int:
        """
        Delete sessions that have been inactive for longer than timeout.

        Returns:
            Number of sessions deleted
        """
        cutoff_iso = (utcnow() - timedelta(minutes=timeout_minutes)).isoformat()

        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute(
            "DELETE FROM messages WHERE session_id IN "
            "(SELECT session_id FROM sessions WHERE last_active < ?)",
            (cutoff_iso,)
        )
        cursor.execute("DELETE FROM sessions WHERE last_active < ?", (cutoff_iso,))
        deleted_count = cursor.rowcount
        conn.commit()
        conn.close()

        if deleted_count > 0:
            logger.info(f"Cleaned up {deleted_count} expired sessions")

        return deleted_count

    def session_exists(self, session_id: str) -> bool:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM sessions WHERE session_id = ?", (session_id,))
        exists = cursor.fetchone() is not None
        conn.close()
        return exists
