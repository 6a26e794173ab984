"""
SQLite-based repository for conversation notes.
"""
import re
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from ..models import Note, NoteCategory, utcnow

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7
DEDUPE_WINDOW = timedelta(hours=1)


def word_overlap(a: str, b: str) -> float:
    """Share of distinct words in common, relative to the longer note."""
    words_a = set(re.findall(r"\w+", a.lower()))
    words_b = set(re.findall(r"\w+", b.lower()))
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


class NoteRepository:
    """Tenant-scoped notes attached to conversations."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        conn = self._connect()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                note_id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                user_id TEXT,
                patient_name TEXT,
                content TEXT NOT NULL,
                category TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notes_conversation
            ON notes (tenant_id, conversation_id)
        """)
        conn.commit()
        conn.close()

    @staticmethod
    def _to_note(row: sqlite3.Row) -> Note:
        return Note(
            note_id=row["note_id"],
            conversation_id=row["conversation_id"],
            user_id=row["user_id"],
            patient_name=row["patient_name"],
            content=row["content"],
            category=NoteCategory(row["category"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def create(
        self,
        tenant_id: str,
        conversation_id: str,
        content: str,
        category: NoteCategory = NoteCategory.OTHER,
        user_id: Optional[str] = None,
        patient_name: Optional[str] = None,
        dedupe: bool = True,
    ) -> Note:
        """
        Create a note, or return the existing one if a near-duplicate was
        written in the same conversation within the last hour.

        Args:
            dedupe: Set False for system notes that must always be written.
        """
        content = content.strip()
        if not content:
            raise ValueError("Note content must not be empty")

        since = utcnow() - DEDUPE_WINDOW
        recent = self.list_for_conversation(tenant_id, conversation_id, limit=50) if dedupe else []
        for existing in recent:
            if existing.created_at < since:
                continue
            if word_overlap(existing.content, content) >= SIMILARITY_THRESHOLD:
                logger.info(f"Skipping near-duplicate note in conversation {conversation_id}")
                return existing

        note = Note(
            note_id=uuid.uuid4().hex[:12],
            conversation_id=conversation_id,
            user_id=user_id,
            patient_name=patient_name.strip() if patient_name else None,
            content=content,
            category=category,
            created_at=utcnow(),
        )
        conn = self._connect()
        conn.execute(
            """INSERT INTO notes
               (note_id, tenant_id, conversation_id, user_id, patient_name, content, category, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                note.note_id,
                tenant_id,
                conversation_id,
                user_id,
                note.patient_name,
                content,
                category.value,
                note.created_at.isoformat(),
            ),
        )
        conn.commit()
        conn.close()
        logger.debug(f"Created {category.value} note {note.note_id}")
        return note

    def list_for_conversation(self, tenant_id: str, conversation_id: str, limit: int = 20) -> List[Note]:
        """Most recent notes of a conversation, newest first."""
        conn = self._connect()
        rows = conn.execute(
            "SELECT * FROM notes WHERE tenant_id = ? AND conversation_id = ? "
            "ORDER BY created_at DESC LIMIT ?",
            (tenant_id, conversation_id, limit),
        ).fetchall()
        conn.close()
        return [self._to_note(row) for row in rows]

    def list_notes(
        self, tenant_id: str, category: Optional[NoteCategory] = None, limit: int = 100
    ) -> List[Note]:
        conn = self._connect()
        if category is None:
            rows = conn.execute(
                "SELECT * FROM notes WHERE tenant_id = ? ORDER BY created_at DESC LIMIT ?",
                (tenant_id, limit),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM notes WHERE tenant_id = ? AND category = ? ORDER BY created_at DESC LIMIT ?",
                (tenant_id, category.value, limit),
            ).fetchall()
        conn.close()
        return [self._to_note(row) for row in rows]

    def delete(self, tenant_id: str, note_id: str) -> bool:
        conn = self._connect()
        cursor = conn.execute("DELETE FROM notes WHERE tenant_id = ? AND note_id = ?", (tenant_id, note_id))
        deleted = cursor.rowcount > 0
        conn.commit()
        conn.close()
        return deleted
