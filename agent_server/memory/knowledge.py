"""
Keyword-scored knowledge index over AgentRecords.

Records are split into fixed-size chunks and scored against a query by
keyword overlap. Retrieval returns ranked text, which is all the
conversation driver needs.
"""
import re
import sqlite3
from typing import List, Protocol
import logging

logger = logging.getLogger(__name__)

CHUNK_SIZE = 500

STOP_WORDS = frozenset(
    """a an and are as at be but by can do does for from has have how i if in is it
    its me my of on or our please the their them there this to was we what when where
    which who will with would you your""".split()
)


def keywords(text: str) -> List[str]:
    return [w for w in re.findall(r"\w+", text.lower()) if w not in STOP_WORDS and len(w) > 1]


def chunk_text(text: str, size: int = CHUNK_SIZE) -> List[str]:
    """Split text into chunks of at most ``size`` characters, on whitespace when possible."""
    text = text.strip()
    chunks: List[str] = []
    while len(text) > size:
        cut = text.rfind(" ", 0, size)
        if cut <= 0:
            cut = size
        chunks.append(text[:cut].strip())
        text = text[cut:].strip()
    if text:
        chunks.append(text)
    return chunks


class KnowledgeIndex(Protocol):
    """Retrieval collaborator used by the memory store and the driver."""

    def index_document(self, tenant_id: str, document_id: str, title: str, content: str) -> int: ...

    def delete_document(self, tenant_id: str, document_id: str) -> None: ...

    def retrieve(self, tenant_id: str, query: str, limit: int = 3) -> List[str]: ...


class KeywordKnowledgeIndex:
    """SQLite-backed chunk index with keyword scoring."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS knowledge_chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                document_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                text TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document
            ON knowledge_chunks (tenant_id, document_id)
        """)
        conn.commit()
        conn.close()

    def index_document(self, tenant_id: str, document_id: str, title: str, content: str) -> int:
        """(Re)index a document. Returns the number of chunks written."""
        self.delete_document(tenant_id, document_id)
        chunks = chunk_text(f"{title}\n{content}")
        conn = sqlite3.connect(self.db_path)
        conn.executemany(
            "INSERT INTO knowledge_chunks (tenant_id, document_id, position, text) VALUES (?, ?, ?, ?)",
            [(tenant_id, document_id, i, chunk) for i, chunk in enumerate(chunks)],
        )
        conn.commit()
        conn.close()
        logger.debug(f"Indexed {len(chunks)} chunks for {document_id}")
        return len(chunks)

    def delete_document(self, tenant_id: str, document_id: str) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "DELETE FROM knowledge_chunks WHERE tenant_id = ? AND document_id = ?",
            (tenant_id, document_id),
        )
        conn.commit()
        conn.close()

    def retrieve(self, tenant_id: str, query: str, limit: int = 3) -> List[str]:
        """Return up to ``limit`` chunks ranked by keyword hits; chunks with no hits are dropped."""
        terms = set(keywords(query))
        if not terms:
            return []
        conn = sqlite3.connect(self.db_path)
        rows = conn.execute(
            "SELECT text FROM knowledge_chunks WHERE tenant_id = ? ORDER BY id",
            (tenant_id,),
        ).fetchall()
        conn.close()

        scored = []
        for (text,) in rows:
            words = keywords(text)
            score = sum(1 for w in words if w in terms)
            if score:
                scored.append((score, text))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [text for _, text in scored[:limit]]
