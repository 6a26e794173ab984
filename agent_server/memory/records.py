"""
Repository for AgentRecords and their ModificationRequests.

Records and requests are tenant-scoped. Only the memory store (brain.py)
decides when a staged request is applied; this module just persists.
"""
import sqlite3
import uuid
from datetime import datetime
from typing import List, Optional, Protocol
import logging

from ..models import AgentRecord, ModificationRequest, ModificationType, RequestStatus, utcnow

logger = logging.getLogger(__name__)


class RecordNotFoundError(ValueError):
    """Raised when an AgentRecord does not exist for the tenant."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found")


class RequestNotFoundError(ValueError):
    """Raised when a ModificationRequest does not exist for the tenant."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Modification request {request_id} not found")


class RequestAlreadyProcessedError(ValueError):
    """Raised when approving or rejecting a request that is no longer pending."""

    def __init__(self, request_id: str, status: RequestStatus):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Modification request {request_id} is already {status.value}")


class RecordRepository(Protocol):
    """Persistence for AgentRecords and ModificationRequests."""

    def create_record(self, tenant_id: str, title: str, content: str) -> AgentRecord: ...

    def get_record(self, tenant_id: str, record_id: str) -> Optional[AgentRecord]: ...

    def list_records(self, tenant_id: str) -> List[AgentRecord]: ...

    def update_record(
        self, tenant_id: str, record_id: str, title: Optional[str] = None, content: Optional[str] = None
    ) -> Optional[AgentRecord]: ...

    def delete_record(self, tenant_id: str, record_id: str) -> bool: ...

    def add_request(self, tenant_id: str, request: ModificationRequest) -> None: ...

    def get_request(self, tenant_id: str, request_id: str) -> Optional[ModificationRequest]: ...

    def list_requests(
        self, tenant_id: str, status: Optional[RequestStatus] = None
    ) -> List[ModificationRequest]: ...

    def set_request_status(
        self, tenant_id: str, request_id: str, status: RequestStatus, reviewed_by: Optional[str] = None
    ) -> Optional[ModificationRequest]: ...


def new_record_id() -> str:
    return f"rec_{uuid.uuid4().hex[:12]}"


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class SqliteRecordRepository:
    """SQLite implementation of RecordRepository."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS agent_records (
                record_id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS modification_requests (
                request_id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                type TEXT NOT NULL,
                record_id TEXT NOT NULL,
                proposed_title TEXT,
                proposed_content TEXT,
                reason TEXT,
                created_at TEXT NOT NULL,
                status TEXT NOT NULL,
                reviewed_by TEXT,
                reviewed_at TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_tenant
            ON agent_records (tenant_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_requests_tenant_status
            ON modification_requests (tenant_id, status)
        """)
        conn.commit()
        conn.close()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> AgentRecord:
        return AgentRecord(
            record_id=row["record_id"],
            title=row["title"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _to_request(row: sqlite3.Row) -> ModificationRequest:
        return ModificationRequest(
            request_id=row["request_id"],
            type=ModificationType(row["type"]),
            record_id=row["record_id"],
            proposed_title=row["proposed_title"],
            proposed_content=row["proposed_content"],
            reason=row["reason"],
            created_at=datetime.fromisoformat(row["created_at"]),
            status=RequestStatus(row["status"]),
            reviewed_by=row["reviewed_by"],
            reviewed_at=datetime.fromisoformat(row["reviewed_at"]) if row["reviewed_at"] else None,
        )

    def create_record(self, tenant_id: str, title: str, content: str) -> AgentRecord:
        now = utcnow()
        record = AgentRecord(record_id=new_record_id(), title=title, content=content, created_at=now, updated_at=now)
        conn = self._connect()
        conn.execute(
            "INSERT INTO agent_records (record_id, tenant_id, title, content, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (record.record_id, tenant_id, title, content, now.isoformat(), now.isoformat()),
        )
        conn.commit()
        conn.close()
        logger.info(f"Created record {record.record_id} for tenant {tenant_id}")
        return record

    def get_record(self, tenant_id: str, record_id: str) -> Optional[AgentRecord]:
        conn = self._connect()
        row = conn.execute(
            "SELECT * FROM agent_records WHERE tenant_id = ? AND record_id = ?",
            (tenant_id, record_id),
        ).fetchone()
        conn.close()
        return self._to_record(row) if row else None

    def list_records(self, tenant_id: str) -> List[AgentRecord]:
        conn = self._connect()
        rows = conn.execute(
            "SELECT * FROM agent_records WHERE tenant_id = ? ORDER BY updated_at DESC",
            (tenant_id,),
        ).fetchall()
        conn.close()
        return [self._to_record(row) for row in rows]

    def update_record(
        self, tenant_id: str, record_id: str, title: Optional[str] = None, content: Optional[str] = None
    ) -> Optional[AgentRecord]:
        current = self.get_record(tenant_id, record_id)
        if current is None:
            return None
        now = utcnow()
        conn = self._connect()
        conn.execute(
            "UPDATE agent_records SET title = ?, content = ?, updated_at = ? "
            "WHERE tenant_id = ? AND record_id = ?",
            (
                title if title is not None else current.title,
                content if content is not None else current.content,
                now.isoformat(),
                tenant_id,
                record_id,
            ),
        )
        conn.commit()
        conn.close()
        return self.get_record(tenant_id, record_id)

    def delete_record(self, tenant_id: str, record_id: str) -> bool:
        conn = self._connect()
        cursor = conn.execute(
            "DELETE FROM agent_records WHERE tenant_id = ? AND record_id = ?",
            (tenant_id, record_id),
        )
        deleted = cursor.rowcount > 0
        conn.commit()
        conn.close()
        return deleted

    def add_request(self, tenant_id: str, request: ModificationRequest) -> None:
        conn = self._connect()
        conn.execute(
            """INSERT INTO modification_requests
               (request_id, tenant_id, type, record_id, proposed_title, proposed_content,
                reason, created_at, status, reviewed_by, reviewed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                request.request_id,
                tenant_id,
                request.type.value,
                request.record_id,
                request.proposed_title,
                request.proposed_content,
                request.reason,
                request.created_at.isoformat(),
                request.status.value,
                request.reviewed_by,
                request.reviewed_at.isoformat() if request.reviewed_at else None,
            ),
        )
        conn.commit()
        conn.close()
        logger.info(f"Staged {request.type.value} request {request.request_id} for record {request.record_id}")

    def get_request(self, tenant_id: str, request_id: str) -> Optional[ModificationRequest]:
        conn = self._connect()
        row = conn.execute(
            "SELECT * FROM modification_requests WHERE tenant_id = ? AND request_id = ?",
            (tenant_id, request_id),
        ).fetchone()
        conn.close()
        return self._to_request(row) if row else None

    def list_requests(
        self, tenant_id: str, status: Optional[RequestStatus] = None
    ) -> List[ModificationRequest]:
        conn = self._connect()
        if status is None:
            rows = conn.execute(
                "SELECT * FROM modification_requests WHERE tenant_id = ? ORDER BY created_at",
                (tenant_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM modification_requests WHERE tenant_id = ? AND status = ? ORDER BY created_at",
                (tenant_id, status.value),
            ).fetchall()
        conn.close()
        return [self._to_request(row) for row in rows]

    def set_request_status(
        self, tenant_id: str, request_id: str, status: RequestStatus, reviewed_by: Optional[str] = None
    ) -> Optional[ModificationRequest]:
        conn = self._connect()
        conn.execute(
            "UPDATE modification_requests SET status = ?, reviewed_by = ?, reviewed_at = ? "
            "WHERE tenant_id = ? AND request_id = ?",
            (status.value, reviewed_by, utcnow().isoformat(), tenant_id, request_id),
        )
        conn.commit()
        conn.close()
        return self.get_request(tenant_id, request_id)
