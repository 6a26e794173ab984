"""
SQLite-based store for the active execution plan of each conversation.

Plans are stored as JSON; callers validate them back into ExecutionPlan.
"""
import json
import sqlite3
from typing import Any, Dict, Optional
import logging

from ..models import utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("ready", "executing", "awaiting_confirmation", "needs_info")


class PlanStore:
    """One plan per conversation; saving replaces the previous one."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS plans (
                tenant_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                plan_id TEXT NOT NULL,
                status TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (tenant_id, conversation_id)
            )
        """)
        conn.commit()
        conn.close()

    def save(self, tenant_id: str, conversation_id: str, plan) -> None:
        """Persist a plan (any pydantic model with plan_id and status)."""
        status = getattr(plan.status, "value", plan.status)
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """INSERT OR REPLACE INTO plans
               (tenant_id, conversation_id, plan_id, status, payload, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                tenant_id,
                conversation_id,
                plan.plan_id,
                status,
                plan.model_dump_json(),
                utcnow().isoformat(),
            ),
        )
        conn.commit()
        conn.close()
        logger.debug(f"Saved plan {plan.plan_id} ({status}) for {conversation_id}")

    def get_active(self, tenant_id: str, conversation_id: str) -> Optional[Dict[str, Any]]:
        """Return the conversation's plan if it is still in progress."""
        conn = sqlite3.connect(self.db_path)
        row = conn.execute(
            "SELECT status, payload FROM plans WHERE tenant_id = ? AND conversation_id = ?",
            (tenant_id, conversation_id),
        ).fetchone()
        conn.close()
        if not row or row[0] not in ACTIVE_STATUSES:
            return None
        return json.loads(row[1])

    def clear(self, tenant_id: str, conversation_id: str) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "DELETE FROM plans WHERE tenant_id = ? AND conversation_id = ?",
            (tenant_id, conversation_id),
        )
        conn.commit()
        conn.close()
