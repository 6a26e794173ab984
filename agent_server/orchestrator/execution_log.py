"""
Execution log of the tool calls made during one turn.
"""
from typing import Dict, List, Protocol

from ..models import ExecutionLogEntry


class ExecutionLogRepository(Protocol):
    """Append-only audit trail of executed tool calls, cleared at turn start.

    An instance belongs to a single turn; sharing one across concurrent
    turns would let one conversation's calls back another's reply.
    """

    def append(self, tenant_id: str, entry: ExecutionLogEntry) -> None: ...

    def entries(self, tenant_id: str) -> List[ExecutionLogEntry]: ...

    def clear(self, tenant_id: str) -> None: ...


class InMemoryExecutionLog:
    """Process-local ExecutionLogRepository, keyed by tenant."""

    def __init__(self):
        self._entries: Dict[str, List[ExecutionLogEntry]] = {}

    def append(self, tenant_id: str, entry: ExecutionLogEntry) -> None:
        self._entries.setdefault(tenant_id, []).append(entry)

    def entries(self, tenant_id: str) -> List[ExecutionLogEntry]:
        return list(self._entries.get(tenant_id, []))

    def clear(self, tenant_id: str) -> None:
        self._entries.pop(tenant_id, None)
