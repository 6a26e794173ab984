"""
Pytest configuration and shared fixtures for Agent Server tests.
"""
import pytest
import pytest_asyncio
import tempfile
import os
from datetime import date
from typing import AsyncGenerator, Dict, List, Optional, Tuple
from httpx import AsyncClient, ASGITransport
from langchain_core.messages import AIMessage

from agent_server.integration.sheets import TabularStore, normalize_range
from agent_server.llm import ChatModel
from agent_server.memory import (
    KeywordKnowledgeIndex,
    MemoryStore,
    NoteRepository,
    PlanStore,
    SqliteRecordRepository,
)
from agent_server.models import SheetEntry
from agent_server.orchestrator import AgentOrchestrator, ToolExecutor

TODAY = date(2025, 1, 6)  # a Monday


class FakeSheets(TabularStore):
    """In-memory tabular store keyed by (spreadsheet_id, sheet name)."""

    def __init__(self, tables: Optional[Dict[Tuple[str, str], List[List[str]]]] = None):
        self.tables = tables or {}
        self.appended: List[List[str]] = []
        self.updated: List[Tuple[int, List[str]]] = []
        self.healthy = True
        self.drop_writes = False

    def _table(self, spreadsheet_id: str, range_: Optional[str]) -> List[List[str]]:
        name = normalize_range(range_).split("!")[0]
        return self.tables.setdefault((spreadsheet_id, name), [])

    async def get_rows(self, spreadsheet_id, range_=None):
        return [list(r) for r in self._table(spreadsheet_id, range_)]

    async def append_row(self, spreadsheet_id, range_, cells):
        self.appended.append(list(cells))
        if not self.drop_writes:
            self._table(spreadsheet_id, range_).append(list(cells))

    async def update_row(self, spreadsheet_id, range_, row_number, cells):
        self.updated.append((row_number, list(cells)))
        if not self.drop_writes:
            self._table(spreadsheet_id, range_)[row_number - 1] = list(cells)

    async def health_check(self):
        return self.healthy


class ScriptedChatModel(ChatModel):
    """Returns queued AIMessages in order; records every call."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    async def invoke(self, messages, tools=None):
        self.calls.append({"messages": list(messages), "tools": tools})
        if not self.replies:
            return AIMessage(content="")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return AIMessage(content=reply)
        return reply


def tool_call_message(name: str, args: dict, call_id: str = "call-1") -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


BOOKINGS = SheetEntry(spreadsheet_id="sheet-1", range="Bookings", use_when="bookings")
PRICES = SheetEntry(spreadsheet_id="sheet-2", range="Prices", use_when="prices and services")


@pytest.fixture
def temp_db_path():
    """Provide a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    if os.path.exists(db_path):
        os.remove(db_path)


@pytest.fixture
def sheets():
    return FakeSheets({
        ("sheet-2", "Prices"): [["Service", "Price"], ["Consultation", "50"]],
    })


@pytest.fixture
def notes(temp_db_path):
    return NoteRepository(temp_db_path)


@pytest.fixture
def memory(temp_db_path):
    return MemoryStore(
        "clinic-1",
        SqliteRecordRepository(temp_db_path),
        KeywordKnowledgeIndex(temp_db_path),
    )


@pytest.fixture
def plan_store(temp_db_path):
    return PlanStore(temp_db_path)


@pytest.fixture
def executor(sheets, memory, notes):
    return ToolExecutor(
        "clinic-1",
        store=sheets,
        memory=memory,
        notes=notes,
        sheets=[BOOKINGS, PRICES],
        retry_delay=0,
        today=lambda: TODAY,
    )


@pytest.fixture
def orchestrator(executor, notes):
    return AgentOrchestrator("clinic-1", executor, notes)


@pytest_asyncio.fixture
async def test_app():
    """Provide a test FastAPI app instance."""
    # Import here to avoid circular imports
    from agent_server.main import app
    return app


@pytest_asyncio.fixture
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing FastAPI endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test"
    ) as client:
        yield client
