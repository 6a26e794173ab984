"""
Tests for the HTTP API.

ASGITransport does not run the app lifespan, so each test wires the module
globals in agent_server.main with temp-file stores and scripted fakes.
"""
import pytest
from unittest.mock import patch

from agent_server import main as main_module
from agent_server.memory import (
    ConversationStore,
    KeywordKnowledgeIndex,
    NoteRepository,
    PlanStore,
    SqliteRecordRepository,
)

from conftest import FakeSheets, ScriptedChatModel


@pytest.fixture
def wired(temp_db_path):
    """Patch every component global; yields the scripted chat model."""
    model = ScriptedChatModel()
    with patch.multiple(
        "agent_server.main",
        chat_model=model,
        sheets_store=FakeSheets(),
        conversation_store=ConversationStore(db_path=temp_db_path),
        record_repository=SqliteRecordRepository(temp_db_path),
        note_repository=NoteRepository(temp_db_path),
        knowledge_index=KeywordKnowledgeIndex(temp_db_path),
        plan_store=PlanStore(temp_db_path),
    ):
        yield model


@pytest.mark.asyncio
async def test_root(test_client):
    response = await test_client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"


@pytest.mark.asyncio
async def test_health_degraded_without_components(test_client):
    with patch("agent_server.main.chat_model", None), patch("agent_server.main.conversation_store", None):
        response = await test_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["model"] == "unavailable"


@pytest.mark.asyncio
async def test_chat_creates_session_and_stores_messages(test_client, wired):
    wired.replies.extend(['{"intent": "general_conversation", "confidence": 0.9}', "Hello! How can I help?"])

    response = await test_client.post("/tenants/clinic-1/chat", json={"message": "Hi there"})

    assert response.status_code == 200
    data = response.json()
    assert data["text"] == "Hello! How can I help?"
    assert data["request_handoff"] is False
    assert len(data["session_id"]) == 36

    history = main_module.conversation_store.get_history(data["session_id"])
    assert [(m.role, m.content) for m in history] == [
        ("user", "Hi there"),
        ("assistant", "Hello! How can I help?"),
    ]


@pytest.mark.asyncio
async def test_chat_reuses_session(test_client, wired):
    wired.replies.extend([
        '{"intent": "general_conversation"}', "Hello!",
        '{"intent": "general_conversation"}', "Still here.",
    ])

    first = await test_client.post("/tenants/clinic-1/chat", json={"message": "Hi"})
    session_id = first.json()["session_id"]
    second = await test_client.post("/tenants/clinic-1/chat", json={"message": "Hello?", "session_id": session_id})

    assert second.json()["session_id"] == session_id
    assert main_module.conversation_store.get_session(session_id).message_count == 4


@pytest.mark.asyncio
async def test_chat_handoff(test_client, wired):
    response = await test_client.post("/tenants/clinic-1/chat", json={"message": "Let me talk to a real person"})

    assert response.json()["request_handoff"] is True
    assert wired.calls == []


def test_each_turn_gets_its_own_execution_log(wired):
    first = main_module.build_driver("clinic-1")
    second = main_module.build_driver("clinic-1")

    assert first.orchestrator.log is not second.orchestrator.log


@pytest.mark.asyncio
async def test_chat_rejects_other_tenants_session(test_client, wired):
    session_id = main_module.conversation_store.create_session("clinic-2")

    response = await test_client.post(
        "/tenants/clinic-1/chat", json={"message": "Hi", "session_id": session_id}
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_chat_unavailable_without_store(test_client):
    with patch("agent_server.main.conversation_store", None):
        response = await test_client.post("/tenants/clinic-1/chat", json={"message": "Hi"})

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_chat_unavailable_without_model(test_client, wired):
    with patch("agent_server.main.chat_model", None):
        response = await test_client.post("/tenants/clinic-1/chat", json={"message": "Hi"})

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_record_review_flow(test_client, wired):
    created = await test_client.post(
        "/tenants/clinic-1/records", json={"title": "Parking", "content": "Free parking behind the clinic"}
    )
    assert created.status_code == 201
    record_id = created.json()["record_id"]

    memory = main_module.build_memory("clinic-1")
    request = memory.request_edit(record_id, content="Paid parking only")

    pending = await test_client.get("/tenants/clinic-1/modification-requests")
    assert pending.json()["count"] == 1

    rejected = await test_client.post(f"/tenants/clinic-1/modification-requests/{request.request_id}/reject")
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"

    again = await test_client.post(f"/tenants/clinic-1/modification-requests/{request.request_id}/approve")
    assert again.status_code == 409

    record = await test_client.get(f"/tenants/clinic-1/records/{record_id}")
    assert record.json()["content"] == "Free parking behind the clinic"


@pytest.mark.asyncio
async def test_approve_applies_change(test_client, wired):
    created = await test_client.post("/tenants/clinic-1/records", json={"title": "Hours", "content": "9 to 5"})
    record_id = created.json()["record_id"]
    request = main_module.build_memory("clinic-1").request_delete(record_id)

    response = await test_client.post(
        f"/tenants/clinic-1/modification-requests/{request.request_id}/approve",
        json={"reviewed_by": "admin"},
    )

    assert response.status_code == 200
    assert response.json()["reviewed_by"] == "admin"
    assert (await test_client.get(f"/tenants/clinic-1/records/{record_id}")).status_code == 404
    assert (await test_client.get("/tenants/clinic-1/records")).json()["count"] == 0


@pytest.mark.asyncio
async def test_unknown_ids_are_404(test_client, wired):
    assert (await test_client.get("/tenants/clinic-1/records/rec_missing")).status_code == 404
    assert (await test_client.post("/tenants/clinic-1/modification-requests/req_missing/approve")).status_code == 404
    assert (await test_client.post("/tenants/clinic-1/modification-requests/req_missing/reject")).status_code == 404


@pytest.mark.asyncio
async def test_empty_record_is_400(test_client, wired):
    response = await test_client.post("/tenants/clinic-1/records", json={"title": " ", "content": "x"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_consolidate_stages_requests(test_client, wired):
    for content in ("Free parking", "Free parking"):
        await test_client.post("/tenants/clinic-1/records", json={"title": "Parking", "content": content})
    wired.replies.append("not json")

    response = await test_client.post("/tenants/clinic-1/records/consolidate")

    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert response.json()["requests"][0]["type"] == "delete"
    assert (await test_client.get("/tenants/clinic-1/records")).json()["count"] == 2


@pytest.mark.asyncio
async def test_get_and_delete_session(test_client, wired):
    session_id = main_module.conversation_store.create_session("clinic-1", "caller-7")
    main_module.conversation_store.save_message(session_id, "user", "Hi")

    response = await test_client.get(f"/sessions/{session_id}")
    assert response.status_code == 200
    assert response.json()["session"]["tenant_id"] == "clinic-1"
    assert response.json()["messages"][0]["content"] == "Hi"

    deleted = await test_client.delete(f"/sessions/{session_id}")
    assert deleted.status_code == 200
    assert (await test_client.get(f"/sessions/{session_id}")).status_code == 404
    assert (await test_client.delete(f"/sessions/{session_id}")).status_code == 404
