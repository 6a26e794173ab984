"""
Tests for long-term memory: records, staged modifications, knowledge and notes.
"""
import pytest
from datetime import datetime, timedelta, timezone

from agent_server.memory import (
    PlanStore,
    RecordNotFoundError,
    RequestAlreadyProcessedError,
    RequestNotFoundError,
)
from agent_server.memory.knowledge import chunk_text, keywords
from agent_server.memory.notes import word_overlap
from agent_server.models import NoteCategory, RequestStatus, utcnow

from conftest import ScriptedChatModel


def test_create_record_is_searchable(memory):
    record = memory.create_record("Opening hours", "The clinic is open 9am to 5pm on weekdays")

    assert record.record_id.startswith("rec_")
    chunks = memory.knowledge.retrieve("clinic-1", "when is the clinic open on weekdays?")
    assert chunks
    assert "9am to 5pm" in chunks[0]


def test_create_record_rejects_empty(memory):
    with pytest.raises(ValueError):
        memory.create_record("  ", "content")


def test_edit_then_reject_leaves_record_unchanged(memory):
    record = memory.create_record("Parking", "Free parking behind the clinic")
    request = memory.request_edit(record.record_id, content="Paid parking only")

    assert [r.request_id for r in memory.list_pending()] == [request.request_id]

    rejected = memory.reject(request.request_id, reviewed_by="admin")

    assert rejected.status == RequestStatus.REJECTED
    assert rejected.reviewed_by == "admin"
    assert rejected.reviewed_at is not None
    assert memory.get_record(record.record_id).content == "Free parking behind the clinic"
    assert memory.list_pending() == []


def test_edit_then_approve_applies_and_reindexes(memory):
    record = memory.create_record("Parking", "Free parking behind the clinic")
    request = memory.request_edit(record.record_id, content="Paid garage parking on Elm Street")

    approved = memory.approve(request.request_id)

    assert approved.status == RequestStatus.APPROVED
    assert memory.get_record(record.record_id).content == "Paid garage parking on Elm Street"
    assert memory.get_record(record.record_id).title == "Parking"
    chunks = memory.knowledge.retrieve("clinic-1", "garage Elm")
    assert any("Elm Street" in c for c in chunks)
    assert not memory.knowledge.retrieve("clinic-1", "free behind")


def test_delete_then_approve_removes_record_and_chunks(memory):
    record = memory.create_record("Holiday", "Closed on December 25")
    request = memory.request_delete(record.record_id, reason="Outdated")

    memory.approve(request.request_id)

    with pytest.raises(RecordNotFoundError):
        memory.get_record(record.record_id)
    assert memory.knowledge.retrieve("clinic-1", "December closed") == []


def test_request_on_missing_record(memory):
    with pytest.raises(RecordNotFoundError):
        memory.request_edit("rec_missing", content="x")
    with pytest.raises(RecordNotFoundError):
        memory.request_delete("rec_missing")


def test_processed_request_cannot_be_reviewed_again(memory):
    record = memory.create_record("Parking", "Free parking")
    request = memory.request_delete(record.record_id)
    memory.reject(request.request_id)

    with pytest.raises(RequestAlreadyProcessedError):
        memory.approve(request.request_id)
    with pytest.raises(RequestNotFoundError):
        memory.reject("req_missing")


def test_approve_when_record_vanished(memory):
    record = memory.create_record("Parking", "Free parking")
    first = memory.request_delete(record.record_id)
    second = memory.request_edit(record.record_id, title="Car park")
    memory.approve(first.request_id)

    with pytest.raises(RecordNotFoundError):
        memory.approve(second.request_id)
    assert memory.records.get_request("clinic-1", second.request_id).status == RequestStatus.REJECTED


def test_records_are_tenant_scoped(memory):
    from agent_server.memory import MemoryStore

    record = memory.create_record("Parking", "Free parking")
    other = MemoryStore("clinic-2", memory.records, memory.knowledge)

    assert other.list_records() == []
    with pytest.raises(RecordNotFoundError):
        other.get_record(record.record_id)


@pytest.mark.asyncio
async def test_consolidate_fallback_stages_deletes_only(memory):
    older = memory.create_record("Parking", "Free parking behind the clinic")
    newer = memory.create_record("parking", "Parking is free, behind the building")
    unrelated = memory.create_record("Hours", "Open 9 to 5")

    staged = await memory.consolidate()

    assert len(staged) == 1
    assert staged[0].record_id == older.record_id
    assert staged[0].reason == f"Duplicate of {newer.record_id}"
    # nothing applied until approved
    assert len(memory.list_records()) == 3
    assert memory.get_record(unrelated.record_id)


@pytest.mark.asyncio
async def test_consolidate_with_model_filters_unknown_ids(memory):
    first = memory.create_record("Parking", "Free parking")
    memory.create_record("Parking lot", "Free parking lot")
    memory.model = ScriptedChatModel([
        '{"proposals": ['
        f'{{"type": "edit", "record_id": "{first.record_id}", "content": "Free parking lot behind the clinic"}},'
        f'{{"type": "delete", "record_id": "{first.record_id}"}},'
        '{"type": "delete", "record_id": "rec_ghost"}'
        "]}"
    ])

    staged = await memory.consolidate()

    assert [(r.type.value, r.record_id) for r in staged] == [("edit", first.record_id)]
    assert memory.get_record(first.record_id).content == "Free parking"


@pytest.mark.asyncio
async def test_consolidate_skips_records_with_pending_requests(memory):
    older = memory.create_record("Parking", "Free parking")
    memory.create_record("Parking", "Free parking")
    memory.request_edit(older.record_id, content="Free parking nearby")

    staged = await memory.consolidate()

    assert staged == []


def test_keywords_and_chunks():
    assert keywords("What are the opening hours of the clinic?") == ["opening", "hours", "clinic"]
    chunks = chunk_text("word " * 300)
    assert len(chunks) > 1
    assert all(len(c) <= 500 for c in chunks)


def test_note_dedupe(notes):
    first = notes.create("clinic-1", "conv-1", "Patient asked about parking near the clinic")
    again = notes.create("clinic-1", "conv-1", "Patient asked about parking near the clinic today")
    other = notes.create("clinic-1", "conv-2", "Patient asked about parking near the clinic")

    assert again.note_id == first.note_id
    assert other.note_id != first.note_id
    assert word_overlap("a b c", "a b c") == 1.0


def test_note_listing(notes):
    notes.create("clinic-1", "conv-1", "Asked about prices", category=NoteCategory.COMMON_QUESTIONS)
    notes.create("clinic-1", "conv-1", "Booking: Lee", category=NoteCategory.BOOKINGS, dedupe=False)

    assert len(notes.list_for_conversation("clinic-1", "conv-1")) == 2
    bookings = notes.list_notes("clinic-1", NoteCategory.BOOKINGS)
    assert [n.content for n in bookings] == ["Booking: Lee"]
    assert notes.delete("clinic-1", bookings[0].note_id) is True

    with pytest.raises(ValueError):
        notes.create("clinic-1", "conv-1", "   ")


def test_plan_store_only_returns_active_plans(temp_db_path):
    class Plan:
        plan_id = "plan-1"

        def __init__(self, status):
            self.status = status

        def model_dump_json(self):
            return f'{{"plan_id": "plan-1", "status": "{self.status}"}}'

    store = PlanStore(temp_db_path)
    store.save("clinic-1", "conv-1", Plan("needs_info"))
    assert store.get_active("clinic-1", "conv-1")["status"] == "needs_info"

    store.save("clinic-1", "conv-1", Plan("completed"))
    assert store.get_active("clinic-1", "conv-1") is None

    store.save("clinic-1", "conv-1", Plan("ready"))
    store.clear("clinic-1", "conv-1")
    assert store.get_active("clinic-1", "conv-1") is None


def test_record_timestamps_are_naive_utc(memory):
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    record = memory.create_record("Parking", "Free parking behind the clinic")

    assert record.created_at.tzinfo is None
    assert before - timedelta(seconds=1) <= record.created_at <= before + timedelta(minutes=1)
    assert utcnow().tzinfo is None
