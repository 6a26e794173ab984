"""
Tests for ToolExecutor: bookings, lookups, availability, sheets and memory tools.
"""
import pytest
from datetime import date

from agent_server.models import NoteCategory
from agent_server.orchestrator import normalize_date, normalize_phone, normalize_time

from conftest import TODAY


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2025-01-10", "2025-01-10"),
        ("2025-01-10T09:30:00", "2025-01-10"),
        ("today", "2025-01-06"),
        ("tomorrow", "2025-01-07"),
        ("friday", "2025-01-10"),
        ("next monday", "2025-01-13"),
        ("45667", "2025-01-10"),
        ("25/12/2025", "2025-12-25"),
        ("01/02/2025", "2025-01-02"),
        ("January 10th, 2025", "2025-01-10"),
        ("10 Jan 2025", "2025-01-10"),
        ("Jan 10", "2025-01-10"),
        ("March 3rd", "2025-03-03"),
        ("5 January", "2026-01-05"),
        ("January 6", "2025-01-06"),
        ("someday", None),
        ("2025-02-30", None),
        ("", None),
    ],
)
def test_normalize_date(value, expected):
    assert normalize_date(value, TODAY) == expected


def test_normalize_time_and_phone():
    assert normalize_time("10am") == "10:00"
    assert normalize_time("2:30 PM") == "14:30"
    assert normalize_time("12am") == "00:00"
    assert normalize_time("10:00:00") == "10:00"
    assert normalize_time("noonish") is None
    assert normalize_phone("+1 (555) 0100") == "15550100"


@pytest.mark.asyncio
async def test_book_appointment_creates_row_with_header(executor, sheets):
    result = await executor.book_appointment("2025-01-10", "Lee", "+15550100", "Smith", "10:00")

    assert result.success is True
    assert result.verified is False
    assert result.data["appointment_id"] == "APT-15550100-2025-01-10"
    assert result.data["updated"] is False

    rows = sheets.tables[("sheet-1", "Bookings")]
    assert rows[0] == ["Date", "Patient Name", "Phone", "Doctor", "Time", "Notes"]
    assert rows[1] == ["2025-01-10", "Lee", "+15550100", "Smith", "10:00", ""]


@pytest.mark.asyncio
async def test_rebooking_same_phone_same_day_updates_row(executor, sheets):
    await executor.book_appointment("2025-01-10", "Lee", "+15550100", "Smith", "10:00")
    result = await executor.book_appointment("January 10, 2025", "Lee", "+1 555 0100", "Smith", "11am")

    assert result.success is True
    assert result.data["updated"] is True
    assert sheets.updated == [(2, ["2025-01-10", "Lee", "+1 555 0100", "Smith", "11:00", ""])]
    assert len(sheets.tables[("sheet-1", "Bookings")]) == 2


@pytest.mark.asyncio
async def test_slot_taken_by_another_phone_is_a_conflict(executor, sheets):
    await executor.book_appointment("2025-01-10", "Lee", "+15550100", "Smith", "10:00")
    result = await executor.book_appointment("2025-01-10", "Kim", "+15550200", "Smith", "10am")

    assert result.success is False
    assert "already booked" in result.error
    assert len(sheets.tables[("sheet-1", "Bookings")]) == 2


@pytest.mark.asyncio
async def test_book_appointment_rejects_bad_input(executor):
    bad_phone = await executor.book_appointment("2025-01-10", "Lee", "12", "Smith", "10:00")
    bad_date = await executor.book_appointment("someday", "Lee", "+15550100", "Smith", "10:00")

    assert bad_phone.success is False
    assert "phone" in bad_phone.error
    assert bad_date.success is False
    assert "date" in bad_date.error


@pytest.mark.asyncio
async def test_booking_without_bookings_sheet(memory, notes, sheets):
    from agent_server.orchestrator import ToolExecutor
    from conftest import PRICES

    executor = ToolExecutor("clinic-1", store=sheets, memory=memory, notes=notes, sheets=[PRICES], retry_delay=0)
    result = await executor.book_appointment("2025-01-10", "Lee", "+15550100", "Smith", "10:00")

    assert result.success is False
    assert result.error == "Bookings sheet not configured"


@pytest.mark.asyncio
async def test_booking_writes_a_note(executor, notes):
    await executor.book_appointment(
        "2025-01-10", "Lee", "+15550100", "Smith", "10:00", conversation_id="conv-1"
    )

    saved = notes.list_for_conversation("clinic-1", "conv-1")
    assert len(saved) == 1
    assert saved[0].category == NoteCategory.BOOKINGS
    assert saved[0].content == "Booking: Lee (15550100) with Dr. Smith on 2025-01-10 at 10:00"


@pytest.mark.asyncio
async def test_get_appointment_from_sheet(executor):
    await executor.book_appointment("2025-01-10", "Lee", "+15550100", "Smith", "10:00")

    result = await executor.get_appointment_by_phone("15550100")

    assert result.success is True
    assert result.data["found"] is True
    assert result.data["source"] == "sheet"
    assert result.data["appointment_id"] == "APT-15550100-2025-01-10"


@pytest.mark.asyncio
async def test_get_appointment_falls_back_to_notes(executor, notes):
    notes.create(
        "clinic-1",
        "conv-9",
        "Booking: Lee (15550100) with Dr. Smith on 2025-01-10 at 10:00",
        category=NoteCategory.BOOKINGS,
        patient_name="Lee",
    )

    result = await executor.get_appointment_by_phone("+15550100")

    assert result.data["found"] is True
    assert result.data["source"] == "notes"
    assert result.data["appointment_id"].startswith("NOTE-")
    assert result.data["date"] == "2025-01-10"
    assert result.data["doctor"] == "Smith"

    strict = await executor.get_appointment_by_phone("+15550100", include_notes=False)
    assert strict.data == {"found": False}


@pytest.mark.asyncio
async def test_notes_fallback_matches_whole_phone_and_date(executor, notes):
    notes.create(
        "clinic-1",
        "conv-9",
        "Booking: Lee (15550100) with Dr. Smith on 2025-01-10 at 10:00",
        category=NoteCategory.BOOKINGS,
        patient_name="Lee",
    )

    other_day = await executor.get_appointment_by_phone("+15550100", "2025-03-01")
    partial = await executor.get_appointment_by_phone("5550")
    longer = await executor.get_appointment_by_phone("155501009")
    same_day = await executor.get_appointment_by_phone("+15550100", "January 10, 2025")

    assert other_day.data == {"found": False}
    assert partial.success is False
    assert "phone" in partial.error
    assert longer.data == {"found": False}
    assert same_day.data["source"] == "notes"
    assert same_day.data["date"] == "2025-01-10"


@pytest.mark.asyncio
async def test_book_appointment_without_year(executor):
    result = await executor.book_appointment("Jan 10", "Lee", "+15550100", "Smith", "10am")

    assert result.success is True
    assert result.data["date"] == "2025-01-10"


@pytest.mark.asyncio
async def test_check_availability(executor):
    await executor.book_appointment("2025-01-10", "Lee", "+15550100", "Smith", "10:00")
    await executor.book_appointment("2025-01-10", "Kim", "+15550200", "Jones", "09:00")
    await executor.book_appointment("2025-01-11", "Ana", "+15550300", "Smith", "09:00")

    result = await executor.check_availability("friday")

    assert result.data["date"] == "2025-01-10"
    assert result.data["count"] == 2
    assert result.data["booked_slots"] == [
        {"time": "09:00", "doctor": "Jones"},
        {"time": "10:00", "doctor": "Smith"},
    ]


@pytest.mark.asyncio
async def test_query_sheet_returns_markdown_table(executor):
    result = await executor.query_sheet("prices")

    assert result.success is True
    assert result.data["use_when"] == "prices and services"
    assert "| Service | Price |" in result.data["table"]
    assert "| Consultation | 50 |" in result.data["table"]


@pytest.mark.asyncio
async def test_query_sheet_without_sheets(memory, notes, sheets):
    from agent_server.orchestrator import ToolExecutor

    executor = ToolExecutor("clinic-1", store=sheets, memory=memory, notes=notes, sheets=[], retry_delay=0)
    result = await executor.query_sheet("prices")

    assert result.success is False
    assert result.error == "No sheets configured"


def test_memory_tools(executor, memory):
    created = executor.record_knowledge("Parking", "Free parking behind the clinic")
    record_id = created.data["record_id"]

    edit = executor.request_edit_record(record_id, content="Paid parking behind the clinic")
    missing = executor.request_delete_record("rec_missing")

    assert created.success is True
    assert edit.success is True
    assert edit.data["status"] == "pending"
    assert memory.get_record(record_id).content == "Free parking behind the clinic"
    assert missing.success is False


def test_create_note_requires_conversation(executor):
    assert executor.create_note("Asked about parking").success is False

    result = executor.create_note("Asked about parking", conversation_id="conv-1")
    assert result.success is True
    assert result.data["category"] == "other"


def test_today_is_injected(executor):
    assert executor.today() == date(2025, 1, 6)
