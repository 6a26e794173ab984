"""
Tool Executor.

Performs the side effects behind each supported tool against the bookings
sheet, reference sheets, long-term memory and conversation notes. Results
are returned as ToolResult; booking writes are never marked verified here.
The orchestrator decides whether a write can be reported as done.
"""
import asyncio
import logging
import re
import sqlite3
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple

from ..config import settings
from ..integration.sheets import SheetsError, TabularStore, find_sheet, select_bookings_sheet
from ..memory.brain import MemoryStore
from ..memory.notes import NoteRepository
from ..memory.records import RecordNotFoundError
from ..models import ActionKind, BookingRow, Note, NoteCategory, SheetEntry, ToolResult

logger = logging.getLogger(__name__)

BOOKINGS_HEADER = ["Date", "Patient Name", "Phone", "Doctor", "Time", "Notes"]

_SHEETS_EPOCH = date(1899, 12, 30)
_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
_MONTH_FORMATS = ("%B %d %Y", "%d %B %Y", "%b %d %Y", "%d %b %Y", "%B %d, %Y", "%b %d, %Y")
_MONTH_DAY_FORMATS = ("%B %d", "%d %B", "%b %d", "%d %b")
MIN_PHONE_DIGITS = 6


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only."""
    return re.sub(r"\D", "", phone or "")


def normalize_date(value, today: Optional[date] = None) -> Optional[str]:
    """
    Normalize a date to YYYY-MM-DD.

    Accepts ISO dates (with or without a time part), today/tomorrow, weekday
    names (next occurrence), spreadsheet serial numbers, DD/MM/YYYY and
    MM/DD/YYYY (ambiguous values read as MM/DD) and month names.
    Returns None if the value is not a recognizable date.
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    today = today or date.today()
    lower = s.lower()

    if "today" in lower:
        return today.isoformat()
    if "tomorrow" in lower:
        return (today + timedelta(days=1)).isoformat()
    for index, name in enumerate(_WEEKDAYS):
        if re.fullmatch(rf"(next\s+|this\s+|on\s+)?{name}", lower):
            ahead = (index - today.weekday()) % 7 or 7
            return (today + timedelta(days=ahead)).isoformat()

    try:
        if re.fullmatch(r"\d+(\.\d+)?", s) and float(s) > 10000:
            return (_SHEETS_EPOCH + timedelta(days=int(float(s)))).isoformat()

        match = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})", s)
        if match:
            return date(*map(int, match.groups())).isoformat()

        match = re.fullmatch(r"(\d{1,2})[/.](\d{1,2})[/.](\d{4})", s)
        if match:
            first, second, year = map(int, match.groups())
            if first > 12:
                return date(year, second, first).isoformat()
            return date(year, first, second).isoformat()
    except (ValueError, OverflowError):
        return None

    cleaned = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", s, flags=re.IGNORECASE).replace(",", " ")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    for fmt in _MONTH_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    # No year: the next occurrence on or after today
    for fmt in _MONTH_DAY_FORMATS:
        try:
            parsed = datetime.strptime(f"{cleaned} {today.year}", f"{fmt} %Y").date()
        except ValueError:
            continue
        if parsed < today:
            try:
                parsed = parsed.replace(year=today.year + 1)
            except ValueError:
                return None
        return parsed.isoformat()
    return None


def normalize_time(value: Optional[str]) -> Optional[str]:
    """Normalize "10am", "10:00 AM", "10:00" or "10:00:00" to HH:MM."""
    if not value:
        return None
    s = str(value).strip().lower().replace(".", "")
    match = re.fullmatch(r"(\d{1,2})(?::(\d{2}))?(?::\d{2})?\s*(am|pm)?", s)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = match.group(3)
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def appointment_id(phone_digits: str, iso_date: str) -> str:
    return f"APT-{phone_digits}-{iso_date}"


class ToolExecutor:
    """Executes validated tool commands for one tenant."""

    def __init__(
        self,
        tenant_id: str,
        store: Optional[TabularStore],
        memory: MemoryStore,
        notes: NoteRepository,
        sheets: Optional[List[SheetEntry]] = None,
        retry_delay: Optional[float] = None,
        today: Callable[[], date] = date.today,
    ):
        self.tenant_id = tenant_id
        self.store = store
        self.memory = memory
        self.notes = notes
        self.sheets = sheets or []
        self.bookings_sheet = select_bookings_sheet(self.sheets)
        self.retry_delay = settings.read_retry_delay_seconds if retry_delay is None else retry_delay
        self.today = today

    def _bookings_ready(self) -> bool:
        return self.store is not None and self.bookings_sheet is not None

    async def _booking_rows(self) -> List[List[str]]:
        sheet = self.bookings_sheet
        return await self.store.get_rows(sheet.spreadsheet_id, sheet.range)

    async def book_appointment(
        self,
        date: str,
        patient_name: str,
        phone: str,
        doctor: str,
        time: str,
        notes: Optional[str] = None,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ToolResult:
        """
        Create or update the booking keyed by phone + calendar day.

        A different phone already holding the same date and time is a
        conflict. The result is unverified.
        """
        if not self._bookings_ready():
            return ToolResult.failure("Bookings sheet not configured", ActionKind.WRITE)

        phone_digits = normalize_phone(phone)
        if len(phone_digits) < MIN_PHONE_DIGITS:
            return ToolResult.failure(f"Invalid phone number: {phone!r}", ActionKind.WRITE)
        iso_date = normalize_date(date, self.today())
        if not iso_date:
            return ToolResult.failure(f"Unrecognized date: {date!r}", ActionKind.WRITE)
        slot = normalize_time(time) or time.strip()

        sheet = self.bookings_sheet
        try:
            rows = await self._booking_rows()
            existing_row: Optional[int] = None
            for index, cells in enumerate(rows[1:]):
                row = BookingRow.from_cells(cells)
                if normalize_date(row.date, self.today()) != iso_date:
                    continue
                same_phone = normalize_phone(row.phone) == phone_digits
                if same_phone:
                    existing_row = index + 2
                elif (normalize_time(row.time) or row.time) == slot:
                    logger.info(f"Slot {iso_date} {slot} already taken by another caller")
                    return ToolResult.failure(
                        f"The {slot} slot on {iso_date} is already booked. Please choose another time.",
                        ActionKind.WRITE,
                    )

            booking = BookingRow(
                date=iso_date,
                patient_name=patient_name.strip(),
                phone=phone.strip(),
                doctor=doctor.strip(),
                time=slot,
                notes=(notes or "").strip(),
            )
            if existing_row is not None:
                await self.store.update_row(sheet.spreadsheet_id, sheet.range, existing_row, booking.to_cells())
            else:
                if not rows:
                    await self.store.append_row(sheet.spreadsheet_id, sheet.range, BOOKINGS_HEADER)
                await self.store.append_row(sheet.spreadsheet_id, sheet.range, booking.to_cells())
        except SheetsError as e:
            logger.error(f"Booking write failed: {e}")
            return ToolResult.failure(str(e), ActionKind.WRITE)

        booking_id = appointment_id(phone_digits, iso_date)
        logger.info(f"{'Updated' if existing_row else 'Created'} booking {booking_id}")
        if conversation_id:
            self._write_booking_note(booking, phone_digits, conversation_id, user_id)

        return ToolResult(
            success=True,
            action=ActionKind.WRITE,
            verified=False,
            data={
                "appointment_id": booking_id,
                "updated": existing_row is not None,
                **booking.model_dump(),
            },
        )

    def _write_booking_note(
        self, booking: BookingRow, phone_digits: str, conversation_id: str, user_id: Optional[str]
    ) -> None:
        content = (
            f"Booking: {booking.patient_name} ({phone_digits}) with Dr. {booking.doctor} "
            f"on {booking.date} at {booking.time}"
        )
        try:
            self.notes.create(
                self.tenant_id,
                conversation_id,
                content,
                category=NoteCategory.BOOKINGS,
                user_id=user_id,
                patient_name=booking.patient_name,
                dedupe=False,
            )
        except (sqlite3.Error, ValueError) as e:
            logger.warning(f"Could not record booking note: {e}")

    async def _find_booking(self, phone_digits: str, iso_date: Optional[str]) -> Optional[BookingRow]:
        found = None
        for cells in (await self._booking_rows())[1:]:
            row = BookingRow.from_cells(cells)
            if normalize_phone(row.phone) != phone_digits:
                continue
            if iso_date and normalize_date(row.date, self.today()) != iso_date:
                continue
            found = row
        return found

    async def get_appointment_by_phone(
        self, phone: str, date: Optional[str] = None, include_notes: bool = True
    ) -> ToolResult:
        """
        Find the caller's appointment in the bookings sheet.

        Retries once after a short delay when nothing matches. With
        ``include_notes``, falls back to booking notes, and the result is
        marked ``source="notes"``.
        """
        if not self._bookings_ready():
            return ToolResult.failure("Bookings sheet not configured", ActionKind.READ)
        phone_digits = normalize_phone(phone)
        if len(phone_digits) < MIN_PHONE_DIGITS:
            return ToolResult.failure(f"Invalid phone number: {phone!r}", ActionKind.READ)
        iso_date = normalize_date(date, self.today()) if date else None
        if date and not iso_date:
            iso_date = date.strip()

        try:
            row = await self._find_booking(phone_digits, iso_date)
            if row is None:
                await asyncio.sleep(self.retry_delay)
                row = await self._find_booking(phone_digits, iso_date)
        except SheetsError as e:
            logger.error(f"Appointment lookup failed: {e}")
            return ToolResult.failure(str(e), ActionKind.READ)

        if row is not None:
            row_date = normalize_date(row.date, self.today()) or row.date
            return ToolResult(
                success=True,
                action=ActionKind.READ,
                data={
                    "found": True,
                    "appointment_id": appointment_id(phone_digits, row_date),
                    "source": "sheet",
                    **row.model_dump(),
                    "date": row_date,
                },
            )

        if include_notes:
            match = self._find_booking_note(phone_digits, iso_date)
            if match is not None:
                return ToolResult(success=True, action=ActionKind.READ, data=self._note_appointment(match, phone))

        return ToolResult(success=True, action=ActionKind.READ, data={"found": False})

    def _find_booking_note(self, phone_digits: str, iso_date: Optional[str] = None) -> Optional[Note]:
        """Newest booking note naming exactly this phone (and this day, when given)."""
        phone_pattern = re.compile(rf"(?<!\d){re.escape(phone_digits)}(?!\d)")
        for note in self.notes.list_notes(self.tenant_id, limit=50):
            lower = note.content.lower()
            if "booking" not in lower and "appointment" not in lower:
                continue
            if not phone_pattern.search(note.content):
                continue
            if iso_date and iso_date not in note.content:
                continue
            return note
        return None

    @staticmethod
    def _note_appointment(note: Note, phone: str) -> dict:
        content = note.content
        date_match = re.search(r"on (\d{4}-\d{2}-\d{2})", content)
        time_match = re.search(r"at (\d{1,2}:\d{2}\s*(?:am|pm)?)", content, re.IGNORECASE)
        doctor_match = re.search(r"with Dr\. (.*?)(?= on| at|$)", content)
        return {
            "found": True,
            "appointment_id": f"NOTE-{note.note_id}",
            "source": "notes",
            "date": date_match.group(1) if date_match else "unknown",
            "patient_name": note.patient_name or "unknown",
            "phone": phone,
            "doctor": doctor_match.group(1) if doctor_match else "unknown",
            "time": time_match.group(1) if time_match else "unknown",
            "notes": f"Found in conversation notes: {content}",
        }

    async def check_availability(self, date: str) -> ToolResult:
        """List booked slots (time + doctor) on a calendar day."""
        if not self._bookings_ready():
            return ToolResult.failure("Bookings sheet not configured", ActionKind.READ)
        iso_date = normalize_date(date, self.today())
        if not iso_date:
            return ToolResult.failure(f"Unrecognized date: {date!r}", ActionKind.READ)
        try:
            rows = await self._booking_rows()
        except SheetsError as e:
            return ToolResult.failure(str(e), ActionKind.READ)

        booked: List[Tuple[str, str]] = []
        for cells in rows[1:]:
            row = BookingRow.from_cells(cells)
            if normalize_date(row.date, self.today()) == iso_date:
                booked.append((normalize_time(row.time) or row.time, row.doctor))
        booked.sort()
        return ToolResult(
            success=True,
            action=ActionKind.READ,
            data={
                "date": iso_date,
                "booked_slots": [{"time": t, "doctor": d} for t, d in booked],
                "count": len(booked),
            },
        )

    async def query_sheet(self, use_when: str, range_: Optional[str] = None) -> ToolResult:
        """Fetch a configured sheet as a markdown table. Rows are not validated."""
        sheet = find_sheet(self.sheets, use_when)
        if sheet is None or self.store is None:
            return ToolResult.failure("No sheets configured", ActionKind.QUERY)
        try:
            table = await self.store.fetch_table(sheet.spreadsheet_id, range_ or sheet.range)
        except SheetsError as e:
            return ToolResult.failure(str(e), ActionKind.QUERY)
        return ToolResult(
            success=True,
            action=ActionKind.QUERY,
            data={"use_when": sheet.use_when, "table": table},
        )

    def record_knowledge(self, title: str, content: str) -> ToolResult:
        record = self.memory.create_record(title, content)
        return ToolResult(
            success=True,
            action=ActionKind.CREATE,
            data={"record_id": record.record_id, "title": record.title},
        )

    def request_edit_record(
        self,
        record_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ToolResult:
        try:
            request = self.memory.request_edit(record_id, title, content, reason)
        except RecordNotFoundError as e:
            return ToolResult.failure(str(e), ActionKind.EDIT)
        return ToolResult(
            success=True,
            action=ActionKind.EDIT,
            data={"request_id": request.request_id, "record_id": record_id, "status": request.status.value},
        )

    def request_delete_record(self, record_id: str, reason: Optional[str] = None) -> ToolResult:
        try:
            request = self.memory.request_delete(record_id, reason)
        except RecordNotFoundError as e:
            return ToolResult.failure(str(e), ActionKind.DELETE)
        return ToolResult(
            success=True,
            action=ActionKind.DELETE,
            data={"request_id": request.request_id, "record_id": record_id, "status": request.status.value},
        )

    def create_note(
        self,
        content: str,
        category: Optional[NoteCategory] = None,
        patient_name: Optional[str] = None,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ToolResult:
        if not conversation_id:
            return ToolResult.failure("Notes need a conversation", ActionKind.CREATE)
        note = self.notes.create(
            self.tenant_id,
            conversation_id,
            content,
            category=category or NoteCategory.OTHER,
            user_id=user_id,
            patient_name=patient_name,
        )
        return ToolResult(
            success=True,
            action=ActionKind.CREATE,
            data={"note_id": note.note_id, "category": note.category.value},
        )
