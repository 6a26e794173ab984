"""
Google Sheets integration for the bookings store and reference sheets.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import aiohttp

from ..config import settings
from ..models import SheetEntry

logger = logging.getLogger(__name__)


class SheetsError(Exception):
    """Raised when the tabular store cannot be read or written."""


def normalize_range(range_: Optional[str]) -> str:
    """
    Normalize an A1 range.

    "Bookings" -> "Bookings!A:Z", "A1:F20" -> "Sheet1!A1:F20",
    anything with a sheet prefix is returned unchanged.
    """
    value = (range_ or "").strip()
    if not value:
        return "Sheet1!A:Z"
    if "!" in value:
        return value
    if ":" in value:
        return f"Sheet1!{value}"
    return f"{value}!A:Z"


def sheet_name(range_: Optional[str]) -> str:
    return normalize_range(range_).split("!", 1)[0]


def format_table(rows: Sequence[Sequence[Any]]) -> str:
    """Render rows as a markdown table; the first row is the header."""
    if not rows:
        return "(empty sheet)"
    width = max(len(row) for row in rows)
    cells = [[str(c).replace("|", "/") for c in row] + [""] * (width - len(row)) for row in rows]
    header, body = cells[0], cells[1:]
    lines = [
        "| " + " | ".join(header) + " |",
        "| " + " | ".join("---" for _ in header) + " |",
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in body)
    return "\n".join(lines)


def configured_sheets(raw: Optional[List[dict]] = None) -> List[SheetEntry]:
    entries = settings.google_sheets if raw is None else raw
    return [SheetEntry(**entry) for entry in entries]


def find_sheet(sheets: List[SheetEntry], use_when: str) -> Optional[SheetEntry]:
    """Case-insensitive match on the use_when label, falling back to the first sheet."""
    if not sheets:
        return None
    wanted = use_when.strip().lower()
    for sheet in sheets:
        if sheet.use_when.strip().lower() == wanted:
            return sheet
    for sheet in sheets:
        label = sheet.use_when.strip().lower()
        if wanted and (wanted in label or label in wanted):
            return sheet
    return sheets[0]


def select_bookings_sheet(sheets: List[SheetEntry]) -> Optional[SheetEntry]:
    """Pick the bookings sheet, preferring an exact booking/appointment label."""
    exact = {"booking", "bookings", "appointment", "appointments"}
    for sheet in sheets:
        if sheet.use_when.strip().lower() in exact:
            return sheet
    for sheet in sheets:
        if "booking" in sheet.use_when.lower():
            return sheet
    return None


class TabularStore(ABC):
    """Abstract row store addressed by spreadsheet id and A1 range."""

    @abstractmethod
    async def get_rows(self, spreadsheet_id: str, range_: Optional[str] = None) -> List[List[str]]:
        """
        Read all rows of a range, header included.

        Raises:
            SheetsError: if the store is unreachable or rejects the request
        """

    @abstractmethod
    async def append_row(self, spreadsheet_id: str, range_: Optional[str], cells: List[str]) -> None:
        """Append one row after the last non-empty row."""

    @abstractmethod
    async def update_row(
        self, spreadsheet_id: str, range_: Optional[str], row_number: int, cells: List[str]
    ) -> None:
        """Overwrite a row in place (1-based row number, header is row 1)."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the store is reachable."""

    async def fetch_table(self, spreadsheet_id: str, range_: Optional[str] = None) -> str:
        rows = await self.get_rows(spreadsheet_id, range_)
        return format_table(rows)


class GoogleSheetsIntegration(TabularStore):
    """Google Sheets REST v4 client."""

    def __init__(self, config: Dict[str, Any] = None):
        config = config or {}
        self.base_url = config.get("url", settings.sheets_api_url)
        self.token = config.get("token", settings.sheets_access_token)
        self.timeout = aiohttp.ClientTimeout(total=config.get("timeout", settings.sheets_timeout_seconds))
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            headers = {}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self.session = aiohttp.ClientSession(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )
        return self.session

    async def close(self):
        """Close aiohttp session."""
        if self.session and not self.session.closed:
            await self.session.close()

    @staticmethod
    def _values_path(spreadsheet_id: str, range_: str) -> str:
        return f"/v4/spreadsheets/{quote(spreadsheet_id, safe='')}/values/{quote(range_, safe='!:')}"

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            session = await self._get_session()
            async with session.request(method, path, **kwargs) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise SheetsError(f"Sheets API error {response.status}: {error_text[:200]}")
                return await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Sheets request failed: {e}")
            raise SheetsError(f"Sheets API unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Sheets request timed out: {method} {path}")
            raise SheetsError("Sheets API timed out") from e

    async def health_check(self) -> bool:
        try:
            session = await self._get_session()
            async with session.get("/$discovery/rest?version=v4") as response:
                return response.status == 200
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def get_rows(self, spreadsheet_id: str, range_: Optional[str] = None) -> List[List[str]]:
        target = normalize_range(range_)
        data = await self._request("GET", self._values_path(spreadsheet_id, target))
        rows = data.get("values", [])
        logger.debug(f"Read {len(rows)} rows from {spreadsheet_id} {target}")
        return [[str(c) for c in row] for row in rows]

    async def append_row(self, spreadsheet_id: str, range_: Optional[str], cells: List[str]) -> None:
        target = normalize_range(range_)
        await self._request(
            "POST",
            self._values_path(spreadsheet_id, target) + ":append",
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [cells]},
        )
        logger.info(f"Appended row to {spreadsheet_id} {target}")

    async def update_row(
        self, spreadsheet_id: str, range_: Optional[str], row_number: int, cells: List[str]
    ) -> None:
        last_column = chr(ord("A") + max(len(cells), 1) - 1)
        target = f"{sheet_name(range_)}!A{row_number}:{last_column}{row_number}"
        await self._request(
            "PUT",
            self._values_path(spreadsheet_id, target),
            params={"valueInputOption": "USER_ENTERED"},
            json={"range": target, "values": [cells]},
        )
        logger.info(f"Updated row {row_number} in {spreadsheet_id}")
