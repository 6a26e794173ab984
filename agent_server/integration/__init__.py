"""
Integration layer for the tabular (sheet) store.
"""
from .sheets import (
    GoogleSheetsIntegration,
    SheetsError,
    TabularStore,
    configured_sheets,
    find_sheet,
    format_table,
    normalize_range,
    select_bookings_sheet,
)

__all__ = [
    "GoogleSheetsIntegration",
    "SheetsError",
    "TabularStore",
    "configured_sheets",
    "find_sheet",
    "format_table",
    "normalize_range",
    "select_bookings_sheet",
]
