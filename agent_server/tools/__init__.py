"""
Tool command schemas and the model-facing tool registry.
"""
from .schemas import (
    BOOKING_WRITE_TOOLS,
    READ_ONLY_TOOLS,
    STATE_CHANGING_TOOLS,
    TOOL_NAMES,
    BookAppointment,
    CheckAvailability,
    CreateNote,
    GetAppointment,
    QuerySheet,
    RecordKnowledge,
    RequestDeleteRecord,
    RequestEditRecord,
    UnknownTool,
    is_state_changing,
    parse_tool_call,
)
from .registry import list_tools, tool_names

__all__ = [
    "BOOKING_WRITE_TOOLS",
    "READ_ONLY_TOOLS",
    "STATE_CHANGING_TOOLS",
    "TOOL_NAMES",
    "BookAppointment",
    "CheckAvailability",
    "CreateNote",
    "GetAppointment",
    "QuerySheet",
    "RecordKnowledge",
    "RequestDeleteRecord",
    "RequestEditRecord",
    "UnknownTool",
    "is_state_changing",
    "parse_tool_call",
    "list_tools",
    "tool_names",
]
