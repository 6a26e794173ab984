"""
Tool registry for the conversation model.

Provides the model-facing descriptions of the supported tools so the chat
model can propose calls. This does not execute tools; execution and
validation are handled by the orchestrator.
"""
from typing import Any, Dict, Iterable, List, Optional

from .schemas import (
    BookAppointment,
    CheckAvailability,
    CreateNote,
    GetAppointment,
    QuerySheet,
    RecordKnowledge,
    RequestDeleteRecord,
    RequestEditRecord,
)

_DESCRIPTIONS = {
    BookAppointment: (
        "Create or update a booking in the bookings sheet. One booking per phone "
        "per day: booking the same phone on the same date again updates it."
    ),
    GetAppointment: "Look up an existing appointment by the caller's phone number (and optional date).",
    CheckAvailability: "List the time slots already booked on a given date.",
    QuerySheet: (
        "Read a configured reference sheet (prices, doctors, opening hours...) "
        "by its use_when label."
    ),
    RecordKnowledge: "Save a new durable fact learned during the conversation.",
    RequestEditRecord: (
        "Propose an edit to an existing knowledge record. The change is applied "
        "only after a human approves it."
    ),
    RequestDeleteRecord: (
        "Propose deleting an existing knowledge record. The deletion is applied "
        "only after a human approves it."
    ),
    CreateNote: "Write a short note about this conversation for the clinic staff.",
}


def _parameters(model) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    properties = schema.get("properties", {})
    properties.pop("tool", None)
    for prop in properties.values():
        prop.pop("title", None)
    required = [name for name in schema.get("required", []) if name != "tool"]
    schema["required"] = required
    return schema


def list_tools(names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
    """
    Return tool specs in the function-calling format accepted by ``bind_tools``.

    Args:
        names: Optional subset of tool names to include.
    """
    wanted = set(names) if names is not None else None
    tools: List[Dict[str, Any]] = []
    for model, description in _DESCRIPTIONS.items():
        name = model.model_fields["tool"].default
        if wanted is not None and name not in wanted:
            continue
        tools.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": description,
                    "parameters": _parameters(model),
                },
            }
        )
    return tools


def tool_names() -> List[str]:
    return [model.model_fields["tool"].default for model in _DESCRIPTIONS]
