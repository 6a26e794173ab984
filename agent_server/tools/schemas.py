"""
Pydantic models for the tools the model may propose.

Every supported tool is one variant of a closed union discriminated on
``tool``. Proposed arguments are parsed into a strict value type before
dispatch; anything that does not parse is rejected deterministically and
never reaches an executor.
"""
from typing import Annotated, Any, Optional, Union, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    TypeAdapter,
    field_validator,
    model_validator,
)

from ..models import NoteCategory, ToolCall

NonEmptyStr = Annotated[StrictStr, Field(min_length=1)]


class _ToolCommand(BaseModel):
    """Common config: trim strings, accept snake_case or camelCase keys, drop extras."""

    model_config = ConfigDict(
        extra="ignore",
        str_strip_whitespace=True,
        populate_by_name=True,
    )


class BookAppointment(_ToolCommand):
    """Create or update the caller's booking for a calendar day."""

    tool: Literal["append_booking_row"] = "append_booking_row"
    date: NonEmptyStr
    patient_name: NonEmptyStr = Field(validation_alias=AliasChoices("patient_name", "patientName"))
    phone: NonEmptyStr
    doctor: NonEmptyStr = Field(validation_alias=AliasChoices("doctor", "doctor_name", "doctorName"))
    time: NonEmptyStr = Field(
        validation_alias=AliasChoices("time", "appointment_time", "appointmentTime")
    )
    notes: Optional[StrictStr] = None


class GetAppointment(_ToolCommand):
    """Look up an appointment by phone, optionally on one day."""

    tool: Literal["get_appointment_by_phone"] = "get_appointment_by_phone"
    phone: NonEmptyStr
    date: Optional[StrictStr] = None


class CheckAvailability(_ToolCommand):
    """List the slots already taken on a day."""

    tool: Literal["check_availability"] = "check_availability"
    date: NonEmptyStr
    range: Optional[StrictStr] = None


class QuerySheet(_ToolCommand):
    """Fetch a configured reference sheet by its label."""

    tool: Literal["query_google_sheet"] = "query_google_sheet"
    use_when: NonEmptyStr = Field(validation_alias=AliasChoices("use_when", "useWhen"))
    range: Optional[StrictStr] = None


class RecordKnowledge(_ToolCommand):
    """Save a new durable fact."""

    tool: Literal["record_learned_knowledge"] = "record_learned_knowledge"
    title: NonEmptyStr
    content: NonEmptyStr


class RequestEditRecord(_ToolCommand):
    """Propose an edit to an existing record (applied only after approval)."""

    tool: Literal["request_edit_record"] = "request_edit_record"
    record_id: NonEmptyStr = Field(validation_alias=AliasChoices("record_id", "recordId"))
    title: Optional[StrictStr] = None
    content: Optional[StrictStr] = None
    reason: Optional[StrictStr] = None

    @model_validator(mode="after")
    def _needs_a_change(self) -> "RequestEditRecord":
        if not self.title and not self.content:
            raise ValueError("request_edit_record needs a new title or new content")
        return self


class RequestDeleteRecord(_ToolCommand):
    """Propose deleting a record (applied only after approval)."""

    tool: Literal["request_delete_record"] = "request_delete_record"
    record_id: NonEmptyStr = Field(validation_alias=AliasChoices("record_id", "recordId"))
    reason: Optional[StrictStr] = None


class CreateNote(_ToolCommand):
    """Annotate the conversation for admin review."""

    tool: Literal["create_note"] = "create_note"
    content: NonEmptyStr
    category: Optional[NoteCategory] = None
    patient_name: Optional[StrictStr] = Field(
        default=None, validation_alias=AliasChoices("patient_name", "patientName")
    )

    @field_validator("category", mode="before")
    @classmethod
    def _unknown_category_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value not in {c.value for c in NoteCategory}:
            return None
        return value


class UnknownTool(BaseModel):
    """A proposed tool name outside the supported set."""

    tool: str


ToolCommand = Annotated[
    Union[
        BookAppointment,
        GetAppointment,
        CheckAvailability,
        QuerySheet,
        RecordKnowledge,
        RequestEditRecord,
        RequestDeleteRecord,
        CreateNote,
    ],
    Field(discriminator="tool"),
]

COMMAND_TYPES = (
    BookAppointment,
    GetAppointment,
    CheckAvailability,
    QuerySheet,
    RecordKnowledge,
    RequestEditRecord,
    RequestDeleteRecord,
    CreateNote,
)

TOOL_NAMES = frozenset(cls.model_fields["tool"].default for cls in COMMAND_TYPES)

READ_ONLY_TOOLS = frozenset({"get_appointment_by_phone", "check_availability", "query_google_sheet"})
STATE_CHANGING_TOOLS = TOOL_NAMES - READ_ONLY_TOOLS
BOOKING_WRITE_TOOLS = frozenset({"append_booking_row"})

_command_adapter: TypeAdapter = TypeAdapter(ToolCommand)


def parse_tool_call(call: ToolCall) -> Union[ToolCommand, UnknownTool]:
    """
    Parse a proposed call into its command variant.

    Returns:
        The parsed command, or UnknownTool when the name is not supported.

    Raises:
        pydantic.ValidationError: if the arguments do not fit the tool's schema.
    """
    if call.name not in TOOL_NAMES:
        return UnknownTool(tool=call.name)
    return _command_adapter.validate_python({**call.args, "tool": call.name})


def is_state_changing(tool_name: Optional[str]) -> bool:
    return bool(tool_name) and tool_name in STATE_CHANGING_TOOLS
