"""
Data models for tool calls, results, bookings, memory records and replies.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ActionKind(str, Enum):
    """Kind of side effect an action had."""
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    QUERY = "query"


class ToolCall(BaseModel):
    """Unvalidated action proposed by the model."""
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None  # Model tool-call id, used to pair tool responses


class ToolResult(BaseModel):
    """Canonical outcome of an executed action."""
    success: bool
    action: Optional[ActionKind] = None
    data: Optional[Any] = None
    error: Optional[str] = None
    verified: Optional[bool] = None  # Only meaningful for state-changing actions
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def failure(cls, error: str, action: Optional[ActionKind] = None) -> "ToolResult":
        return cls(success=False, error=error, action=action)

    def to_wire(self) -> Dict[str, Any]:
        """Wire shape: {success, action, verified, data?, error?}."""
        wire: Dict[str, Any] = {
            "success": self.success,
            "action": self.action.value if self.action else None,
            "verified": bool(self.verified),
        }
        if self.data is not None:
            wire["data"] = self.data
        if self.error is not None:
            wire["error"] = self.error
        return wire


class ExecutionLogEntry(BaseModel):
    """One executed tool call in the per-turn audit trail."""
    tool_call: ToolCall
    result: ToolResult
    timestamp: datetime = Field(default_factory=utcnow)
    verified: bool = False


class BookingRow(BaseModel):
    """A row of the bookings sheet, in fixed column order."""
    date: str
    patient_name: str
    phone: str
    doctor: str
    time: str
    notes: str = ""

    def to_cells(self) -> List[str]:
        return [self.date, self.patient_name, self.phone, self.doctor, self.time, self.notes]

    @classmethod
    def from_cells(cls, cells: List[Any]) -> "BookingRow":
        padded = [str(c) if c is not None else "" for c in cells] + [""] * 6
        return cls(
            date=padded[0].strip(),
            patient_name=padded[1].strip(),
            phone=padded[2].strip(),
            doctor=padded[3].strip(),
            time=padded[4].strip(),
            notes=padded[5].strip(),
        )


class SheetEntry(BaseModel):
    """A configured external sheet, addressed by its use_when label."""
    spreadsheet_id: str
    range: Optional[str] = None
    use_when: str


class AgentRecord(BaseModel):
    """Durable fact in the agent's long-term memory."""
    record_id: str
    title: str
    content: str
    created_at: datetime
    updated_at: datetime


class ModificationType(str, Enum):
    EDIT = "edit"
    DELETE = "delete"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ModificationRequest(BaseModel):
    """A staged change to an AgentRecord awaiting human approval."""
    request_id: str
    type: ModificationType
    record_id: str
    proposed_title: Optional[str] = None
    proposed_content: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class NoteCategory(str, Enum):
    COMMON_QUESTIONS = "common_questions"
    KEYWORDS = "keywords"
    ANALYTICS = "analytics"
    INSIGHTS = "insights"
    OTHER = "other"
    BOOKINGS = "bookings"


class Note(BaseModel):
    """Conversation annotation written by the agent or the system."""
    note_id: str
    conversation_id: str
    user_id: Optional[str] = None
    patient_name: Optional[str] = None
    content: str
    category: NoteCategory = NoteCategory.OTHER
    created_at: datetime


class ChatMessage(BaseModel):
    """A single message in a conversation session."""
    role: str  # "user", "assistant" or "human_agent"
    content: str
    timestamp: Optional[datetime] = None


class AgentReply(BaseModel):
    """Final text of a turn plus side-channel flags."""
    text: str
    request_handoff: bool = False
    plan_status: Optional[str] = None
    missing_info: List[str] = Field(default_factory=list)
    executed_tools: List[str] = Field(default_factory=list)
