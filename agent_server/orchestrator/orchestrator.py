"""
Agent Orchestrator.

The only path from a model-proposed ToolCall to a side effect:
parse -> dispatch -> execute -> verify (booking writes) -> log.
Never raises; every outcome, including unknown tools and handler errors,
is a ToolResult with exactly one ExecutionLog entry.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import ValidationError

from ..memory.notes import NoteRepository
from ..models import ActionKind, ExecutionLogEntry, NoteCategory, ToolCall, ToolResult
from ..tools.schemas import (
    BookAppointment,
    CheckAvailability,
    CreateNote,
    GetAppointment,
    QuerySheet,
    RecordKnowledge,
    RequestDeleteRecord,
    RequestEditRecord,
    UnknownTool,
    parse_tool_call,
)
from .execution_log import ExecutionLogRepository, InMemoryExecutionLog
from .executor import ToolExecutor, normalize_time
from .verifier import StateVerifier

logger = logging.getLogger(__name__)


@dataclass
class TurnContext:
    """Who the current turn belongs to."""
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None


def describe_validation_error(tool_name: str, error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"] if part != tool_name) or "arguments"
        problems.append(f"{field}: {err['msg']}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


class AgentOrchestrator:
    """Validates, executes and verifies tool calls for one tenant."""

    def __init__(
        self,
        tenant_id: str,
        executor: ToolExecutor,
        notes: NoteRepository,
        log: Optional[ExecutionLogRepository] = None,
        verifier: Optional[StateVerifier] = None,
    ):
        self.tenant_id = tenant_id
        self.executor = executor
        self.notes = notes
        self.log = log if log is not None else InMemoryExecutionLog()
        self.verifier = verifier or StateVerifier(executor)

    async def execute_tool_call(self, call: ToolCall, ctx: Optional[TurnContext] = None) -> ToolResult:
        ctx = ctx or TurnContext()
        try:
            command = parse_tool_call(call)
        except ValidationError as e:
            result = ToolResult.failure(describe_validation_error(call.name, e))
        else:
            try:
                result = await self._dispatch(command, ctx)
            except Exception as e:
                logger.exception(f"Tool {call.name} raised")
                result = ToolResult.failure(f"{call.name} failed: {e}")

        if not result.success:
            logger.info(f"Tool {call.name} failed: {result.error}")
        self.log.append(
            self.tenant_id,
            ExecutionLogEntry(tool_call=call, result=result, verified=bool(result.verified)),
        )
        return result

    async def _dispatch(self, command, ctx: TurnContext) -> ToolResult:
        if isinstance(command, UnknownTool):
            return ToolResult.failure(f"Unknown tool: {command.tool}")
        if isinstance(command, BookAppointment):
            return await self._book(command, ctx)
        if isinstance(command, GetAppointment):
            return await self.executor.get_appointment_by_phone(command.phone, command.date)
        if isinstance(command, CheckAvailability):
            return await self.executor.check_availability(command.date)
        if isinstance(command, QuerySheet):
            return await self.executor.query_sheet(command.use_when, command.range)
        if isinstance(command, RecordKnowledge):
            return self.executor.record_knowledge(command.title, command.content)
        if isinstance(command, RequestEditRecord):
            return self.executor.request_edit_record(
                command.record_id, command.title, command.content, command.reason
            )
        if isinstance(command, RequestDeleteRecord):
            return self.executor.request_delete_record(command.record_id, command.reason)
        if isinstance(command, CreateNote):
            return self.executor.create_note(
                command.content,
                command.category,
                command.patient_name,
                conversation_id=ctx.conversation_id,
                user_id=ctx.user_id,
            )
        return ToolResult.failure(f"Unsupported tool: {command.tool}")

    def _consistency_hint(self, command: BookAppointment, conversation_id: Optional[str]) -> Optional[str]:
        """Earlier booking notes in this conversation that disagree with the request."""
        if not conversation_id:
            return None
        notes = self.notes.list_for_conversation(self.tenant_id, conversation_id, limit=10)
        for note in notes:
            if note.category != NoteCategory.BOOKINGS:
                continue
            content = note.content.lower()
            slot = (normalize_time(command.time) or command.time).lower()
            if slot not in content or command.doctor.lower() not in content:
                return f"Earlier in this conversation: {note.content}"
        return None

    async def _book(self, command: BookAppointment, ctx: TurnContext) -> ToolResult:
        hint = self._consistency_hint(command, ctx.conversation_id)
        if hint:
            logger.info(f"Booking differs from an earlier note: {hint}")

        result = await self.executor.book_appointment(
            command.date,
            command.patient_name,
            command.phone,
            command.doctor,
            command.time,
            command.notes,
            conversation_id=ctx.conversation_id,
            user_id=ctx.user_id,
        )
        if not result.success:
            return result

        data = dict(result.data or {})
        if hint:
            data["consistency_hint"] = hint
        check = await self.verifier.verify_booking(
            command.phone,
            data["date"],
            data["appointment_id"],
            expected_time=data.get("time"),
            expected_doctor=data.get("doctor"),
            expected_patient=data.get("patient_name"),
        )
        if not check.verified:
            logger.warning(f"Booking {data['appointment_id']} failed verification: {check.reason}")
            return ToolResult(
                success=False,
                verified=False,
                action=ActionKind.WRITE,
                data=data,
                error=f"Booking could not be verified: {check.reason}",
            )
        return ToolResult(success=True, verified=True, action=ActionKind.WRITE, data=data)

    def get_execution_logs(self) -> List[ExecutionLogEntry]:
        return self.log.entries(self.tenant_id)

    def clear_execution_logs(self) -> None:
        self.log.clear(self.tenant_id)
