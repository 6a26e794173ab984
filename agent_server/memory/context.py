"""
Bounded context for a conversation turn.

Builds what the model sees besides the system prompt: the recent history
window (older turns collapsed into one summary line), retrieved knowledge,
existing records, conversation notes and the execution log so far.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import logging

from ..models import AgentRecord, ChatMessage, ExecutionLogEntry, Note
from .brain import MemoryStore
from .notes import NoteRepository

logger = logging.getLogger(__name__)

ROLE_LABELS = {"user": "User", "assistant": "Assistant", "human_agent": "Staff"}


def trim_history(history: Sequence[ChatMessage], window: int) -> Tuple[Optional[str], List[ChatMessage]]:
    """
    Keep the last ``window`` messages; summarize the rest in one line.

    Returns:
        (summary or None, recent messages)
    """
    history = list(history)
    if len(history) <= window:
        return None, history
    older, recent = history[:-window], history[-window:]
    asked = [m.content.strip()[:80] for m in older if m.role == "user" and m.content.strip()]
    summary = f"Earlier in this conversation ({len(older)} messages omitted)"
    if asked:
        summary += ", the user said: " + "; ".join(f'"{a}"' for a in asked[-3:])
    return summary + ".", recent


def format_history(messages: Sequence[ChatMessage]) -> str:
    return "\n".join(f"{ROLE_LABELS.get(m.role, m.role)}: {m.content}" for m in messages)


def format_execution_log(entries: Sequence[ExecutionLogEntry], limit: int = 5) -> str:
    """Render the last ``limit`` executed calls."""
    lines = []
    for entry in list(entries)[-limit:]:
        result = entry.result
        status = "ok" if result.success else f"failed: {result.error}"
        if result.success and result.verified:
            status += ", verified"
        lines.append(f"- {entry.tool_call.name}({entry.tool_call.args}) -> {status}")
    return "\n".join(lines)


@dataclass
class PromptContext:
    """Everything the prompt needs for one turn."""
    recent: List[ChatMessage] = field(default_factory=list)
    history_summary: Optional[str] = None
    knowledge: List[str] = field(default_factory=list)
    records: List[AgentRecord] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)

    def render(self, execution_log: Sequence[ExecutionLogEntry] = (), log_limit: int = 5) -> str:
        sections = []
        if self.knowledge:
            sections.append("## Relevant knowledge\n" + "\n---\n".join(self.knowledge))
        if self.records:
            sections.append(
                "## Known records (use record_id to propose edits)\n"
                + "\n".join(f"- {r.record_id}: {r.title}" for r in self.records)
            )
        if self.notes:
            sections.append(
                "## Notes about this conversation\n"
                + "\n".join(f"- [{n.category.value}] {n.content}" for n in self.notes)
            )
        if execution_log:
            sections.append("## Actions taken this turn\n" + format_execution_log(execution_log, log_limit))
        if self.history_summary:
            sections.append("## Earlier conversation\n" + self.history_summary)
        return "\n\n".join(sections)


class ConversationContextBuilder:
    """Builds a PromptContext from the stores of one tenant."""

    def __init__(
        self,
        memory: MemoryStore,
        notes: NoteRepository,
        history_window: int = 10,
        knowledge_chunks: int = 3,
        max_records: int = 20,
    ):
        self.memory = memory
        self.notes = notes
        self.history_window = history_window
        self.knowledge_chunks = knowledge_chunks
        self.max_records = max_records

    def build(self, history: Sequence[ChatMessage], conversation_id: Optional[str] = None) -> PromptContext:
        summary, recent = trim_history(history, self.history_window)
        query = next((m.content for m in reversed(recent) if m.role == "user"), "")
        knowledge = self.memory.knowledge.retrieve(self.memory.tenant_id, query, limit=self.knowledge_chunks)
        records = self.memory.list_records()[: self.max_records]
        notes = (
            self.notes.list_for_conversation(self.memory.tenant_id, conversation_id, limit=10)
            if conversation_id
            else []
        )
        logger.debug(
            f"Built context: {len(recent)} messages, {len(knowledge)} knowledge chunks, "
            f"{len(records)} records, {len(notes)} notes"
        )
        return PromptContext(
            recent=recent,
            history_summary=summary,
            knowledge=knowledge,
            records=records,
            notes=notes,
        )
