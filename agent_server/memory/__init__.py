"""
Memory module: conversations, long-term records, notes, knowledge and plans.
"""
from .store import ConversationStore, SessionMeta
from .records import (
    RecordNotFoundError,
    RecordRepository,
    RequestAlreadyProcessedError,
    RequestNotFoundError,
    SqliteRecordRepository,
)
from .notes import NoteRepository
from .knowledge import KeywordKnowledgeIndex, KnowledgeIndex
from .plans import PlanStore
from .brain import MemoryStore
from .context import ConversationContextBuilder, PromptContext, trim_history, format_execution_log

__all__ = [
    "ConversationStore",
    "SessionMeta",
    "RecordNotFoundError",
    "RecordRepository",
    "RequestAlreadyProcessedError",
    "RequestNotFoundError",
    "SqliteRecordRepository",
    "NoteRepository",
    "KeywordKnowledgeIndex",
    "KnowledgeIndex",
    "PlanStore",
    "MemoryStore",
    "ConversationContextBuilder",
    "PromptContext",
    "trim_history",
    "format_execution_log",
]
