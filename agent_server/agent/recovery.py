"""
Empty-response recovery.

When the model ends a turn without text, classify why and apply the matching
recovery. Recovery always ends in text; the last resort is a fixed apology.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ..llm import ChatModel, message_text
from ..models import ExecutionLogEntry

logger = logging.getLogger(__name__)

GENERIC_APOLOGY = "I'm sorry, I wasn't able to put together a response just now. Could you rephrase that for me?"
CLARIFICATION_QUESTION = "I want to make sure I get this right. Could you tell me a little more about what you need?"


class EmptyCause(str, Enum):
    TOOL_ONLY = "tool_only"
    CONTEXT_OVERFLOW = "context_overflow"
    PLAN_FAILURE = "plan_failure"
    TOOL_ERRORS = "tool_errors"
    AMBIGUOUS = "ambiguous"


class RecoveryAction(str, Enum):
    SUMMARIZE_TOOL_RESULTS = "summarize_tool_results"
    SHRINK_CONTEXT = "shrink_context"
    SIMPLIFY_INSTRUCTIONS = "simplify_instructions"
    ASK_CLARIFICATION = "ask_clarification"


RECOVERY_FOR_CAUSE = {
    EmptyCause.TOOL_ONLY: RecoveryAction.SUMMARIZE_TOOL_RESULTS,
    EmptyCause.CONTEXT_OVERFLOW: RecoveryAction.SHRINK_CONTEXT,
    EmptyCause.PLAN_FAILURE: RecoveryAction.SIMPLIFY_INSTRUCTIONS,
    EmptyCause.TOOL_ERRORS: RecoveryAction.SIMPLIFY_INSTRUCTIONS,
    EmptyCause.AMBIGUOUS: RecoveryAction.ASK_CLARIFICATION,
}


@dataclass
class EmptyResponseSituation:
    """What the driver knows when the model went quiet."""
    messages: Sequence[BaseMessage]
    user_message: str
    execution_log: List[ExecutionLogEntry] = field(default_factory=list)
    plan_failed: bool = False


class EmptyResponsePolicy(Protocol):
    def classify(self, situation: EmptyResponseSituation) -> EmptyCause: ...


class DefaultEmptyResponsePolicy:
    """Plan failure, then tool errors, then tool-only output, then overflow, else ambiguous."""

    def __init__(self, overflow_threshold: int = 20):
        self.overflow_threshold = overflow_threshold

    def classify(self, situation: EmptyResponseSituation) -> EmptyCause:
        if situation.plan_failed:
            return EmptyCause.PLAN_FAILURE
        if situation.execution_log:
            if any(not e.result.success for e in situation.execution_log):
                return EmptyCause.TOOL_ERRORS
            return EmptyCause.TOOL_ONLY
        if len(situation.messages) > self.overflow_threshold:
            return EmptyCause.CONTEXT_OVERFLOW
        return EmptyCause.AMBIGUOUS


def summarize_results(entries: Sequence[ExecutionLogEntry]) -> str:
    """Plain-language fallback summary of what ran this turn."""
    lines = []
    for entry in entries:
        name = entry.tool_call.name.replace("_", " ")
        if entry.result.success:
            lines.append(f"{name}: done")
        else:
            lines.append(f"{name}: {entry.result.error or 'failed'}")
    return "Here's where things stand: " + "; ".join(lines) + "." if lines else ""


class ResponseRecovery:
    """Applies the recovery that matches the classified cause."""

    def __init__(self, model: Optional[ChatModel], policy: Optional[EmptyResponsePolicy] = None):
        self.model = model
        self.policy = policy or DefaultEmptyResponsePolicy()

    async def recover(self, situation: EmptyResponseSituation) -> str:
        cause = self.policy.classify(situation)
        action = RECOVERY_FOR_CAUSE[cause]
        logger.warning(f"Empty model reply ({cause.value}); recovering with {action.value}")

        if action == RecoveryAction.ASK_CLARIFICATION:
            return CLARIFICATION_QUESTION

        text = await self._retry(action, situation)
        if text:
            return text
        if action in (RecoveryAction.SUMMARIZE_TOOL_RESULTS, RecoveryAction.SIMPLIFY_INSTRUCTIONS):
            summary = summarize_results(situation.execution_log)
            if summary:
                return summary
        return GENERIC_APOLOGY

    async def _retry(self, action: RecoveryAction, situation: EmptyResponseSituation) -> str:
        if self.model is None:
            return ""
        if action == RecoveryAction.SUMMARIZE_TOOL_RESULTS:
            messages = [
                SystemMessage(content="Summarize these action results for the user in one or two friendly sentences. "
                                      "Do not claim anything that is not in the results."),
                HumanMessage(content=summarize_results(situation.execution_log) or situation.user_message),
            ]
        elif action == RecoveryAction.SHRINK_CONTEXT:
            system = [m for m in situation.messages if isinstance(m, SystemMessage)][:1]
            messages = system + list(situation.messages[-4:])
            if not any(isinstance(m, HumanMessage) for m in messages):
                messages.append(HumanMessage(content=situation.user_message))
        else:
            messages = [
                SystemMessage(content="You are a helpful clinic assistant. Answer briefly and plainly."),
                HumanMessage(content=situation.user_message),
            ]
        try:
            response = await self.model.invoke(messages)
        except Exception as e:
            logger.warning(f"Recovery call failed: {e}")
            return ""
        return message_text(response)
