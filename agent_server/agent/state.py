"""
Shared state for the conversation turn graph.
"""
from typing import TypedDict, List, Optional

from langchain_core.messages import BaseMessage


class TurnState(TypedDict):
    """
    Represents one turn moving through the model/tool loop.
    """
    # Prompt so far: system message, history, model replies, tool results
    messages: List[BaseMessage]

    # ExecutionPlan being run, if the planner produced one
    plan: Optional[object]

    # Bounded tool loop
    rounds: int

    # Output
    reply: str
    error: Optional[str]
    status: str  # "plan", "model", "tools", "done", "awaiting_confirmation", "failed"
