"""
Conversation agent: intent, planning, recovery, guards and the turn driver.
"""
from .intent import ExtractedIntent, IntentClassifier, IntentEntities, IntentKind, classify_heuristic
from .planner import (
    ExecutionPlan,
    KeywordPlanningPolicy,
    PlanStatus,
    PlanStep,
    Planner,
    PlanningDecision,
    StepStatus,
)
from .recovery import DefaultEmptyResponsePolicy, EmptyCause, EmptyResponseSituation, ResponseRecovery
from .guards import HANDOFF_MARKER, HANDOFF_MESSAGE, detect_handoff, guard_booking_claims
from .driver import ConversationDriver

__all__ = [
    "ExtractedIntent",
    "IntentClassifier",
    "IntentEntities",
    "IntentKind",
    "classify_heuristic",
    "ExecutionPlan",
    "KeywordPlanningPolicy",
    "PlanStatus",
    "PlanStep",
    "Planner",
    "PlanningDecision",
    "StepStatus",
    "DefaultEmptyResponsePolicy",
    "EmptyCause",
    "EmptyResponseSituation",
    "ResponseRecovery",
    "HANDOFF_MARKER",
    "HANDOFF_MESSAGE",
    "detect_handoff",
    "guard_booking_claims",
    "ConversationDriver",
]
