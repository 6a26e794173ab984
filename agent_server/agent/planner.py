"""
Planner: decides whether a request needs an explicit multi-step plan and
builds one.

Plans bind each step to a tool. Steps invoking a state-changing tool always
require confirmation, and the plan never hands out an unconfirmed step.
"""
import logging
import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field, ValidationError

from ..llm import ChatModel, ask_json
from ..models import ChatMessage, ToolResult, utcnow
from ..tools.schemas import TOOL_NAMES, is_state_changing
from .intent import ExtractedIntent, IntentKind

logger = logging.getLogger(__name__)


class PlanComplexity(str, Enum):
    SIMPLE = "simple"
    MULTI_STEP = "multi_step"


class PlanStatus(str, Enum):
    PLANNING = "planning"
    READY = "ready"
    EXECUTING = "executing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    NEEDS_INFO = "needs_info"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PlanStep(BaseModel):
    step_number: int
    description: str
    tool_name: Optional[str] = None
    tool_args: Dict[str, Any] = Field(default_factory=dict)
    required_info: List[str] = Field(default_factory=list)
    requires_confirmation: bool = False
    confirmed: Optional[bool] = None
    status: StepStatus = StepStatus.PENDING
    result: Optional[Dict[str, Any]] = None
    verified: Optional[bool] = None


class ExecutionPlan(BaseModel):
    plan_id: str = Field(default_factory=lambda: f"plan_{uuid.uuid4().hex[:12]}")
    complexity: PlanComplexity = PlanComplexity.MULTI_STEP
    description: str = ""
    steps: List[PlanStep] = Field(default_factory=list)
    missing_info: List[str] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.PLANNING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def step(self, step_number: int) -> Optional[PlanStep]:
        return next((s for s in self.steps if s.step_number == step_number), None)


class PlanningDecision(BaseModel):
    needs_plan: bool
    complexity: PlanComplexity = PlanComplexity.SIMPLE
    reason: str = ""


class PlanningPolicy(Protocol):
    """Deterministic simple-vs-multi-step rule."""

    def needs_plan(self, intent: ExtractedIntent, message: str) -> bool: ...


class KeywordPlanningPolicy:
    """Conjunction/conditional keywords, or more than two suggested tools, mean multi-step."""

    conjunctions = ("and", "then", "after", "before", "also", "plus")
    conditionals = ("if", "when", "check", "verify")

    def needs_plan(self, intent: ExtractedIntent, message: str) -> bool:
        words = set(re.findall(r"[a-z]+", (message or "").lower()))
        if len(intent.suggested_tools) > 2:
            return True
        return bool(words & set(self.conjunctions + self.conditionals))


NO_TOOL_INTENTS = {IntentKind.GENERAL_CONVERSATION, IntentKind.REQUEST_HUMAN, IntentKind.CONFIRM_ACTION}

BOOKING_FIELDS = ("date", "patient_name", "phone", "doctor", "time")

DECIDE_PROMPT = """Decide whether the user's request needs several ordered tool calls.
Reply with JSON only: {"needs_plan": true | false, "complexity": "simple" | "multi_step", "reason": "..."}"""

PLAN_PROMPT = """Break the user's request into ordered steps for a clinic booking assistant.
Each step calls exactly one tool from this list: {tools}.
Reply with JSON only:
{{"description": "...",
  "steps": [{{"step_number": 1, "description": "...", "tool_name": "...", "tool_args": {{}}, "required_info": []}}],
  "missing_info": ["date", ...]}}
List in missing_info every detail the user has not given yet (date, time, phone, doctor, patient_name).
Known details: {entities}"""


class _PlanDraft(BaseModel):
    description: str = ""
    steps: List[PlanStep]
    missing_info: List[str] = Field(default_factory=list)


def derive_status(plan: ExecutionPlan) -> PlanStatus:
    if plan.missing_info:
        return PlanStatus.NEEDS_INFO
    first = plan.steps[0] if plan.steps else None
    if first and first.requires_confirmation and not first.confirmed:
        return PlanStatus.AWAITING_CONFIRMATION
    return PlanStatus.READY


def finalize_plan(plan: ExecutionPlan) -> ExecutionPlan:
    """Force confirmation on state-changing steps and derive the status."""
    for index, step in enumerate(plan.steps, start=1):
        step.step_number = index
        if is_state_changing(step.tool_name):
            step.requires_confirmation = True
            step.confirmed = False
    plan.status = derive_status(plan)
    if plan.status == PlanStatus.AWAITING_CONFIRMATION:
        plan.steps[0].status = StepStatus.AWAITING_CONFIRMATION
    plan.updated_at = utcnow()
    return plan


def _promote(plan: ExecutionPlan, step: PlanStep) -> None:
    if step.requires_confirmation and not step.confirmed:
        step.status = StepStatus.AWAITING_CONFIRMATION
    else:
        step.status = StepStatus.IN_PROGRESS


def _recompute_status(plan: ExecutionPlan) -> None:
    statuses = [s.status for s in plan.steps]
    if StepStatus.FAILED in statuses:
        plan.status = PlanStatus.FAILED
    elif statuses and all(s in (StepStatus.COMPLETED, StepStatus.SKIPPED) for s in statuses):
        plan.status = PlanStatus.COMPLETED
    elif StepStatus.AWAITING_CONFIRMATION in statuses:
        plan.status = PlanStatus.AWAITING_CONFIRMATION
    else:
        plan.status = PlanStatus.EXECUTING
    plan.updated_at = utcnow()


def update_plan_with_result(plan: ExecutionPlan, step_number: int, result: ToolResult) -> ExecutionPlan:
    """
    Record a step outcome.

    Success promotes the next pending step; failure skips every remaining
    pending step. Plan status precedence: failed > completed >
    awaiting_confirmation > executing.
    """
    step = plan.step(step_number)
    if step is None:
        raise ValueError(f"Plan {plan.plan_id} has no step {step_number}")

    step.result = result.to_wire()
    step.verified = result.verified
    if result.success:
        step.status = StepStatus.COMPLETED
        following = next((s for s in plan.steps if s.status == StepStatus.PENDING), None)
        if following is not None:
            _promote(plan, following)
    else:
        step.status = StepStatus.FAILED
        for other in plan.steps:
            if other.status in (StepStatus.PENDING, StepStatus.AWAITING_CONFIRMATION):
                other.status = StepStatus.SKIPPED
    _recompute_status(plan)
    return plan


def confirm_step(plan: ExecutionPlan, step_number: int) -> ExecutionPlan:
    """The explicit confirm action: the only way past awaiting_confirmation."""
    step = plan.step(step_number)
    if step is None:
        raise ValueError(f"Plan {plan.plan_id} has no step {step_number}")
    step.confirmed = True
    step.status = StepStatus.IN_PROGRESS
    plan.status = PlanStatus.EXECUTING
    plan.updated_at = utcnow()
    return plan


def awaiting_step(plan: ExecutionPlan) -> Optional[PlanStep]:
    return next((s for s in plan.steps if s.status == StepStatus.AWAITING_CONFIRMATION), None)


def get_next_step(plan: ExecutionPlan) -> Optional[PlanStep]:
    """Next runnable step, or None. Never returns an unconfirmed step that needs confirmation."""
    if plan.status in (
        PlanStatus.AWAITING_CONFIRMATION,
        PlanStatus.FAILED,
        PlanStatus.COMPLETED,
        PlanStatus.NEEDS_INFO,
    ):
        return None
    for step in plan.steps:
        if step.status in (StepStatus.COMPLETED, StepStatus.SKIPPED):
            continue
        if step.status not in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
            return None
        if step.requires_confirmation and not step.confirmed:
            return None
        return step
    return None


def plan_needs_info(plan: ExecutionPlan) -> bool:
    return plan.status == PlanStatus.NEEDS_INFO or bool(plan.missing_info)


FIELD_LABELS = {
    "date": "the date",
    "time": "the preferred time",
    "phone": "your phone number",
    "doctor": "which doctor you'd like to see",
    "patient_name": "the patient's name",
}


def format_missing_info_question(plan: ExecutionPlan) -> str:
    labels = [FIELD_LABELS.get(field, field.replace("_", " ")) for field in plan.missing_info]
    if not labels:
        return "Could you tell me a bit more about what you need?"
    if len(labels) == 1:
        wanted = labels[0]
    else:
        wanted = ", ".join(labels[:-1]) + " and " + labels[-1]
    return f"Happy to help with that. Could you tell me {wanted}?"


def format_confirmation_question(plan: ExecutionPlan) -> str:
    step = awaiting_step(plan) or next((s for s in plan.steps if s.requires_confirmation), None)
    if step is None:
        return "Shall I go ahead?"
    if step.tool_name == "append_booking_row":
        args = step.tool_args
        return (
            f"Just to confirm: an appointment for {args.get('patient_name', 'you')} with "
            f"Dr. {args.get('doctor', '?')} on {args.get('date', '?')} at {args.get('time', '?')}, "
            f"phone {args.get('phone', '?')}. Shall I go ahead?"
        )
    return f"I'm about to {step.description[:1].lower() + step.description[1:]}. Shall I go ahead?"


class Planner:
    """Model-assisted planner with deterministic fallbacks."""

    def __init__(self, model: Optional[ChatModel] = None, policy: Optional[PlanningPolicy] = None):
        self.model = model
        self.policy = policy or KeywordPlanningPolicy()

    async def decide(
        self, intent: ExtractedIntent, message: str, history: Sequence[ChatMessage] = ()
    ) -> PlanningDecision:
        if intent.intent in NO_TOOL_INTENTS or not intent.requires_tools:
            return PlanningDecision(needs_plan=False, reason="no tools needed")

        if self.model is not None:
            parsed = await ask_json(
                self.model,
                DECIDE_PROMPT,
                f"Intent: {intent.intent.value}\nSuggested tools: {intent.suggested_tools}\nRequest: {message}",
            )
            if parsed is not None:
                try:
                    return PlanningDecision.model_validate(parsed)
                except ValidationError as e:
                    logger.warning(f"Planning decision failed validation: {e}")

        needs_plan = self.policy.needs_plan(intent, message)
        return PlanningDecision(
            needs_plan=needs_plan,
            complexity=PlanComplexity.MULTI_STEP if needs_plan else PlanComplexity.SIMPLE,
            reason="keyword policy",
        )

    async def create_plan(
        self,
        intent: ExtractedIntent,
        message: str,
        history: Sequence[ChatMessage] = (),
        available_tools: Optional[Sequence[str]] = None,
    ) -> ExecutionPlan:
        tools = [t for t in (available_tools or sorted(TOOL_NAMES)) if t in TOOL_NAMES]
        plan = await self._model_plan(intent, message, tools)
        if plan is None:
            plan = self.fallback_plan(intent, message)
        plan = finalize_plan(plan)
        logger.info(f"Plan {plan.plan_id}: {len(plan.steps)} steps, status {plan.status.value}")
        return plan

    async def _model_plan(
        self, intent: ExtractedIntent, message: str, tools: List[str]
    ) -> Optional[ExecutionPlan]:
        if self.model is None:
            return None
        prompt = PLAN_PROMPT.format(tools=", ".join(tools), entities=intent.entities.model_dump_json())
        parsed = await ask_json(self.model, prompt, message)
        if parsed is None:
            return None
        try:
            draft = _PlanDraft.model_validate(parsed)
        except ValidationError as e:
            logger.warning(f"Plan output failed validation: {e}")
            return None
        steps = [s for s in draft.steps if s.tool_name in tools]
        if not steps:
            return None
        for step in steps:
            step.status = StepStatus.PENDING
            step.confirmed = None
        return ExecutionPlan(description=draft.description, steps=steps, missing_info=draft.missing_info)

    def fallback_plan(self, intent: ExtractedIntent, message: str) -> ExecutionPlan:
        """check_availability, then (for bookings) append_booking_row, from the intent entities."""
        entities = intent.entities.model_dump()
        steps: List[PlanStep] = []
        missing: List[str] = []

        def require(fields) -> List[str]:
            absent = [f for f in fields if not entities.get(f)]
            for f in absent:
                if f not in missing:
                    missing.append(f)
            return absent

        wants_check = intent.intent == IntentKind.CHECK_AVAILABILITY or "check_availability" in intent.suggested_tools
        if wants_check:
            steps.append(
                PlanStep(
                    step_number=len(steps) + 1,
                    description="Check which slots are free on the requested date",
                    tool_name="check_availability",
                    tool_args={"date": entities["date"]} if entities.get("date") else {},
                    required_info=require(["date"]),
                )
            )
        if intent.intent == IntentKind.BOOK_APPOINTMENT:
            steps.append(
                PlanStep(
                    step_number=len(steps) + 1,
                    description="Book the appointment",
                    tool_name="append_booking_row",
                    tool_args={f: entities[f] for f in BOOKING_FIELDS if entities.get(f)},
                    required_info=require(BOOKING_FIELDS),
                )
            )
        if not steps:
            for tool in intent.suggested_tools:
                if tool in TOOL_NAMES:
                    steps.append(PlanStep(step_number=len(steps) + 1, description=f"Run {tool}", tool_name=tool))

        return ExecutionPlan(
            complexity=PlanComplexity.MULTI_STEP if len(steps) > 1 else PlanComplexity.SIMPLE,
            description=message[:200],
            steps=steps,
            missing_info=missing,
        )
