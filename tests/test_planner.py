"""
Tests for the planner: plan decisions, missing information and confirmation gating.
"""
import pytest

from agent_server.agent.intent import IntentKind, classify_heuristic
from agent_server.agent.planner import (
    KeywordPlanningPolicy,
    PlanStatus,
    Planner,
    StepStatus,
    confirm_step,
    format_confirmation_question,
    format_missing_info_question,
    get_next_step,
    update_plan_with_result,
)
from agent_server.models import ToolResult

from conftest import ScriptedChatModel

NO_DATE = "Please book Dr. Smith at 10am for Lee and my phone is 555-0100"
FULL = "Please book Dr. Smith on Friday at 10am for Lee and my phone is 555-0100"
CHECK_THEN_BOOK = "Check if Dr. Smith is free on Friday at 10am and book it for Lee, phone 555-0100"


@pytest.mark.asyncio
async def test_missing_date_yields_needs_info_plan():
    planner = Planner()
    intent = classify_heuristic(NO_DATE)

    decision = await planner.decide(intent, NO_DATE)
    plan = await planner.create_plan(intent, NO_DATE)

    assert decision.needs_plan is True
    assert plan.status == PlanStatus.NEEDS_INFO
    assert plan.missing_info == ["date"]
    assert get_next_step(plan) is None
    assert format_missing_info_question(plan) == "Happy to help with that. Could you tell me the date?"


@pytest.mark.asyncio
async def test_state_changing_step_waits_for_confirmation():
    planner = Planner()
    plan = await planner.create_plan(classify_heuristic(FULL), FULL)

    step = plan.steps[0]
    assert step.tool_name == "append_booking_row"
    assert step.requires_confirmation is True
    assert plan.status == PlanStatus.AWAITING_CONFIRMATION
    assert get_next_step(plan) is None
    assert format_confirmation_question(plan).startswith("Just to confirm: an appointment for Lee with Dr. Smith")

    confirm_step(plan, step.step_number)

    assert plan.status == PlanStatus.EXECUTING
    assert get_next_step(plan) is step


@pytest.mark.asyncio
async def test_read_step_runs_first_then_write_waits():
    plan = await Planner().create_plan(classify_heuristic(CHECK_THEN_BOOK), CHECK_THEN_BOOK)

    assert [s.tool_name for s in plan.steps] == ["check_availability", "append_booking_row"]
    assert plan.status == PlanStatus.READY
    assert get_next_step(plan).tool_name == "check_availability"

    update_plan_with_result(plan, 1, ToolResult(success=True, data={"count": 0}))

    assert plan.steps[1].status == StepStatus.AWAITING_CONFIRMATION
    assert plan.status == PlanStatus.AWAITING_CONFIRMATION
    assert get_next_step(plan) is None


@pytest.mark.asyncio
async def test_failed_step_skips_the_rest():
    plan = await Planner().create_plan(classify_heuristic(CHECK_THEN_BOOK), CHECK_THEN_BOOK)

    update_plan_with_result(plan, 1, ToolResult.failure("Bookings sheet not configured"))

    assert plan.status == PlanStatus.FAILED
    assert plan.steps[0].status == StepStatus.FAILED
    assert plan.steps[1].status == StepStatus.SKIPPED
    assert get_next_step(plan) is None


def test_update_unknown_step_raises():
    from agent_server.agent.planner import ExecutionPlan

    with pytest.raises(ValueError):
        update_plan_with_result(ExecutionPlan(), 3, ToolResult(success=True))


@pytest.mark.asyncio
async def test_conversation_intents_never_plan():
    decision = await Planner().decide(classify_heuristic("hi and thanks"), "hi and thanks")

    assert decision.needs_plan is False


def test_keyword_policy():
    policy = KeywordPlanningPolicy()

    assert policy.needs_plan(classify_heuristic("book Friday then call me"), "book Friday then call me")
    assert not policy.needs_plan(classify_heuristic("book me Friday"), "book me Friday")


@pytest.mark.asyncio
async def test_model_plan_is_filtered_and_gated():
    model = ScriptedChatModel([
        '{"description": "book", "steps": ['
        '{"step_number": 1, "description": "Dance", "tool_name": "dance"},'
        '{"step_number": 2, "description": "Book the appointment", "tool_name": "append_booking_row",'
        ' "tool_args": {"date": "2025-01-10"}, "requires_confirmation": false, "confirmed": true}'
        '], "missing_info": []}'
    ])
    planner = Planner(model)

    plan = await planner.create_plan(classify_heuristic(FULL), FULL)

    assert [s.tool_name for s in plan.steps] == ["append_booking_row"]
    assert plan.steps[0].step_number == 1
    assert plan.steps[0].requires_confirmation is True
    assert plan.steps[0].confirmed is False
    assert plan.status == PlanStatus.AWAITING_CONFIRMATION


@pytest.mark.asyncio
async def test_model_decision_is_used_when_valid():
    model = ScriptedChatModel(['{"needs_plan": false, "complexity": "simple", "reason": "one call"}'])
    intent = classify_heuristic(FULL)

    decision = await Planner(model).decide(intent, FULL)

    assert intent.intent == IntentKind.BOOK_APPOINTMENT
    assert decision.needs_plan is False
    assert decision.reason == "one call"
