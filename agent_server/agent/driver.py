"""
Conversation Driver.

Runs one turn: intent -> plan decision -> bounded model/tool loop (or
sequential plan execution) -> recovery -> booking guard -> handoff detection.

The model/tool loop is a LangGraph StateGraph:

    START -> execute_plan | await_model
    execute_plan -> await_model | END (awaiting confirmation)
    await_model -> execute_tools | END
    execute_tools -> await_model
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, START, StateGraph

from ..llm import ChatModel, message_text, tool_calls_from
from ..memory.context import ConversationContextBuilder
from ..memory.plans import PlanStore
from ..models import AgentReply, ChatMessage, ToolCall
from ..orchestrator.orchestrator import AgentOrchestrator, TurnContext
from ..tools.registry import list_tools, tool_names
from .guards import HANDOFF_MESSAGE, detect_handoff, guard_booking_claims
from .intent import ExtractedIntent, IntentClassifier, IntentKind
from .planner import (
    ExecutionPlan,
    PlanStatus,
    Planner,
    awaiting_step,
    confirm_step,
    format_confirmation_question,
    format_missing_info_question,
    get_next_step,
    update_plan_with_result,
)
from .prompts import PLAN_RESULTS_INSTRUCTION, build_system_prompt
from .recovery import EmptyResponseSituation, ResponseRecovery
from .state import TurnState

logger = logging.getLogger(__name__)

# Intents whose details may arrive over several messages
_GATHERING_INTENTS = {IntentKind.BOOK_APPOINTMENT, IntentKind.CHECK_AVAILABILITY}


def to_langchain_messages(history: Sequence[ChatMessage]) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    for msg in history:
        if msg.role == "user":
            messages.append(HumanMessage(content=msg.content))
        elif msg.role == "human_agent":
            messages.append(AIMessage(content=f"(Clinic staff) {msg.content}"))
        else:
            messages.append(AIMessage(content=msg.content))
    return messages


def _tool_message(call: ToolCall, result) -> ToolMessage:
    return ToolMessage(content=json.dumps(result.to_wire(), default=str), tool_call_id=call.id or call.name)


class ConversationDriver:
    """Drives a single conversation turn for one tenant."""

    def __init__(
        self,
        tenant_id: str,
        model: ChatModel,
        orchestrator: AgentOrchestrator,
        context_builder: ConversationContextBuilder,
        plan_store: PlanStore,
        classifier: Optional[IntentClassifier] = None,
        planner: Optional[Planner] = None,
        recovery: Optional[ResponseRecovery] = None,
        agent_name: str = "Ava",
        max_tool_rounds: int = 3,
        execution_log_window: int = 5,
    ):
        self.tenant_id = tenant_id
        self.model = model
        self.orchestrator = orchestrator
        self.context_builder = context_builder
        self.plan_store = plan_store
        self.classifier = classifier or IntentClassifier(model)
        self.planner = planner or Planner(model)
        self.recovery = recovery or ResponseRecovery(model)
        self.agent_name = agent_name
        self.max_tool_rounds = max_tool_rounds
        self.execution_log_window = execution_log_window
        self.tools = list_tools()
        self._ctx = TurnContext()
        self.graph = self._build_graph()

    # Graph

    def _build_graph(self):
        workflow = StateGraph(TurnState)
        workflow.add_node("execute_plan", self._execute_plan_node)
        workflow.add_node("await_model", self._await_model_node)
        workflow.add_node("execute_tools", self._execute_tools_node)

        workflow.add_conditional_edges(
            START,
            lambda state: "execute_plan" if state["status"] == "plan" else "await_model",
            {"execute_plan": "execute_plan", "await_model": "await_model"},
        )
        workflow.add_conditional_edges(
            "execute_plan",
            lambda state: "await_model" if state["status"] == "model" else END,
            {"await_model": "await_model", END: END},
        )
        workflow.add_conditional_edges(
            "await_model",
            lambda state: "execute_tools" if state["status"] == "tools" else END,
            {"execute_tools": "execute_tools", END: END},
        )
        workflow.add_edge("execute_tools", "await_model")
        return workflow.compile()

    async def _execute_plan_node(self, state: TurnState) -> Dict[str, Any]:
        """Run plan steps strictly in order, halting on the first failure."""
        plan: ExecutionPlan = state["plan"]
        messages = list(state["messages"])

        step = get_next_step(plan)
        while step is not None:
            call = ToolCall(
                name=step.tool_name,
                args=dict(step.tool_args),
                id=f"{plan.plan_id}-step-{step.step_number}",
            )
            logger.info(f"Plan {plan.plan_id}: running step {step.step_number} ({call.name})")
            result = await self.orchestrator.execute_tool_call(call, self._ctx)
            update_plan_with_result(plan, step.step_number, result)
            messages.append(AIMessage(content="", tool_calls=[{"name": call.name, "args": call.args, "id": call.id}]))
            messages.append(_tool_message(call, result))
            step = get_next_step(plan)

        if plan.status == PlanStatus.AWAITING_CONFIRMATION:
            return {"messages": messages, "plan": plan, "status": "awaiting_confirmation"}
        messages.append(HumanMessage(content=PLAN_RESULTS_INSTRUCTION))
        return {"messages": messages, "plan": plan, "status": "model"}

    async def _await_model_node(self, state: TurnState) -> Dict[str, Any]:
        """One model call. Tools are offered only outside plan mode and under the round cap."""
        offer_tools = state["plan"] is None and state["rounds"] < self.max_tool_rounds
        try:
            response = await self.model.invoke(state["messages"], tools=self.tools if offer_tools else None)
        except Exception as e:
            logger.error(f"Model call failed: {e}")
            return {"status": "failed", "error": str(e), "reply": ""}

        messages = list(state["messages"]) + [response]
        if offer_tools and tool_calls_from(response):
            return {"messages": messages, "status": "tools"}
        return {"messages": messages, "status": "done", "reply": message_text(response)}

    async def _execute_tools_node(self, state: TurnState) -> Dict[str, Any]:
        messages = list(state["messages"])
        for index, call in enumerate(tool_calls_from(messages[-1])):
            if not call.id:
                call.id = f"call-{state['rounds']}-{index}"
            result = await self.orchestrator.execute_tool_call(call, self._ctx)
            messages.append(_tool_message(call, result))
        return {"messages": messages, "rounds": state["rounds"] + 1, "status": "model"}

    # Turn

    def _active_plan(self, conversation_id: Optional[str]) -> Optional[ExecutionPlan]:
        if not conversation_id:
            return None
        raw = self.plan_store.get_active(self.tenant_id, conversation_id)
        return ExecutionPlan.model_validate(raw) if raw else None

    def _save_plan(self, conversation_id: Optional[str], plan: Optional[ExecutionPlan]) -> None:
        if conversation_id and plan is not None:
            self.plan_store.save(self.tenant_id, conversation_id, plan)

    async def _plan_for_turn(
        self,
        intent: ExtractedIntent,
        message: str,
        history: Sequence[ChatMessage],
        active: Optional[ExecutionPlan],
    ) -> Optional[ExecutionPlan]:
        if active is not None and active.status == PlanStatus.AWAITING_CONFIRMATION:
            step = awaiting_step(active)
            if intent.intent == IntentKind.CONFIRM_ACTION and step is not None:
                logger.info(f"User confirmed step {step.step_number} of plan {active.plan_id}")
                return confirm_step(active, step.step_number)
            logger.info(f"Plan {active.plan_id} not confirmed; dropping it")
            self.plan_store.clear(self.tenant_id, self._ctx.conversation_id)

        decision = await self.planner.decide(intent, message, history)
        if not decision.needs_plan:
            return None
        plan = await self.planner.create_plan(intent, message, history, tool_names())
        return plan if plan.steps else None

    async def run_turn(
        self,
        history: Sequence[ChatMessage],
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AgentReply:
        """
        Produce the assistant reply for the latest user message in ``history``.

        Never raises on model errors; recovery always ends in text.
        """
        self.orchestrator.clear_execution_logs()
        self._ctx = TurnContext(conversation_id=conversation_id, user_id=user_id)
        message = next((m.content for m in reversed(history) if m.role == "user"), "")
        earlier = list(history)[:-1]

        intent = await self.classifier.classify(message, earlier)
        if intent.intent == IntentKind.REQUEST_HUMAN:
            logger.info("User asked for a person; handing off")
            return AgentReply(text=HANDOFF_MESSAGE, request_handoff=True)

        active = self._active_plan(conversation_id)
        if active is not None and active.status == PlanStatus.NEEDS_INFO and intent.intent not in (
            IntentKind.QUERY_INFORMATION,
            IntentKind.CREATE_NOTE,
        ):
            # Details are arriving piecemeal; read them together with the original request.
            combined = f"{active.description} {message}"
            merged = await self.classifier.classify(combined, earlier)
            if merged.intent in _GATHERING_INTENTS:
                intent, message = merged, combined
            active = None

        plan = await self._plan_for_turn(intent, message, earlier, active)

        if plan is not None and plan.status == PlanStatus.NEEDS_INFO:
            self._save_plan(conversation_id, plan)
            return AgentReply(
                text=format_missing_info_question(plan),
                plan_status=plan.status.value,
                missing_info=list(plan.missing_info),
            )
        if plan is not None and plan.status == PlanStatus.AWAITING_CONFIRMATION:
            self._save_plan(conversation_id, plan)
            return AgentReply(text=format_confirmation_question(plan), plan_status=plan.status.value)

        context = self.context_builder.build(history, conversation_id)
        system_prompt = build_system_prompt(
            self.agent_name,
            context.render(self.orchestrator.get_execution_logs(), self.execution_log_window),
        )
        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)] + to_langchain_messages(context.recent)

        final = await self.graph.ainvoke(
            {
                "messages": messages,
                "plan": plan,
                "rounds": 0,
                "reply": "",
                "error": None,
                "status": "plan" if plan is not None else "model",
            }
        )
        plan = final.get("plan")
        log = self.orchestrator.get_execution_logs()

        if final["status"] == "awaiting_confirmation":
            text = format_confirmation_question(plan)
        else:
            text = (final.get("reply") or "").strip()
        if not text:
            text = await self.recovery.recover(
                EmptyResponseSituation(
                    messages=final["messages"],
                    user_message=message,
                    execution_log=log,
                    plan_failed=plan is not None and plan.status == PlanStatus.FAILED,
                )
            )

        text, _ = guard_booking_claims(text, log)
        text, handoff = detect_handoff(text)
        self._save_plan(conversation_id, plan)

        return AgentReply(
            text=text,
            request_handoff=handoff,
            plan_status=plan.status.value if plan is not None else None,
            missing_info=list(plan.missing_info) if plan is not None else [],
            executed_tools=[e.tool_call.name for e in log],
        )
