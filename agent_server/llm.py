"""
Chat model access.

A thin wrapper over ChatOllama with tool binding and an explicit timeout,
plus the JSON helpers used by the intent classifier, the planner and the
memory consolidator. Those callers always have a deterministic fallback, so
``ask_json`` returns None instead of raising when the model misbehaves.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama

from .config import settings
from .models import ToolCall

logger = logging.getLogger(__name__)


class ModelTimeoutError(Exception):
    """Raised when the chat model does not answer within the configured timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Model did not respond within {timeout}s")


class ChatModel(ABC):
    """Abstract chat model interface."""

    @abstractmethod
    async def invoke(
        self,
        messages: Sequence[BaseMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AIMessage:
        """
        Run one model turn.

        Args:
            messages: Full prompt (system message first).
            tools: Optional function-calling tool specs the model may propose.

        Raises:
            ModelTimeoutError: if the model does not answer in time.
        """
        raise NotImplementedError


class OllamaChatModel(ChatModel):
    """Ollama-backed chat model with tool calling."""

    def __init__(
        self,
        model: str,
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 2048,
        timeout: float = 60,
    ):
        self.model_name = model
        self.timeout = timeout
        kwargs: Dict[str, Any] = {
            "model": model,
            "temperature": temperature,
            "num_predict": max_tokens,
        }
        if base_url:
            kwargs["base_url"] = base_url
        self.llm = ChatOllama(**kwargs)

    @classmethod
    def from_settings(cls) -> "OllamaChatModel":
        return cls(
            model=settings.agent_model,
            base_url=settings.ollama_base_url,
            temperature=settings.agent_temperature,
            max_tokens=settings.agent_max_tokens,
            timeout=settings.model_timeout_seconds,
        )

    async def invoke(
        self,
        messages: Sequence[BaseMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AIMessage:
        runnable = self.llm.bind_tools(tools) if tools else self.llm
        try:
            response = await asyncio.wait_for(runnable.ainvoke(list(messages)), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Model {self.model_name} timed out after {self.timeout}s")
            raise ModelTimeoutError(self.timeout) from e
        if not isinstance(response, AIMessage):
            response = AIMessage(content=str(getattr(response, "content", response)))
        return response


def message_text(message: Optional[BaseMessage]) -> str:
    """Plain text of a model message (content may be a list of parts)."""
    if message is None:
        return ""
    content = message.content
    if isinstance(content, str):
        return content.strip()
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts).strip()


def tool_calls_from(message: AIMessage) -> List[ToolCall]:
    calls = []
    for raw in getattr(message, "tool_calls", None) or []:
        calls.append(ToolCall(name=raw.get("name", ""), args=raw.get("args") or {}, id=raw.get("id")))
    return calls


def parse_json_object(raw_output: str) -> Optional[Dict[str, Any]]:
    """
    Extract a JSON object from model output.

    Accepts bare JSON, JSON inside a code fence, or JSON surrounded by prose.
    Truncated objects get one repair attempt with a closing brace.
    Returns None when nothing usable is found.
    """
    cleaned = (raw_output or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
        cleaned = cleaned.strip()
    if not cleaned.startswith("{"):
        start = cleaned.find("{")
        if start == -1:
            return None
        cleaned = cleaned[start:]
    end = cleaned.rfind("}")
    candidates = [cleaned[: end + 1]] if end != -1 else []
    # Attempt to repair truncated JSON (common with small local models)
    candidates.extend([cleaned, cleaned + "}"])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


async def ask_json(model: ChatModel, system_prompt: str, user_prompt: str) -> Optional[Dict[str, Any]]:
    """Single JSON-only model call. Returns the parsed object or None."""
    try:
        response = await model.invoke([SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)])
    except Exception as e:
        logger.warning(f"JSON model call failed: {e}")
        return None
    parsed = parse_json_object(message_text(response))
    if parsed is None:
        logger.warning("Model returned no usable JSON object")
    return parsed
