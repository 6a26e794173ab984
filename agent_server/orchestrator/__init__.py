"""
Orchestration of model-proposed tool calls: execution, verification and the execution log.
"""
from .execution_log import ExecutionLogRepository, InMemoryExecutionLog
from .executor import ToolExecutor, normalize_date, normalize_phone, normalize_time
from .verifier import StateVerifier, VerificationResult
from .orchestrator import AgentOrchestrator, TurnContext

__all__ = [
    "ExecutionLogRepository",
    "InMemoryExecutionLog",
    "ToolExecutor",
    "normalize_date",
    "normalize_phone",
    "normalize_time",
    "StateVerifier",
    "VerificationResult",
    "AgentOrchestrator",
    "TurnContext",
]
