"""Transform orchestration: classify, resolve, constrain, call, validate, retry."""

from .action_classifier import classify_action, detect_new_create, detect_topic_drift
from .execution_gate import ExecutionGate, generate_event_id
from .llm_executor import ExecutorModelCaller, LLMExecutor, normalize_request
from .session import OrchestratorSession, SessionResponse
from .state_manager import InMemoryStateStore, OrchestratorStateManager
from .transform_orchestrator import execute_simple, execute_transform


__all__ = [
    "classify_action",
    "detect_new_create",
    "detect_topic_drift",
    "ExecutionGate",
    "generate_event_id",
    "LLMExecutor",
    "ExecutorModelCaller",
    "normalize_request",
    "OrchestratorSession",
    "SessionResponse",
    "InMemoryStateStore",
    "OrchestratorStateManager",
    "execute_transform",
    "execute_simple",
]
