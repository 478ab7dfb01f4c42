"""triageflow: durable step orchestration for incident-triage agents."""

from .agents import AgentInvoker, CallableInvoker, PydanticAIInvoker
from .contracts import WorkflowCommand
from .engine import WorkflowEngine
from .errors import (
    ParseError,
    PersistenceUnavailable,
    RecoveryExhausted,
    StepExecutionError,
    TerminalStateViolation,
    TriageFlowError,
    WorkflowAlreadyActive,
)
from .models import ConversationEntry, StateView, WorkflowState, WorkflowStatus
from .persistence import get_repository
from .pipeline import build_triage_registry
from .steps import RecoveryPolicy, StepDefinition, StepId, StepOutcome, StepRegistry
from .transports import get_transport
from .worker import WorkflowWorker

__version__ = "0.1.0"
__all__ = [
    "AgentInvoker",
    "CallableInvoker",
    "ConversationEntry",
    "ParseError",
    "PersistenceUnavailable",
    "PydanticAIInvoker",
    "RecoveryExhausted",
    "RecoveryPolicy",
    "StateView",
    "StepDefinition",
    "StepExecutionError",
    "StepId",
    "StepOutcome",
    "StepRegistry",
    "TerminalStateViolation",
    "TriageFlowError",
    "WorkflowAlreadyActive",
    "WorkflowCommand",
    "WorkflowEngine",
    "WorkflowState",
    "WorkflowStatus",
    "WorkflowWorker",
    "build_triage_registry",
    "get_repository",
    "get_transport",
]
