"""taskrelay: Task-graph coordination and handoff validation for agent workflows."""

from .contracts import ExecutionState, Step, StepStatus, Workflow
from .coordinator import Dispatch, Escalate, EventResult, Retry, WorkflowCoordinator
from .escalation import RetryEscalationController
from .handoff import CompleteOutcome, HandoffOutcome, HandoffValidator, MalformedOutcome
from .persistence import get_store
from .resolver import DependencyResolver
from .scheduler import ExecutionScheduler
from .transitions import StatusTransitioner

__version__ = "0.1.0"
__all__ = [
    "Step",
    "StepStatus",
    "ExecutionState",
    "Workflow",
    "DependencyResolver",
    "ExecutionScheduler",
    "StatusTransitioner",
    "HandoffValidator",
    "CompleteOutcome",
    "HandoffOutcome",
    "MalformedOutcome",
    "RetryEscalationController",
    "WorkflowCoordinator",
    "Dispatch",
    "Retry",
    "Escalate",
    "EventResult",
    "get_store",
]
