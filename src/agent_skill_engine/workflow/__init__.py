"""Workflow definitions, persistence and the step-by-step executor.

Executions are persisted after every step so that a paused or interrupted
run can be resumed by trace id, possibly in another process.
"""

from agent_skill_engine.workflow.executor import WorkflowExecutor
from agent_skill_engine.workflow.models import (
    ExecutionStatus,
    ExecutionSummary,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
)
from agent_skill_engine.workflow.parser import WorkflowParser
from agent_skill_engine.workflow.state import (
    InMemoryStateStore,
    JsonFileStateStore,
    StateStore,
    WorkflowStateManager,
)

__all__ = [
    "ExecutionStatus",
    "ExecutionSummary",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "StateStore",
    "Workflow",
    "WorkflowExecution",
    "WorkflowExecutor",
    "WorkflowParser",
    "WorkflowStateManager",
    "WorkflowStep",
]
