"""Workflow definitions and the persisted execution record."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from agent_skill_engine.skills.contracts import SkillContext, TaskSpec


class WorkflowStep(BaseModel):
    """One node of a workflow graph.

    Steps are addressed by their skill name. ``on_success`` / ``on_fail``
    name the next step, or are ``None`` for a terminal transition.

    ``retry`` bounds the executor retries of a single visit. ``max_visits``
    bounds how often the step may be entered within one execution, which is
    what limits ``on_fail`` loop-backs; when unset it falls back to the
    executor's ``max_step_visits`` and then to ``retry + 1``.
    """

    skill: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    on_success: str | None = None
    on_fail: str | None = None
    retry: int = Field(default=2, ge=0)
    max_visits: int | None = Field(default=None, ge=1)


class Workflow(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    version: str = "1.0.0"
    initial_step: str
    steps: list[WorkflowStep]

    def get_step(self, name: str) -> WorkflowStep | None:
        for step in self.steps:
            if step.skill == name:
                return step
        return None


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCESS, ExecutionStatus.FAILED)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class WorkflowExecution(BaseModel):
    """Mutable run record, persisted after every step and keyed by trace id.

    Besides the accumulated context, the record keeps the task, config and
    snapshot path of the driving input so a paused run can be rebuilt after a
    process restart.
    """

    workflow_name: str
    workflow_version: str = "1.0.0"
    trace_id: str
    current_step: str | None
    status: ExecutionStatus = ExecutionStatus.RUNNING

    context: SkillContext = Field(default_factory=SkillContext)
    task: TaskSpec | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    snapshot_path: str = "snapshots"

    steps_executed: list[str] = Field(default_factory=list)
    step_visits: dict[str, int] = Field(default_factory=dict)
    # Where a paused step continues once the missing input arrives.
    pending_transition: str | None = None

    start_time: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    end_time: datetime | None = None
    error: str | None = None

    def touch(self) -> None:
        self.updated_at = _utc_now()

    def finish(self, status: ExecutionStatus, error: str | None = None) -> None:
        self.status = status
        self.end_time = _utc_now()
        self.updated_at = self.end_time
        if error is not None:
            self.error = error


class ExecutionSummary(BaseModel):
    trace_id: str
    workflow_name: str
    status: ExecutionStatus
    current_step: str | None
    start_time: datetime
    updated_at: datetime
