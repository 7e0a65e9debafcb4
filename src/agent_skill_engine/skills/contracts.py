"""The uniform input/output contract every skill satisfies.

A skill is a named unit of work exposing one coroutine, ``run(input) ->
output``. Skills never let an internal failure escape ``run``; they report it
through :class:`SkillOutput.code` instead.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class StatusCode(IntEnum):
    SUCCESS = 200
    NEEDS_INPUT = 300
    RETRYABLE_FAILURE = 400
    FATAL_FAILURE = 500


class SkillCategory(str, Enum):
    ASK = "ask"
    SEARCH = "search"
    ANALYZE = "analyze"
    GENERATE = "generate"
    FORMAT = "format"
    IO = "io"
    OBSERVE = "observe"
    UTILITY = "utility"
    WORKFLOW = "workflow"
    PLAN = "plan"


@dataclass(frozen=True, slots=True)
class SkillMeta:
    name: str
    description: str = ""
    category: SkillCategory = SkillCategory.UTILITY
    version: str = "1.0.0"
    tags: tuple[str, ...] = field(default_factory=tuple)


class SkillContext(BaseModel):
    """Context handed to a skill.

    ``read_only`` holds facts produced by earlier steps and must not be
    mutated by the receiving skill. ``writable`` is scratch space any step may
    extend.
    """

    read_only: dict[str, Any] = Field(default_factory=dict)
    writable: dict[str, Any] = Field(default_factory=dict)


class TaskSpec(BaseModel):
    task_id: str
    task_name: str
    target: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    timeout: float = Field(default=60.0, description="Seconds")
    max_retry: int = 3


class SkillInput(BaseModel):
    config: dict[str, Any] = Field(default_factory=dict)
    context: SkillContext = Field(default_factory=SkillContext)
    task: TaskSpec
    snapshot_path: str = "snapshots"
    trace_id: str

    @classmethod
    def for_task(
        cls,
        task_name: str,
        *,
        params: dict[str, Any] | None = None,
        trace_id: str | None = None,
        target: str = "",
        config: dict[str, Any] | None = None,
        writable: dict[str, Any] | None = None,
        snapshot_path: str = "snapshots",
    ) -> SkillInput:
        """Build an input for a fresh task with generated ids."""

        trace = trace_id or uuid.uuid4().hex
        return cls(
            config=dict(config or {}),
            context=SkillContext(writable=dict(writable or {})),
            task=TaskSpec(
                task_id=f"{task_name}-{uuid.uuid4().hex[:8]}",
                task_name=task_name,
                target=target,
                params=dict(params or {}),
            ),
            snapshot_path=snapshot_path,
            trace_id=trace,
        )


class SkillOutput(BaseModel):
    model_config = ConfigDict(use_enum_values=False)

    code: StatusCode
    data: dict[str, Any] = Field(default_factory=dict)
    message: str = Field(min_length=1)
    next_action: str | None = None
    need_rollback: bool | None = None

    @property
    def ok(self) -> bool:
        return self.code == StatusCode.SUCCESS

    @classmethod
    def success(cls, data: dict[str, Any] | None = None, message: str = "OK") -> SkillOutput:
        return cls(code=StatusCode.SUCCESS, data=dict(data or {}), message=message)

    @classmethod
    def needs_input(cls, message: str, data: dict[str, Any] | None = None) -> SkillOutput:
        return cls(code=StatusCode.NEEDS_INPUT, data=dict(data or {}), message=message)

    @classmethod
    def retryable(cls, message: str, data: dict[str, Any] | None = None) -> SkillOutput:
        return cls(code=StatusCode.RETRYABLE_FAILURE, data=dict(data or {}), message=message)

    @classmethod
    def fatal(cls, message: str, data: dict[str, Any] | None = None) -> SkillOutput:
        return cls(code=StatusCode.FATAL_FAILURE, data=dict(data or {}), message=message)


@runtime_checkable
class Skill(Protocol):
    """Anything with skill metadata and an async ``run``."""

    meta: SkillMeta

    async def run(self, input: SkillInput) -> SkillOutput: ...


class BaseSkill(ABC):
    """Convenience base class for skills.

    Subclasses implement :meth:`execute`; :meth:`run` turns any exception it
    raises into a fatal output so nothing escapes the skill boundary.
    """

    meta: SkillMeta

    @abstractmethod
    async def execute(self, input: SkillInput) -> SkillOutput: ...

    async def run(self, input: SkillInput) -> SkillOutput:
        try:
            return await self.execute(input)
        except Exception as e:
            logger.exception(
                "Skill raised", extra={"skill": self.meta.name, "trace_id": input.trace_id}
            )
            return self.fatal_error(f"Execution error: {e}")

    def success(
        self, data: dict[str, Any] | None = None, message: str | None = None
    ) -> SkillOutput:
        return SkillOutput.success(data, message or f"{self.meta.name} completed")

    def need_input(
        self, data: dict[str, Any] | None = None, message: str | None = None
    ) -> SkillOutput:
        return SkillOutput.needs_input(message or f"{self.meta.name} needs user input", data)

    def retryable_error(self, message: str, data: dict[str, Any] | None = None) -> SkillOutput:
        return SkillOutput.retryable(f"[{self.meta.name}] {message}", data)

    def fatal_error(self, message: str, data: dict[str, Any] | None = None) -> SkillOutput:
        return SkillOutput.fatal(f"[{self.meta.name}] {message}", data)
