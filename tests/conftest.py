"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from agent_skill_engine.config import EngineSettings
from agent_skill_engine.skills.contracts import (
    SkillCategory,
    SkillInput,
    SkillMeta,
    SkillOutput,
)
from agent_skill_engine.skills.executor import ExecutionOptions, SkillExecutor
from agent_skill_engine.skills.registry import SkillRegistry
from agent_skill_engine.workflow.executor import WorkflowExecutor
from agent_skill_engine.workflow.state import InMemoryStateStore, WorkflowStateManager

Scripted = SkillOutput | BaseException | Callable[[SkillInput], Any]


class StubSkill:
    """A skill that replays scripted results.

    Each call consumes the next scripted item; the last one repeats. Items
    may be outputs, exceptions (raised) or callables taking the input.
    """

    def __init__(
        self,
        name: str,
        script: Sequence[Scripted] = (),
        *,
        category: SkillCategory = SkillCategory.UTILITY,
        description: str = "",
        tags: tuple[str, ...] = (),
        delay: float = 0.0,
    ) -> None:
        self.meta = SkillMeta(name=name, description=description, category=category, tags=tags)
        self.calls: list[SkillInput] = []
        self._script = list(script) or [SkillOutput.success(message=f"{name} done")]
        self._delay = delay

    async def run(self, input: SkillInput) -> Any:
        self.calls.append(input)
        if self._delay:
            await asyncio.sleep(self._delay)
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(input)
        return item


@pytest.fixture
def make_skill() -> type[StubSkill]:
    return StubSkill


@pytest.fixture
def make_input() -> Callable[..., SkillInput]:
    """Build a skill input with a fixed trace id unless one is given."""

    def _make(trace_id: str = "trace-1", **kwargs: Any) -> SkillInput:
        return SkillInput.for_task("test-task", trace_id=trace_id, **kwargs)

    return _make


@pytest.fixture
def registry() -> SkillRegistry:
    return SkillRegistry()


@pytest.fixture
def skill_executor(registry: SkillRegistry) -> SkillExecutor:
    return SkillExecutor(registry, ExecutionOptions(timeout=2.0, max_retries=3))


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def workflow_executor(
    registry: SkillRegistry, skill_executor: SkillExecutor, state_store: InMemoryStateStore
) -> WorkflowExecutor:
    return WorkflowExecutor(
        registry,
        skill_executor,
        WorkflowStateManager(state_store),
        default_timeout=2.0,
    )


@pytest.fixture
def engine_settings(tmp_path: Path) -> EngineSettings:
    """Provide test engine settings backed by a temporary state directory."""
    return EngineSettings(
        log_level="DEBUG",
        default_timeout=2.0,
        max_retries=1,
        state_backend="file",
        state_path=tmp_path / "workflow-state",
        state_save_delay=0.0,
    )
