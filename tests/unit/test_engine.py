"""Unit tests for the engine composition root."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any

import pytest

from agent_skill_engine import EngineSettings, SkillEngine
from agent_skill_engine.skills.contracts import SkillCategory, SkillInput, SkillOutput, StatusCode
from agent_skill_engine.skills.executor import ExecutionEvent
from agent_skill_engine.workflow.models import ExecutionStatus
from agent_skill_engine.workflow.state import InMemoryStateStore, JsonFileStateStore

DEMAND_WORKFLOW = {
    "name": "demand",
    "initialStep": "collect",
    "steps": [
        {"skill": "collect", "onSuccess": "report"},
        {"skill": "report"},
    ],
}


@pytest.fixture
def engine(engine_settings: EngineSettings) -> Iterator[SkillEngine]:
    instance = SkillEngine(engine_settings, setup_logging=False)
    yield instance
    instance.close()


def test_engine_wires_components_from_settings(engine: SkillEngine) -> None:
    assert isinstance(engine.state.store, JsonFileStateStore)
    assert engine.executor.options.timeout == 2.0
    assert engine.executor.options.max_retries == 1
    assert engine.cache.max_size == engine.settings.cache_max_size


def test_memory_backend(engine_settings: EngineSettings) -> None:
    settings = engine_settings.model_copy(update={"state_backend": "memory"})
    engine = SkillEngine(settings, setup_logging=False)
    try:
        assert isinstance(engine.state.store, InMemoryStateStore)
    finally:
        engine.close()


def test_run_skill_uses_configured_retries(engine: SkillEngine, make_skill: Any) -> None:
    skill = make_skill("flaky", [RuntimeError("down")], category=SkillCategory.IO)
    engine.register_skill(skill)

    result = asyncio.run(engine.run_skill("flaky", SkillInput.for_task("t", trace_id="t-1")))

    assert result.code == StatusCode.FATAL_FAILURE
    assert len(skill.calls) == 2


def test_execute_registered_workflow_by_name(engine: SkillEngine, make_skill: Any) -> None:
    engine.register_skills([make_skill("collect"), make_skill("report")])
    engine.register_workflow(DEMAND_WORKFLOW)

    result = asyncio.run(engine.execute("demand", SkillInput.for_task("demand", trace_id="t-1")))

    assert result.ok
    assert result.data["execution"]["steps_executed"] == ["collect", "report"]


def test_execute_unknown_workflow_name(engine: SkillEngine) -> None:
    result = asyncio.run(engine.execute("nope", SkillInput.for_task("t", trace_id="t-1")))

    assert result.code == StatusCode.FATAL_FAILURE
    assert result.message == 'WORKFLOW_NOT_FOUND: Workflow "nope" is not registered'


def test_pause_and_continue_across_engines(
    engine_settings: EngineSettings, make_skill: Any
) -> None:
    events: list[ExecutionEvent] = []
    first = SkillEngine(engine_settings, on_event=events.append, setup_logging=False)
    first.register_skills(
        [make_skill("collect", [SkillOutput.needs_input("Which market?")]), make_skill("report")]
    )
    paused = asyncio.run(
        first.execute(DEMAND_WORKFLOW, SkillInput.for_task("demand", trace_id="run-1"))
    )
    first.close()

    assert paused.code == StatusCode.NEEDS_INPUT
    assert [e.type for e in events] == ["skill.start", "skill.success"]

    report = make_skill("report")
    second = SkillEngine(engine_settings, setup_logging=False)
    try:
        second.register_skills([make_skill("collect"), report])
        second.register_workflow(DEMAND_WORKFLOW)

        summaries = asyncio.run(second.list_executions())
        assert [(s.trace_id, s.status) for s in summaries] == [("run-1", ExecutionStatus.PAUSED)]

        result = asyncio.run(second.continue_execution("run-1", "Nordics"))
        assert result.ok
        assert report.calls[0].context.writable["userInput"] == "Nordics"

        rejected = asyncio.run(second.resume("run-1"))
        assert rejected.code == StatusCode.RETRYABLE_FAILURE
    finally:
        second.close()


def test_engine_as_context_manager_closes_cache(engine_settings: EngineSettings) -> None:
    with SkillEngine(engine_settings, setup_logging=False) as engine:
        sweeper = engine.cache._sweeper
        assert sweeper is not None and sweeper.is_alive()

    assert not sweeper.is_alive()
