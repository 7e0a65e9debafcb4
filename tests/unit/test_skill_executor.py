"""Unit tests for the skill executor (lookup, timeout, retry, hooks)."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from agent_skill_engine.skills.contracts import SkillInput, SkillOutput, StatusCode
from agent_skill_engine.skills.executor import (
    ExecutionContext,
    ExecutionEvent,
    ExecutionOptions,
    SkillExecutor,
)
from agent_skill_engine.skills.registry import SkillRegistry


def test_unknown_skill_returns_fatal(skill_executor: SkillExecutor, make_input: Any) -> None:
    result = asyncio.run(skill_executor.execute("nope", make_input()))

    assert result.code == StatusCode.FATAL_FAILURE
    assert result.message == 'SKILL_NOT_FOUND: Skill "nope" not found'


def test_success_passes_output_through(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    registry.register(make_skill("echo", [SkillOutput.success({"x": 1}, "done")]))

    result = asyncio.run(skill_executor.execute("echo", make_input()))

    assert result.ok
    assert result.data == {"x": 1}
    assert result.message == "done"


def test_mapping_output_is_coerced(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    registry.register(
        make_skill("plain", [lambda _: {"code": 400, "data": {}, "message": "try later"}])
    )

    result = asyncio.run(skill_executor.execute("plain", make_input()))

    assert isinstance(result, SkillOutput)
    assert result.code == StatusCode.RETRYABLE_FAILURE


def test_invalid_input_is_rejected_before_running(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    skill = make_skill("echo")
    registry.register(skill)
    inp = make_input()
    inp.snapshot_path = ""

    result = asyncio.run(skill_executor.execute("echo", inp))

    assert result.code == StatusCode.FATAL_FAILURE
    assert result.message.startswith("SKILL_INVALID_INPUT:")
    assert skill.calls == []


@pytest.mark.parametrize("failures", [0, 1, 3])
def test_exceptions_are_retried_until_success(
    registry: SkillRegistry,
    skill_executor: SkillExecutor,
    make_skill: Any,
    make_input: Any,
    failures: int,
) -> None:
    script: list[Any] = [RuntimeError("boom")] * failures + [SkillOutput.success()]
    skill = make_skill("flaky", script)
    registry.register(skill)

    result = asyncio.run(skill_executor.execute("flaky", make_input(), max_retries=3))

    assert result.ok
    assert len(skill.calls) == failures + 1


def test_exhausted_retries_report_attempt_count(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    skill = make_skill("broken", [RuntimeError("boom")])
    registry.register(skill)

    result = asyncio.run(skill_executor.execute("broken", make_input(), max_retries=2))

    assert result.code == StatusCode.FATAL_FAILURE
    assert result.message == (
        'SKILL_EXECUTION_FAILED: Skill "broken" failed after 3 attempt(s): boom'
    )
    assert result.data == {"attempts": 3, "error": "boom"}
    assert len(skill.calls) == 3


def test_business_failures_are_not_retried(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    skill = make_skill("busy", [SkillOutput.retryable("rate limited")])
    registry.register(skill)

    result = asyncio.run(skill_executor.execute("busy", make_input()))

    assert result.code == StatusCode.RETRYABLE_FAILURE
    assert len(skill.calls) == 1


def test_invalid_output_is_fatal_and_not_retried(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    skill = make_skill("bad", [lambda _: {"code": 201, "data": {}, "message": "odd"}])
    registry.register(skill)

    result = asyncio.run(skill_executor.execute("bad", make_input()))

    assert result.code == StatusCode.FATAL_FAILURE
    assert result.message.startswith('SKILL_INVALID_OUTPUT: Skill "bad" output validation failed')
    assert len(skill.calls) == 1


def test_timeout_counts_as_failed_attempt(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    skill = make_skill("slow", delay=0.2)
    registry.register(skill)

    result = asyncio.run(
        skill_executor.execute("slow", make_input(), timeout=0.01, max_retries=1)
    )

    assert result.code == StatusCode.FATAL_FAILURE
    assert "failed after 2 attempt(s)" in result.message
    assert "SKILL_TIMEOUT" in result.data["error"]
    assert len(skill.calls) == 2


def test_skill_receives_a_copy_of_the_input(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    def mutate(inp: SkillInput) -> SkillOutput:
        inp.context.writable["touched"] = True
        return SkillOutput.success()

    registry.register(make_skill("mutator", [mutate]))
    inp = make_input()

    asyncio.run(skill_executor.execute("mutator", inp))

    assert "touched" not in inp.context.writable


def test_hooks_run_and_failing_hooks_are_ignored(
    registry: SkillRegistry, make_skill: Any, make_input: Any
) -> None:
    seen: list[str] = []
    errors: list[tuple[str, int]] = []

    def before(inp: SkillInput) -> None:
        seen.append(f"before:{inp.trace_id}")
        raise ValueError("hook bug")

    async def after(out: SkillOutput) -> None:
        seen.append(f"after:{int(out.code)}")

    def on_error(exc: BaseException, ctx: ExecutionContext) -> None:
        errors.append((str(exc), ctx.attempt))

    registry.register(make_skill("flaky", [RuntimeError("first"), SkillOutput.success()]))
    executor = SkillExecutor(
        registry,
        ExecutionOptions(
            timeout=1.0,
            max_retries=1,
            on_before_execute=before,
            on_after_execute=after,
            on_error=on_error,
        ),
    )

    result = asyncio.run(executor.execute("flaky", make_input()))

    assert result.ok
    assert seen == ["before:trace-1", "before:trace-1", "after:200"]
    assert errors == [("first", 1)]


def test_events_are_emitted_in_order(
    registry: SkillRegistry, make_skill: Any, make_input: Any
) -> None:
    events: list[ExecutionEvent] = []
    registry.register(make_skill("flaky", [RuntimeError("first"), SkillOutput.success()]))
    executor = SkillExecutor(
        registry, ExecutionOptions(timeout=1.0, max_retries=2), on_event=events.append
    )

    asyncio.run(executor.execute("flaky", make_input()))

    assert [e.type for e in events] == [
        "skill.start",
        "skill.failure",
        "skill.retry",
        "skill.start",
        "skill.success",
    ]
    assert events[-1].attempt == 2
    assert events[-1].details["code"] == 200


def test_set_options_ignores_none(registry: SkillRegistry) -> None:
    executor = SkillExecutor(registry, ExecutionOptions(timeout=5.0, max_retries=1))

    executor.set_options(timeout=None, max_retries=4)

    assert executor.options.timeout == 5.0
    assert executor.options.max_retries == 4


def test_execute_many_keeps_call_order(
    registry: SkillRegistry, skill_executor: SkillExecutor, make_skill: Any, make_input: Any
) -> None:
    registry.register_many(
        [
            make_skill("slow", [SkillOutput.success({"n": 1})], delay=0.05),
            make_skill("fast", [SkillOutput.success({"n": 2})]),
        ]
    )

    calls = [
        ("slow", make_input("t-1")),
        ("missing", make_input("t-2")),
        ("fast", make_input("t-3")),
    ]
    results = asyncio.run(skill_executor.execute_many(calls))

    assert [r.code for r in results] == [
        StatusCode.SUCCESS,
        StatusCode.FATAL_FAILURE,
        StatusCode.SUCCESS,
    ]
    assert results[0].data == {"n": 1}
    assert results[2].data == {"n": 2}
