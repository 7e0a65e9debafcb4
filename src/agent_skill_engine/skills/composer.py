"""Higher-order combinators over skills.

The composer is stateless and persists nothing. Each combinator works on a
deep copy of the caller's input so the caller's context is never mutated.
Skills are invoked directly (no executor timeout or retry). An exception
raised by a skill, or a return value that breaks the output contract, becomes
a fatal output for that skill only. Mapping returns are converted the same
way the executor converts them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any

from agent_skill_engine.errors import ErrorCode, SkillNotFoundError

from .contracts import Skill, SkillCategory, SkillInput, SkillMeta, SkillOutput, StatusCode
from .registry import SkillRegistry
from .validator import SkillValidator

logger = logging.getLogger(__name__)

_validator = SkillValidator()

Predicate = Callable[[SkillInput], bool | Awaitable[bool]]
LoopPredicate = Callable[[SkillInput, int], bool | Awaitable[bool]]


def merge_into_writable(input: SkillInput, data: dict[str, Any]) -> SkillInput:
    """Return a copy of ``input`` with ``data`` folded into ``context.writable``."""

    context = input.context.model_copy(
        update={"writable": {**input.context.writable, **data}}, deep=True
    )
    return input.model_copy(update={"context": context})


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _run_guarded(skill: Skill, input: SkillInput) -> SkillOutput:
    try:
        raw = await _resolve(skill.run(input))
    except Exception as e:
        logger.warning(
            f'Skill "{skill.meta.name}" raised inside a composition: {e}',
            extra={"trace_id": input.trace_id},
        )
        return SkillOutput.fatal(f"Skill execution error: {e}")

    report = _validator.validate_output(raw)
    if not report.valid:
        logger.warning(
            f'Skill "{skill.meta.name}" returned an invalid output inside a composition',
            extra={"trace_id": input.trace_id, "errors": report.errors},
        )
        return SkillOutput.fatal(
            f"{ErrorCode.SKILL_INVALID_OUTPUT.value}: "
            f'Skill "{skill.meta.name}" output validation failed: {"; ".join(report.errors)}',
            {"errors": report.errors},
        )
    return _validator.coerce_output(raw)


class SkillComposer:
    def __init__(self, registry: SkillRegistry) -> None:
        self._registry = registry

    def resolve(self, names: Iterable[str]) -> list[Skill]:
        """Look skills up by name, failing on the first unknown one."""

        skills: list[Skill] = []
        for name in names:
            skill = self._registry.get(name)
            if skill is None:
                raise SkillNotFoundError(name)
            skills.append(skill)
        return skills

    def compose(self, name: str, description: str, skills: Sequence[Skill]) -> Skill:
        return CompositeSkill(name=name, description=description, skills=skills)

    async def sequence(
        self,
        skills: Sequence[Skill],
        input: SkillInput,
        *,
        stop_on_fail: bool = True,
        merge_output: bool = True,
    ) -> list[SkillOutput]:
        """Run skills one at a time.

        With ``merge_output`` each result's ``data`` is folded into the next
        invocation's ``context.writable``. With ``stop_on_fail`` the first
        non-200 result ends the sequence.
        """

        results: list[SkillOutput] = []
        current = input.model_copy(deep=True)

        for skill in skills:
            logger.debug(f"Sequence step: {skill.meta.name}", extra={"trace_id": input.trace_id})
            result = await _run_guarded(skill, current)
            results.append(result)

            if result.code != StatusCode.SUCCESS:
                logger.warning(
                    f'Skill "{skill.meta.name}" failed in sequence',
                    extra={"trace_id": input.trace_id, "code": int(result.code)},
                )
                if stop_on_fail:
                    break

            if merge_output and result.data:
                current = merge_into_writable(current, result.data)

        return results

    async def parallel(self, skills: Sequence[Skill], input: SkillInput) -> list[SkillOutput]:
        """Run all skills concurrently against the same input.

        Each skill gets its own copy of the input. Results are returned in the
        order of ``skills``.
        """

        return list(
            await asyncio.gather(
                *(_run_guarded(skill, input.model_copy(deep=True)) for skill in skills)
            )
        )

    async def conditional(
        self,
        predicate: Predicate,
        if_skill: Skill,
        else_skill: Skill | None,
        input: SkillInput,
    ) -> SkillOutput:
        current = input.model_copy(deep=True)
        if await _resolve(predicate(current)):
            return await _run_guarded(if_skill, current)
        if else_skill is not None:
            return await _run_guarded(else_skill, current)
        return SkillOutput.success({"skipped": True}, "Condition not met, skipped")

    async def loop(
        self,
        max_iterations: int,
        skill: Skill,
        should_continue: LoopPredicate,
        input: SkillInput,
    ) -> list[SkillOutput]:
        """Re-run ``skill`` up to ``max_iterations`` times.

        ``should_continue`` is called after every iteration with the input of
        that iteration and its zero-based index. A non-200 result or a false
        predicate stops the loop.
        """

        results: list[SkillOutput] = []
        current = input.model_copy(deep=True)

        for iteration in range(max_iterations):
            logger.debug(
                f"Loop iteration {iteration + 1}/{max_iterations}: {skill.meta.name}",
                extra={"trace_id": input.trace_id},
            )
            result = await _run_guarded(skill, current)
            results.append(result)

            if result.code != StatusCode.SUCCESS:
                break
            if not await _resolve(should_continue(current, iteration)):
                break

            if result.data:
                current = merge_into_writable(current, result.data)

        return results


class CompositeSkill:
    """A skill that runs its children in order and stops at the first failure."""

    def __init__(self, *, name: str, description: str, skills: Sequence[Skill]) -> None:
        self.meta = SkillMeta(
            name=name, description=description, category=SkillCategory.UTILITY
        )
        self._skills = list(skills)

    async def run(self, input: SkillInput) -> SkillOutput:
        results: list[dict[str, Any]] = []

        for skill in self._skills:
            result = await _run_guarded(skill, input)
            results.append(result.model_dump(mode="json"))

            if result.code != StatusCode.SUCCESS:
                return SkillOutput(
                    code=result.code,
                    data={"results": results},
                    message=f'Composite skill failed at "{skill.meta.name}": {result.message}',
                )

        return SkillOutput.success(
            {"results": results}, f'Composite skill "{self.meta.name}" completed successfully'
        )
