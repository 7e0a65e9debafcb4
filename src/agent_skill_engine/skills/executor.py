"""Skill executor: the single entry point for running one skill.

The executor looks the skill up, races each attempt against a timeout,
checks the returned output against the contract and retries attempts that
raised. Whatever happens, callers get a :class:`SkillOutput` back.

Known limitation: a timed-out skill is not interrupted. Its task keeps
running in the background until it finishes or cooperatively observes
cancellation, so skills with side effects may complete after the executor
has already reported (and possibly retried) them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from agent_skill_engine.errors import EngineError, ErrorCode, ErrorRecoverable

from .contracts import Skill, SkillInput, SkillOutput
from .registry import SkillRegistry
from .validator import SkillValidator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutionContext:
    """Per-call bookkeeping handed to the ``on_error`` hook."""

    trace_id: str
    skill_name: str
    max_retries: int
    start_time: float = field(default_factory=time.monotonic)
    retry_count: int = 0

    @property
    def attempt(self) -> int:
        return self.retry_count + 1


@dataclass(frozen=True, slots=True)
class ExecutionEvent:
    type: str
    skill: str
    trace_id: str
    attempt: int
    details: dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[ExecutionEvent], None]


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Options for one skill invocation.

    Hooks may be plain functions or coroutine functions. They run around
    every attempt; a failing hook is logged and otherwise ignored.
    """

    timeout: float | None = 60.0
    max_retries: int = 3
    validate_input: bool = True
    on_before_execute: Callable[[SkillInput], Any] | None = None
    on_after_execute: Callable[[SkillOutput], Any] | None = None
    on_error: Callable[[BaseException, ExecutionContext], Any] | None = None

    def merged(self, **overrides: Any) -> ExecutionOptions:
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


class SkillExecutor:
    def __init__(
        self,
        registry: SkillRegistry,
        options: ExecutionOptions | None = None,
        *,
        validator: SkillValidator | None = None,
        on_event: EventListener | None = None,
    ) -> None:
        self._registry = registry
        self._validator = validator or SkillValidator()
        self.options = options or ExecutionOptions()
        self._on_event = on_event

    def set_options(self, **overrides: Any) -> None:
        self.options = self.options.merged(**overrides)

    async def execute(
        self,
        skill_name: str,
        input: SkillInput,
        options: ExecutionOptions | None = None,
        **overrides: Any,
    ) -> SkillOutput:
        """Run ``skill_name`` against ``input``.

        Keyword overrides (``timeout``, ``max_retries``, hooks) are applied on
        top of ``options`` or the executor defaults.
        """

        opts = (options or self.options).merged(**overrides)
        trace_id = input.trace_id

        skill = self._registry.get(skill_name)
        if skill is None:
            self._emit("skill.failure", skill_name, trace_id, 0, error="not found")
            return _error_output(ErrorCode.SKILL_NOT_FOUND, f'Skill "{skill_name}" not found')

        if opts.validate_input:
            report = self._validator.validate_input(input)
            if not report.valid:
                self._emit("skill.failure", skill_name, trace_id, 0, errors=report.errors)
                return _error_output(
                    ErrorCode.SKILL_INVALID_INPUT,
                    f'Invalid input for skill "{skill_name}": {"; ".join(report.errors)}',
                    errors=report.errors,
                )

        ctx = ExecutionContext(
            trace_id=trace_id, skill_name=skill_name, max_retries=opts.max_retries
        )
        last_error: BaseException | None = None

        while True:
            self._emit("skill.start", skill_name, trace_id, ctx.attempt)
            attempt_input = input.model_copy(deep=True)
            try:
                await _call_hook(opts.on_before_execute, attempt_input)
                raw = await self._invoke(skill, attempt_input, opts.timeout)
            except Exception as e:
                last_error = e
                logger.error(
                    f'Skill "{skill_name}" raised: {e}',
                    extra={"trace_id": trace_id, "attempt": ctx.attempt},
                )
                self._emit("skill.failure", skill_name, trace_id, ctx.attempt, error=str(e))
                await _call_hook(opts.on_error, e, ctx)

                if ctx.retry_count < opts.max_retries:
                    ctx.retry_count += 1
                    self._emit("skill.retry", skill_name, trace_id, ctx.attempt)
                    logger.info(
                        f'Retrying skill "{skill_name}", '
                        f"retry {ctx.retry_count}/{opts.max_retries}",
                        extra={"trace_id": trace_id},
                    )
                    continue
                break

            report = self._validator.validate_output(raw)
            if not report.valid:
                logger.warning(
                    f'Skill "{skill_name}" returned an invalid output',
                    extra={"trace_id": trace_id, "errors": report.errors},
                )
                self._emit("skill.failure", skill_name, trace_id, ctx.attempt, errors=report.errors)
                return _error_output(
                    ErrorCode.SKILL_INVALID_OUTPUT,
                    f'Skill "{skill_name}" output validation failed: {"; ".join(report.errors)}',
                    errors=report.errors,
                )

            output = self._validator.coerce_output(raw)
            await _call_hook(opts.on_after_execute, output)
            self._emit(
                "skill.success",
                skill_name,
                trace_id,
                ctx.attempt,
                code=int(output.code),
                duration=time.monotonic() - ctx.start_time,
            )
            logger.debug(
                f'Skill "{skill_name}" finished',
                extra={"trace_id": trace_id, "code": int(output.code)},
            )
            return output

        attempts = ctx.attempt
        return _error_output(
            ErrorCode.SKILL_EXECUTION_FAILED,
            f'Skill "{skill_name}" failed after {attempts} attempt(s): {last_error}',
            attempts=attempts,
            error=str(last_error),
        )

    async def execute_many(
        self,
        calls: Sequence[tuple[str, SkillInput]],
        options: ExecutionOptions | None = None,
        **overrides: Any,
    ) -> list[SkillOutput]:
        """Run several invocations concurrently; results keep the call order."""

        return list(
            await asyncio.gather(
                *(self.execute(name, inp, options, **overrides) for name, inp in calls)
            )
        )

    async def _invoke(self, skill: Skill, input: SkillInput, timeout: float | None) -> Any:
        result = skill.run(input)
        if not inspect.isawaitable(result):
            return result

        task = asyncio.ensure_future(result)
        if not timeout or timeout <= 0:
            return await task

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except TimeoutError:
            task.add_done_callback(_log_orphan_result)
            raise EngineError(
                f'Skill "{skill.meta.name}" timed out after {timeout}s',
                code=ErrorCode.SKILL_TIMEOUT,
                recoverable=ErrorRecoverable.YES,
            ) from None

    def _emit(self, type_: str, skill: str, trace_id: str, attempt: int, **details: Any) -> None:
        event = ExecutionEvent(
            type=type_, skill=skill, trace_id=trace_id, attempt=attempt, details=details
        )
        logger.debug(type_, extra={"trace_id": trace_id, "skill": skill, "attempt": attempt})
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Execution event listener failed", extra={"event": type_})


def _error_output(code: ErrorCode, message: str, **data: Any) -> SkillOutput:
    return SkillOutput.fatal(f"{code.value}: {message}", data)


async def _call_hook(hook: Callable[..., Any] | None, *args: Any) -> None:
    if hook is None:
        return
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Execution hook failed", extra={"hook": getattr(hook, "__name__", "hook")})


def _log_orphan_result(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"Timed-out skill finished with an error: {exc}")
    else:
        logger.info("Timed-out skill finished after its deadline")
