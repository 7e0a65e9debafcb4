"""Workflow executor: drives a workflow graph step by step.

State machine of one execution::

    running -> paused | success | failed
    paused  -> running   (resume / continue_execution)

Steps run strictly one after another. Each step is delegated to the skill
executor and its output code decides the transition:

- 200: merge ``data`` into the context and follow ``on_success``
- 300: pause; the run is persisted and can be resumed by trace id
- 400: follow ``on_fail`` (a business failure is a graph transition)
- 500: follow ``on_fail`` when the step has one, otherwise fail the run

Every step visit gets a fresh executor retry budget. To keep ``on_fail``
loop-backs finite, a step may be visited at most ``max_visits`` times within
one execution. Steps that leave it unset use the configured
``max_step_visits``, or ``retry + 1`` when neither is given.

Public entry points never raise; they always return a :class:`SkillOutput`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from agent_skill_engine.config import DEFAULT_READ_ONLY_PROJECTIONS
from agent_skill_engine.errors import EngineError, ErrorCode
from agent_skill_engine.skills.contracts import SkillInput, SkillOutput, StatusCode
from agent_skill_engine.skills.executor import SkillExecutor
from agent_skill_engine.skills.registry import SkillRegistry

from .models import ExecutionStatus, Workflow, WorkflowExecution, WorkflowStep
from .parser import WorkflowParser
from .state import InMemoryStateStore, WorkflowStateManager

logger = logging.getLogger(__name__)


def _fatal(code: ErrorCode, message: str, **data: Any) -> SkillOutput:
    return SkillOutput.fatal(f"{code.value}: {message}", data)


class WorkflowExecutor:
    def __init__(
        self,
        registry: SkillRegistry,
        executor: SkillExecutor,
        state_manager: WorkflowStateManager | None = None,
        *,
        parser: WorkflowParser | None = None,
        default_timeout: float = 60.0,
        auto_save_state: bool = True,
        max_step_visits: int | None = None,
        read_only_projections: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._executor = executor
        self.state_manager = state_manager or WorkflowStateManager(InMemoryStateStore())
        self._parser = parser or WorkflowParser()
        self._default_timeout = default_timeout
        self._auto_save_state = auto_save_state
        self._max_step_visits = max_step_visits
        if read_only_projections is None:
            read_only_projections = DEFAULT_READ_ONLY_PROJECTIONS
        self._projections = dict(read_only_projections)
        self._workflows: dict[str, Workflow] = {}

    def register_workflow(self, workflow: Workflow | Mapping[str, Any]) -> Workflow:
        """Make a workflow resolvable by name for later ``resume`` calls."""

        parsed = self._parser.parse_object(workflow)
        self._workflows[parsed.name] = parsed
        return parsed

    def get_workflow(self, name: str) -> Workflow | None:
        return self._workflows.get(name)

    async def execute(
        self, workflow: Workflow | Mapping[str, Any], input: SkillInput
    ) -> SkillOutput:
        try:
            parsed = self._parser.parse_object(workflow)
        except EngineError as e:
            logger.error(f"Workflow rejected: {e.message}", extra={"trace_id": input.trace_id})
            return _fatal(ErrorCode.WORKFLOW_INVALID, e.message)

        report = self._parser.validate(parsed)
        if not report.valid:
            logger.error(
                f"Workflow validation failed: {parsed.name}",
                extra={"trace_id": input.trace_id, "errors": report.errors},
            )
            return _fatal(
                ErrorCode.WORKFLOW_INVALID,
                f"Workflow validation failed: {', '.join(report.errors)}",
                errors=report.errors,
            )

        self._workflows[parsed.name] = parsed

        task = input.task
        if not task.target:
            task = task.model_copy(update={"target": parsed.name})
        execution = WorkflowExecution(
            workflow_name=parsed.name,
            workflow_version=parsed.version,
            trace_id=input.trace_id,
            current_step=parsed.initial_step,
            context=input.context.model_copy(deep=True),
            task=task.model_copy(deep=True),
            config=dict(input.config),
            snapshot_path=input.snapshot_path,
        )

        logger.info(f"Starting workflow: {parsed.name}", extra={"trace_id": execution.trace_id})
        if self._auto_save_state:
            await self._save(execution)
        return await self._run(parsed, execution)

    async def resume(
        self,
        trace_id: str,
        additional_input: Mapping[str, Any] | None = None,
        *,
        workflow: Workflow | None = None,
    ) -> SkillOutput:
        """Continue a paused execution from the transition of its pausing step.

        ``additional_input`` is merged into ``context.writable`` before the
        next step runs. Executions that are not paused are rejected with a
        400 output and left untouched.
        """

        try:
            execution = await self.state_manager.load(trace_id)
        except Exception as e:
            logger.error(f"Failed to load workflow state: {e}", extra={"trace_id": trace_id})
            return _fatal(
                ErrorCode.WORKFLOW_RESUME_FAILED, f"Could not load execution {trace_id}: {e}"
            )

        if execution is None:
            return _fatal(
                ErrorCode.WORKFLOW_RESUME_FAILED,
                f"No saved execution found for trace id: {trace_id}",
            )

        if execution.status != ExecutionStatus.PAUSED:
            return SkillOutput(
                code=StatusCode.RETRYABLE_FAILURE,
                data={"trace_id": trace_id, "status": execution.status.value},
                message=f"Cannot resume execution with status: {execution.status.value}",
            )

        definition = workflow or self._workflows.get(execution.workflow_name)
        if definition is None:
            return _fatal(
                ErrorCode.WORKFLOW_NOT_FOUND,
                f'Workflow "{execution.workflow_name}" is not registered',
            )
        report = self._parser.validate(definition)
        if not report.valid:
            return _fatal(
                ErrorCode.WORKFLOW_INVALID,
                f"Workflow validation failed: {', '.join(report.errors)}",
                errors=report.errors,
            )

        if additional_input:
            execution.context.writable.update(additional_input)
        execution.current_step = execution.pending_transition
        execution.pending_transition = None
        execution.status = ExecutionStatus.RUNNING

        logger.info(
            f"Resuming workflow: {execution.workflow_name}",
            extra={"trace_id": trace_id, "step": execution.current_step},
        )
        if self._auto_save_state:
            await self._save(execution)
        return await self._run(definition, execution)

    async def continue_execution(
        self, trace_id: str, user_input: Any, *, workflow: Workflow | None = None
    ) -> SkillOutput:
        """Answer a paused execution's request for input and continue it.

        The answer is stored under ``userInput`` in the writable context; a
        mapping answer is additionally merged key by key.
        """

        extra: dict[str, Any] = {"userInput": user_input}
        if isinstance(user_input, Mapping):
            extra.update(user_input)
        return await self.resume(trace_id, extra, workflow=workflow)

    async def _run(self, workflow: Workflow, execution: WorkflowExecution) -> SkillOutput:
        try:
            return await self._run_steps(workflow, execution)
        except Exception as e:
            logger.exception(
                f"Workflow crashed: {workflow.name}", extra={"trace_id": execution.trace_id}
            )
            return await self._fail(execution, f"Unexpected error: {e}")

    async def _run_steps(self, workflow: Workflow, execution: WorkflowExecution) -> SkillOutput:
        trace_id = execution.trace_id

        while execution.current_step is not None:
            step_name = execution.current_step
            step = workflow.get_step(step_name)
            if step is None:
                return await self._fail(execution, f'Step "{step_name}" not found')

            visits = execution.step_visits.get(step_name, 0) + 1
            limit = step.max_visits or self._max_step_visits or step.retry + 1
            if visits > limit:
                return await self._fail(
                    execution,
                    f'Step "{step_name}" did not succeed within {limit} visit(s)',
                    code=ErrorCode.WORKFLOW_STEP_FAILED,
                )
            execution.step_visits[step_name] = visits

            logger.debug(f"Executing workflow step: {step_name}", extra={"trace_id": trace_id})
            result = await self._executor.execute(
                step.skill,
                self._build_step_input(execution, step),
                timeout=self._default_timeout,
                max_retries=step.retry,
            )
            execution.steps_executed.append(step_name)

            if result.code == StatusCode.SUCCESS:
                self._merge_result(execution, result.data)
                execution.current_step = step.on_success

            elif result.code == StatusCode.NEEDS_INPUT:
                execution.context.writable.update(result.data)
                execution.status = ExecutionStatus.PAUSED
                execution.pending_transition = step.on_success
                await self._save(execution)
                logger.info(f"Workflow paused at step: {step_name}", extra={"trace_id": trace_id})
                return SkillOutput(
                    code=StatusCode.NEEDS_INPUT,
                    data={
                        "execution": execution.model_dump(mode="json"),
                        "result": result.model_dump(mode="json"),
                    },
                    message=f'Workflow paused at step "{step_name}": {result.message}',
                    next_action=result.next_action,
                )

            elif result.code == StatusCode.RETRYABLE_FAILURE:
                logger.warning(
                    f'Step "{step_name}" failed with retryable error: {result.message}',
                    extra={"trace_id": trace_id},
                )
                execution.error = result.message
                execution.current_step = step.on_fail

            else:
                if step.on_fail is None:
                    return await self._fail(execution, result.message)
                logger.error(
                    f'Step "{step_name}" failed, taking on_fail transition: {result.message}',
                    extra={"trace_id": trace_id, "on_fail": step.on_fail},
                )
                execution.error = result.message
                execution.current_step = step.on_fail

            if self._auto_save_state:
                await self._save(execution)

        execution.finish(ExecutionStatus.SUCCESS)
        await self._save(execution)
        logger.info(
            f"Workflow completed: {workflow.name}",
            extra={"trace_id": trace_id, "steps": len(execution.steps_executed)},
        )
        return SkillOutput.success(
            {
                "execution": execution.model_dump(mode="json"),
                "context": execution.context.model_dump(mode="json"),
            },
            f'Workflow "{workflow.name}" completed successfully',
        )

    def _build_step_input(self, execution: WorkflowExecution, step: WorkflowStep) -> SkillInput:
        task = execution.task
        if task is None:
            raise EngineError("Execution has no task", code=ErrorCode.WORKFLOW_RESUME_FAILED)
        return SkillInput(
            config=dict(execution.config),
            context=execution.context.model_copy(deep=True),
            task=task.model_copy(update={"params": {**task.params, **step.params}}, deep=True),
            snapshot_path=execution.snapshot_path,
            trace_id=execution.trace_id,
        )

    def _merge_result(self, execution: WorkflowExecution, data: Mapping[str, Any]) -> None:
        execution.context.writable.update(data)
        for source, target in self._projections.items():
            if data.get(source):
                execution.context.read_only[target] = data[source]

    async def _fail(
        self,
        execution: WorkflowExecution,
        message: str,
        *,
        code: ErrorCode | None = None,
    ) -> SkillOutput:
        error = f"{code.value}: {message}" if code is not None else message
        execution.finish(ExecutionStatus.FAILED, error=error)
        await self._save(execution)
        logger.error(
            f"Workflow failed: {execution.workflow_name}: {error}",
            extra={"trace_id": execution.trace_id},
        )
        return SkillOutput.fatal(
            f"Workflow failed: {error}", {"execution": execution.model_dump(mode="json")}
        )

    async def _save(self, execution: WorkflowExecution) -> None:
        try:
            await self.state_manager.save(execution)
        except Exception as e:
            logger.warning(
                f"Failed to save workflow state: {e}", extra={"trace_id": execution.trace_id}
            )
