"""Composition root wiring the engine components together."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from agent_skill_engine.config import EngineSettings
from agent_skill_engine.logging import configure_logging
from agent_skill_engine.skills.composer import SkillComposer
from agent_skill_engine.skills.contracts import Skill, SkillInput, SkillOutput
from agent_skill_engine.skills.executor import EventListener, ExecutionOptions, SkillExecutor
from agent_skill_engine.skills.registry import SkillRegistry
from agent_skill_engine.utils.cache import CacheManager
from agent_skill_engine.utils.retry import RetryConfig, RetryStrategy
from agent_skill_engine.workflow.executor import WorkflowExecutor
from agent_skill_engine.workflow.models import ExecutionSummary, Workflow
from agent_skill_engine.workflow.state import (
    InMemoryStateStore,
    JsonFileStateStore,
    StateStore,
    WorkflowStateManager,
)

logger = logging.getLogger(__name__)


class SkillEngine:
    """Owns the registry and every component that depends on it.

    The engine exposes the three driving entry points (``execute``,
    ``resume``, ``continue_execution``) a front end needs; everything else is
    reachable through its attributes.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        store: StateStore | None = None,
        on_event: EventListener | None = None,
        setup_logging: bool = True,
    ) -> None:
        """Initialise the engine.

        Args:
            settings: Engine settings. If None, loads from environment.
            store: State store override; defaults to the configured backend.
            on_event: Listener for skill execution events.
            setup_logging: Configure root logging from the settings.
        """
        self.settings = settings or EngineSettings()
        if setup_logging:
            configure_logging(self.settings.log_level, json_output=self.settings.log_json)

        self.registry = SkillRegistry()
        self.executor = SkillExecutor(
            self.registry,
            ExecutionOptions(
                timeout=self.settings.default_timeout,
                max_retries=self.settings.max_retries,
                validate_input=self.settings.validate_input,
            ),
            on_event=on_event,
        )
        self.composer = SkillComposer(self.registry)
        self.state = WorkflowStateManager(
            store or self._build_store(),
            retry=RetryStrategy(
                RetryConfig(
                    max_attempts=self.settings.state_save_attempts,
                    initial_delay=self.settings.state_save_delay,
                    max_delay=max(self.settings.state_save_delay, 1.0),
                )
            ),
        )
        self.workflows = WorkflowExecutor(
            self.registry,
            self.executor,
            self.state,
            default_timeout=self.settings.default_timeout,
            auto_save_state=self.settings.auto_save_state,
            max_step_visits=self.settings.max_step_visits,
            read_only_projections=self.settings.read_only_projections,
        )
        self.cache: CacheManager[Any] = CacheManager(
            default_ttl=self.settings.cache_default_ttl,
            max_size=self.settings.cache_max_size,
            enable_lru=self.settings.cache_enable_lru,
        )

        logger.info(
            "Skill engine initialised",
            extra={"state_backend": self.settings.state_backend},
        )

    def _build_store(self) -> StateStore:
        if self.settings.state_backend == "memory":
            return InMemoryStateStore()
        return JsonFileStateStore(self.settings.state_path)

    def register_skill(self, skill: Skill) -> None:
        self.registry.register(skill)

    def register_skills(self, skills: Iterable[Skill]) -> None:
        self.registry.register_many(skills)

    def register_workflow(self, workflow: Workflow | Mapping[str, Any]) -> Workflow:
        return self.workflows.register_workflow(workflow)

    async def run_skill(self, skill_name: str, input: SkillInput, **overrides: Any) -> SkillOutput:
        return await self.executor.execute(skill_name, input, **overrides)

    async def execute(
        self, workflow: Workflow | Mapping[str, Any] | str, input: SkillInput
    ) -> SkillOutput:
        """Run a workflow, given either as a definition or a registered name."""

        if isinstance(workflow, str):
            definition = self.workflows.get_workflow(workflow)
            if definition is None:
                return SkillOutput.fatal(
                    f'WORKFLOW_NOT_FOUND: Workflow "{workflow}" is not registered'
                )
            return await self.workflows.execute(definition, input)
        return await self.workflows.execute(workflow, input)

    async def resume(
        self, trace_id: str, additional_input: Mapping[str, Any] | None = None
    ) -> SkillOutput:
        return await self.workflows.resume(trace_id, additional_input)

    async def continue_execution(self, trace_id: str, user_input: Any) -> SkillOutput:
        return await self.workflows.continue_execution(trace_id, user_input)

    async def list_executions(self) -> list[ExecutionSummary]:
        return await self.state.list()

    def close(self) -> None:
        self.cache.close()

    def __enter__(self) -> SkillEngine:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
