"""Load, normalise and validate workflow definitions.

Definitions may come from Python mappings, JSON or YAML. Both snake_case
(``initial_step``, ``on_success``) and camelCase (``initialStep``,
``onSuccess``) keys are accepted.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from agent_skill_engine.errors import WorkflowValidationError
from agent_skill_engine.skills.validator import ValidationReport

from .models import Workflow, WorkflowStep

logger = logging.getLogger(__name__)

_KEY_ALIASES: dict[str, str] = {
    "initialStep": "initial_step",
    "onSuccess": "on_success",
    "onFail": "on_fail",
    "maxVisits": "max_visits",
}

DEFAULT_STEP_RETRY = 2


def _normalise_keys(raw: Mapping[str, Any]) -> dict[str, Any]:
    return {_KEY_ALIASES.get(key, key): value for key, value in raw.items()}


class WorkflowParser:
    def parse_object(self, definition: Mapping[str, Any] | Workflow) -> Workflow:
        if isinstance(definition, Workflow):
            return definition
        return self._normalise(definition)

    def parse_json(self, content: str) -> Workflow:
        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowValidationError(f"Failed to parse workflow JSON: {e}") from e
        return self._normalise(raw)

    def parse_yaml(self, content: str) -> Workflow:
        try:
            raw = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowValidationError(f"Failed to parse workflow YAML: {e}") from e
        return self._normalise(raw)

    def parse_file(self, path: Path) -> Workflow:
        content = path.read_text(encoding="utf-8")
        if path.suffix.lower() in {".yaml", ".yml"}:
            return self.parse_yaml(content)
        return self.parse_json(content)

    def _normalise(self, raw: Any) -> Workflow:
        if not isinstance(raw, Mapping):
            raise WorkflowValidationError("Workflow definition must be a mapping")

        data = _normalise_keys(raw)
        if not data.get("name"):
            raise WorkflowValidationError("Workflow name is required")
        steps_raw = data.get("steps")
        if not isinstance(steps_raw, list):
            raise WorkflowValidationError("Workflow steps must be a list")
        if not data.get("initial_step"):
            raise WorkflowValidationError("Workflow initial_step is required")

        steps: list[WorkflowStep] = []
        seen: set[str] = set()
        for item in steps_raw:
            if not isinstance(item, Mapping) or not item.get("skill"):
                raise WorkflowValidationError("Step skill is required")
            step_data = _normalise_keys(item)
            if step_data["skill"] in seen:
                logger.warning(f"Duplicate step skill: {step_data['skill']}")
            seen.add(step_data["skill"])

            step_data["params"] = step_data.get("params") or {}
            step_data["on_success"] = step_data.get("on_success") or None
            step_data["on_fail"] = step_data.get("on_fail") or None
            if step_data.get("retry") is None:
                step_data["retry"] = DEFAULT_STEP_RETRY
            steps.append(self._build(WorkflowStep, step_data))

        if data["initial_step"] not in seen:
            raise WorkflowValidationError(
                f'Initial step "{data["initial_step"]}" not found in steps'
            )

        return self._build(
            Workflow,
            {
                "name": data["name"],
                "description": data.get("description") or "",
                "version": str(data.get("version") or "1.0.0"),
                "initial_step": data["initial_step"],
                "steps": steps,
            },
        )

    @staticmethod
    def _build(model: type[Any], data: dict[str, Any]) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise WorkflowValidationError(f"Invalid workflow definition: {e}") from e

    def validate(self, workflow: Workflow) -> ValidationReport:
        """Check that every transition targets an existing step.

        Cycles are legal: ``on_fail`` loop-backs are how a workflow retries a
        step at the graph level.
        """

        errors: list[str] = []
        names = {step.skill for step in workflow.steps}

        if not workflow.steps:
            errors.append("Workflow has no steps")
        if workflow.initial_step not in names:
            errors.append(f'Initial step "{workflow.initial_step}" not found in steps')

        for step in workflow.steps:
            for label, target in (("on_success", step.on_success), ("on_fail", step.on_fail)):
                if target is not None and target not in names:
                    errors.append(
                        f'Step "{step.skill}" {label} references non-existent step "{target}"'
                    )

        return ValidationReport(valid=not errors, errors=errors)

    def get_dependency_graph(self, workflow: Workflow) -> dict[str, list[str]]:
        """Map every step to the steps that can transition into it."""

        graph: dict[str, list[str]] = {}
        for step in workflow.steps:
            graph[step.skill] = [
                other.skill
                for other in workflow.steps
                if step.skill in (other.on_success, other.on_fail)
            ]
        return graph

    def to_json(self, workflow: Workflow) -> str:
        return json.dumps(workflow.model_dump(mode="json"), indent=2, ensure_ascii=False)

    def to_yaml(self, workflow: Workflow) -> str:
        return yaml.safe_dump(workflow.model_dump(mode="json"), sort_keys=False, allow_unicode=True)
