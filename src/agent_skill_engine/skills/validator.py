"""Contract checks for skill inputs and outputs."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .contracts import SkillInput, SkillOutput, StatusCode

VALID_CODES: tuple[int, ...] = tuple(int(code) for code in StatusCode)


@dataclass(frozen=True, slots=True)
class ValidationReport:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


def _pydantic_errors(exc: ValidationError, prefix: str) -> list[str]:
    out: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        msg = err.get("msg", "invalid")
        out.append(f"{prefix}.{loc}: {msg}" if loc else f"{prefix}: {msg}")
    return out


class SkillValidator:
    """Check values against the skill contract.

    Both methods accept either the pydantic models or plain mappings, since
    skills written against the contract may hand back either.
    """

    def validate_input(self, input: Any) -> ValidationReport:
        if input is None:
            return ValidationReport(valid=False, errors=["Input is required"])

        if isinstance(input, SkillInput):
            candidate = input
        elif isinstance(input, Mapping):
            try:
                candidate = SkillInput.model_validate(input)
            except ValidationError as e:
                return ValidationReport(valid=False, errors=_pydantic_errors(e, "Input"))
        else:
            return ValidationReport(valid=False, errors=["Input must be a SkillInput or mapping"])

        errors: list[str] = []
        if not isinstance(candidate.context.read_only, dict):
            errors.append("Input.context.read_only must be a mapping")
        if not isinstance(candidate.context.writable, dict):
            errors.append("Input.context.writable must be a mapping")
        if not candidate.task.task_id:
            errors.append("Input.task.task_id must be a non-empty string")
        if not candidate.task.task_name:
            errors.append("Input.task.task_name must be a non-empty string")
        if not isinstance(candidate.task.params, dict):
            errors.append("Input.task.params must be a mapping")
        if not candidate.trace_id:
            errors.append("Input.trace_id must be a non-empty string")
        if not candidate.snapshot_path:
            errors.append("Input.snapshot_path must be a non-empty string")

        return ValidationReport(valid=not errors, errors=errors)

    def validate_output(self, output: Any) -> ValidationReport:
        if output is None:
            return ValidationReport(valid=False, errors=["Output is required"])

        if isinstance(output, SkillOutput):
            # Fields may have been reassigned after construction; re-check them.
            raw: Mapping[str, Any] = dict(output.__dict__)
        elif isinstance(output, Mapping):
            raw = output
        else:
            return ValidationReport(
                valid=False, errors=[f"Output must be a SkillOutput, got {type(output).__name__}"]
            )

        errors: list[str] = []
        code = raw.get("code")
        if isinstance(code, bool) or not isinstance(code, int) or int(code) not in VALID_CODES:
            errors.append(f"Output.code must be one of: {', '.join(map(str, VALID_CODES))}")

        data = raw.get("data")
        if data is None:
            errors.append("Output.data must be defined")
        elif not isinstance(data, Mapping):
            errors.append("Output.data must be a mapping")

        message = raw.get("message")
        if not isinstance(message, str) or not message:
            errors.append("Output.message must be a non-empty string")

        next_action = raw.get("next_action")
        if next_action is not None and not isinstance(next_action, str):
            errors.append("Output.next_action must be a string if provided")
        need_rollback = raw.get("need_rollback")
        if need_rollback is not None and not isinstance(need_rollback, bool):
            errors.append("Output.need_rollback must be a boolean if provided")

        return ValidationReport(valid=not errors, errors=errors)

    def coerce_output(self, output: Any) -> SkillOutput:
        """Return ``output`` as a :class:`SkillOutput`; call after a valid report."""

        if isinstance(output, SkillOutput):
            return output
        return SkillOutput.model_validate(dict(output))
