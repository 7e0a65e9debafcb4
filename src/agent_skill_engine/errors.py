"""Error taxonomy shared by the engine components.

Engine-generated failures carry an :class:`ErrorCode` so that callers (and the
retry strategy) can classify them without parsing messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    # General
    UNKNOWN = "UNKNOWN"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Skills
    SKILL_NOT_FOUND = "SKILL_NOT_FOUND"
    SKILL_EXECUTION_FAILED = "SKILL_EXECUTION_FAILED"
    SKILL_TIMEOUT = "SKILL_TIMEOUT"
    SKILL_INVALID_INPUT = "SKILL_INVALID_INPUT"
    SKILL_INVALID_OUTPUT = "SKILL_INVALID_OUTPUT"

    # Workflows
    WORKFLOW_NOT_FOUND = "WORKFLOW_NOT_FOUND"
    WORKFLOW_INVALID = "WORKFLOW_INVALID"
    WORKFLOW_STEP_FAILED = "WORKFLOW_STEP_FAILED"
    WORKFLOW_RESUME_FAILED = "WORKFLOW_RESUME_FAILED"

    # Storage
    STORAGE_ERROR = "STORAGE_ERROR"


class ErrorRecoverable(str, Enum):
    YES = "yes"
    MANUAL = "manual"
    NO = "no"


class EngineError(Exception):
    """Base class for errors raised inside the engine.

    Public entry points never let these escape; they are converted into
    structured skill outputs at the boundary.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.UNKNOWN,
        recoverable: ErrorRecoverable = ErrorRecoverable.MANUAL,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.context = context or {}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class SkillNotFoundError(EngineError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f'Skill "{name}" not found',
            code=ErrorCode.SKILL_NOT_FOUND,
            recoverable=ErrorRecoverable.NO,
            context={"skill": name},
        )
        self.name = name


class WorkflowValidationError(EngineError):
    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(
            message,
            code=ErrorCode.WORKFLOW_INVALID,
            recoverable=ErrorRecoverable.NO,
            context={"errors": list(errors or [])},
        )
        self.errors = list(errors or [])


class StateStoreError(EngineError):
    def __init__(self, message: str, *, trace_id: str | None = None) -> None:
        super().__init__(
            message,
            code=ErrorCode.STORAGE_ERROR,
            recoverable=ErrorRecoverable.YES,
            context={"trace_id": trace_id} if trace_id else None,
        )
