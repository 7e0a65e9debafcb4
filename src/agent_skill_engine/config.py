"""Configuration for the skill engine.

Configuration is loaded from:
- environment variables prefixed with ``SKILL_ENGINE_``
- and a local ``.env`` file (if present)

Pydantic-settings supports overriding the env file in tests via
``EngineSettings(_env_file=path_to_env)``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_READ_ONLY_PROJECTIONS: dict[str, str] = {
    "collectedData": "collectedDemand",
    "report": "demandReport",
}


class EngineSettings(BaseSettings):
    """Settings for the skill engine and its workflow executor."""

    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )
    log_json: bool = Field(
        default=True,
        description="Emit structured JSON log lines",
    )

    default_timeout: float = Field(
        default=60.0,
        description="Per-attempt skill timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        description="Executor-level retries on uncaught skill exceptions",
    )
    validate_input: bool = Field(
        default=True,
        description="Check skill inputs against the contract before invoking a skill",
    )

    auto_save_state: bool = Field(
        default=True,
        description="Persist the workflow execution after every step",
    )
    state_backend: Literal["file", "memory"] = Field(
        default="file",
        description="Where workflow executions are persisted",
    )
    state_path: Path = Field(
        default=Path(".state/workflow-state"),
        description="Directory for JSON execution records (file backend)",
    )
    state_save_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per execution save before the failure is logged",
    )
    state_save_delay: float = Field(
        default=0.1,
        ge=0,
        description="Initial backoff between save attempts, in seconds",
    )
    max_step_visits: int | None = Field(
        default=None,
        description=(
            "Upper bound on visits to a single step within one execution. "
            "None means each step's own retry count + 1."
        ),
    )

    read_only_projections: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_READ_ONLY_PROJECTIONS),
        description="Step result keys copied into the read-only context (data key -> context key)",
    )

    cache_default_ttl: float = Field(
        default=300.0,
        ge=0,
        description="Default cache TTL in seconds (0 = never expire)",
    )
    cache_max_size: int = Field(
        default=1000,
        ge=0,
        description="Maximum cache entries (0 = unbounded)",
    )
    cache_enable_lru: bool = Field(
        default=True,
        description="Evict least-recently-used entries instead of the oldest",
    )

    model_config = SettingsConfigDict(
        env_prefix="SKILL_ENGINE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("default_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("default_timeout must be positive")
        return value

    @field_validator("max_retries")
    @classmethod
    def _non_negative_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must not be negative")
        return value

    @field_validator("max_step_visits")
    @classmethod
    def _positive_visits(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("max_step_visits must be at least 1")
        return value
