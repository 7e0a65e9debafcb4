"""Skill contract, registry, executor and composer."""

from agent_skill_engine.skills.composer import CompositeSkill, SkillComposer
from agent_skill_engine.skills.contracts import (
    BaseSkill,
    Skill,
    SkillCategory,
    SkillContext,
    SkillInput,
    SkillMeta,
    SkillOutput,
    StatusCode,
    TaskSpec,
)
from agent_skill_engine.skills.executor import (
    ExecutionContext,
    ExecutionEvent,
    ExecutionOptions,
    SkillExecutor,
)
from agent_skill_engine.skills.registry import RegistryStats, SkillRegistry
from agent_skill_engine.skills.validator import SkillValidator, ValidationReport

__all__ = [
    "BaseSkill",
    "CompositeSkill",
    "ExecutionContext",
    "ExecutionEvent",
    "ExecutionOptions",
    "RegistryStats",
    "Skill",
    "SkillCategory",
    "SkillComposer",
    "SkillContext",
    "SkillExecutor",
    "SkillInput",
    "SkillMeta",
    "SkillOutput",
    "SkillRegistry",
    "SkillValidator",
    "StatusCode",
    "TaskSpec",
    "ValidationReport",
]
