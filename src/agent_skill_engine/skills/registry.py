"""In-memory skill catalogue keyed by unique name and indexed by category.

The registry is not thread-safe; concurrent registration must be
synchronised by the owner.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .contracts import Skill, SkillCategory, SkillMeta

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegistryStats:
    total: int
    by_category: dict[SkillCategory, int]


class SkillRegistry:
    def __init__(self) -> None:
        self._skills: dict[str, Skill] = {}
        self._categories: dict[SkillCategory, set[str]] = {}

    def __len__(self) -> int:
        return len(self._skills)

    def __contains__(self, name: object) -> bool:
        return name in self._skills

    def register(self, skill: Skill) -> None:
        meta = skill.meta
        previous = self._skills.get(meta.name)
        if previous is not None:
            logger.warning("Skill already registered, overwriting", extra={"skill": meta.name})
            self._categories.get(previous.meta.category, set()).discard(meta.name)

        self._skills[meta.name] = skill
        self._categories.setdefault(meta.category, set()).add(meta.name)
        logger.info("Skill registered", extra={"skill": meta.name, "category": meta.category.value})

    def register_many(self, skills: Iterable[Skill]) -> None:
        for skill in skills:
            self.register(skill)

    def get(self, name: str) -> Skill | None:
        return self._skills.get(name)

    def get_meta(self, name: str) -> SkillMeta | None:
        skill = self._skills.get(name)
        return skill.meta if skill is not None else None

    def has(self, name: str) -> bool:
        return name in self._skills

    def get_all_names(self) -> list[str]:
        return list(self._skills)

    def get_all(self) -> list[SkillMeta]:
        return [skill.meta for skill in self._skills.values()]

    def get_by_category(self, category: SkillCategory | str) -> list[SkillMeta]:
        try:
            names = self._categories.get(SkillCategory(category), set())
        except ValueError:
            return []
        # Registration order, not set order.
        return [skill.meta for name, skill in self._skills.items() if name in names]

    def search(self, query: str) -> list[SkillMeta]:
        """Case-insensitive substring search over name, description and tags."""

        needle = query.lower()
        return [
            meta
            for meta in self.get_all()
            if needle in meta.name.lower()
            or needle in meta.description.lower()
            or any(needle in tag.lower() for tag in meta.tags)
        ]

    def unregister(self, name: str) -> bool:
        skill = self._skills.pop(name, None)
        if skill is None:
            return False
        self._categories.get(skill.meta.category, set()).discard(name)
        logger.info("Skill unregistered", extra={"skill": name})
        return True

    def clear(self) -> None:
        self._skills.clear()
        self._categories.clear()
        logger.info("All skills cleared")

    def get_stats(self) -> RegistryStats:
        by_category = {category: 0 for category in SkillCategory}
        for skill in self._skills.values():
            by_category[skill.meta.category] += 1
        return RegistryStats(total=len(self._skills), by_category=by_category)
