"""Agent Skill Engine.

Execution core for multi-stage, interactively pausable agent pipelines:
- a skill contract, registry and executor (timeout + retry)
- composition combinators over skills
- a persisted, resumable workflow executor
- a TTL/LRU cache and an exponential-backoff retry strategy
"""

__version__ = "0.1.0"

from agent_skill_engine.config import EngineSettings
from agent_skill_engine.engine import SkillEngine

__all__ = ["__version__", "EngineSettings", "SkillEngine"]
