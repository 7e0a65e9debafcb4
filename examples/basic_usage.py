#!/usr/bin/env python3
"""Interactive workflow example.

This demonstrates driving the engine directly:

* register two skills and a workflow loaded from YAML
* run the workflow until a skill asks for input
* answer the question and continue the paused execution by trace id

Execution records are written to the configured state directory
(``SKILL_ENGINE_STATE_PATH``, default ``.state/workflow-state``).
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from agent_skill_engine import EngineSettings, SkillEngine
from agent_skill_engine.skills import (
    BaseSkill,
    SkillCategory,
    SkillInput,
    SkillMeta,
    SkillOutput,
    StatusCode,
)
from agent_skill_engine.workflow import WorkflowParser

WORKFLOW_YAML = """
name: demand-analysis
description: Ask for a market, then summarise demand for it
initialStep: collect-demand
steps:
  - skill: collect-demand
    onSuccess: write-report
  - skill: write-report
    params:
      format: text
"""


class CollectDemand(BaseSkill):
    meta = SkillMeta(
        name="collect-demand",
        description="Ask the user which market to analyse",
        category=SkillCategory.ASK,
    )

    async def execute(self, input: SkillInput) -> SkillOutput:
        return self.need_input({"question": "market"}, "Which market should be analysed?")


class WriteReport(BaseSkill):
    meta = SkillMeta(
        name="write-report",
        description="Summarise the collected demand",
        category=SkillCategory.GENERATE,
    )

    async def execute(self, input: SkillInput) -> SkillOutput:
        market = input.context.writable.get("userInput")
        if not market:
            return self.retryable_error("No market was given")
        report = f"Demand report for {market} ({input.task.params['format']})"
        return self.success({"report": report})


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a pausable workflow (example).")
    parser.add_argument("--market", default="Nordics", help="Answer given when the workflow pauses")
    return parser.parse_args(argv)


async def _run(engine: SkillEngine, market: str) -> int:
    workflow = WorkflowParser().parse_yaml(WORKFLOW_YAML)
    result = await engine.execute(workflow, SkillInput.for_task("demand-analysis"))
    if result.code != StatusCode.NEEDS_INPUT:
        print(f"Unexpected result: {result.message}")
        return 1

    trace_id = result.data["execution"]["trace_id"]
    print(f"Paused ({trace_id}): {result.message}")

    result = await engine.continue_execution(trace_id, market)
    print(result.message)
    if not result.ok:
        return 1
    print(result.data["context"]["read_only"]["demandReport"])
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    with SkillEngine(EngineSettings()) as engine:
        engine.register_skills([CollectDemand(), WriteReport()])
        return asyncio.run(_run(engine, args.market))


if __name__ == "__main__":
    raise SystemExit(main())
