"""Unit tests for workflow execution persistence."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from agent_skill_engine.errors import EngineError, ErrorCode, StateStoreError
from agent_skill_engine.utils.retry import RetryConfig, RetryStrategy
from agent_skill_engine.workflow.models import ExecutionStatus, WorkflowExecution
from agent_skill_engine.workflow.state import (
    InMemoryStateStore,
    JsonFileStateStore,
    WorkflowStateManager,
)


def _execution(trace_id: str, **kwargs: Any) -> WorkflowExecution:
    return WorkflowExecution(workflow_name="wf", trace_id=trace_id, current_step="a", **kwargs)


@pytest.fixture(params=["memory", "file"])
def manager(request: pytest.FixtureRequest, tmp_path: Path) -> WorkflowStateManager:
    if request.param == "memory":
        return WorkflowStateManager(InMemoryStateStore())
    return WorkflowStateManager(JsonFileStateStore(tmp_path / "state"))


def test_save_load_round_trip(manager: WorkflowStateManager) -> None:
    execution = _execution("t-1")
    execution.context.writable["answer"] = {"budget": 10}
    execution.steps_executed.append("a")

    asyncio.run(manager.save(execution))
    loaded = asyncio.run(manager.load("t-1"))

    assert loaded is not None
    assert loaded.context.writable == {"answer": {"budget": 10}}
    assert loaded.steps_executed == ["a"]
    assert loaded.status == ExecutionStatus.RUNNING
    assert asyncio.run(manager.exists("t-1"))
    assert asyncio.run(manager.load("missing")) is None


def test_stored_record_is_not_shared(manager: WorkflowStateManager) -> None:
    execution = _execution("t-1")
    asyncio.run(manager.save(execution))

    execution.steps_executed.append("later")
    loaded = asyncio.run(manager.load("t-1"))

    assert loaded is not None
    assert loaded.steps_executed == []


def test_last_write_wins(manager: WorkflowStateManager) -> None:
    execution = _execution("t-1")
    asyncio.run(manager.save(execution))
    execution.finish(ExecutionStatus.FAILED, error="boom")
    asyncio.run(manager.save(execution))

    loaded = asyncio.run(manager.load("t-1"))

    assert loaded is not None
    assert loaded.status == ExecutionStatus.FAILED
    assert loaded.error == "boom"
    assert loaded.end_time is not None


def test_list_is_newest_first(manager: WorkflowStateManager) -> None:
    now = datetime.now(UTC)
    for trace_id, hours_ago in [("old", 3), ("newest", 0), ("middle", 1)]:
        execution = _execution(trace_id, start_time=now - timedelta(hours=hours_ago))
        asyncio.run(manager.save(execution))

    summaries = asyncio.run(manager.list())

    assert [s.trace_id for s in summaries] == ["newest", "middle", "old"]
    assert summaries[0].workflow_name == "wf"


def test_delete_and_cleanup(manager: WorkflowStateManager) -> None:
    now = datetime.now(UTC)
    asyncio.run(manager.save(_execution("stale", start_time=now - timedelta(days=8))))
    asyncio.run(manager.save(_execution("fresh", start_time=now)))
    asyncio.run(manager.save(_execution("gone")))

    assert asyncio.run(manager.delete("gone")) is True
    assert asyncio.run(manager.delete("gone")) is False
    assert asyncio.run(manager.cleanup()) == 1
    assert [s.trace_id for s in asyncio.run(manager.list())] == ["fresh"]


def test_get_last_resumable_skips_finished(manager: WorkflowStateManager) -> None:
    now = datetime.now(UTC)
    paused = _execution("paused", start_time=now - timedelta(minutes=5))
    paused.status = ExecutionStatus.PAUSED
    done = _execution("done", start_time=now)
    done.finish(ExecutionStatus.SUCCESS)
    asyncio.run(manager.save(paused))
    asyncio.run(manager.save(done))

    resumable = asyncio.run(manager.get_last_resumable())

    assert resumable is not None
    assert resumable.trace_id == "paused"


def test_file_store_writes_one_json_per_trace(tmp_path: Path) -> None:
    store = JsonFileStateStore(tmp_path / "state")
    store.save(_execution("t-1"))

    assert [p.name for p in (tmp_path / "state").iterdir()] == ["t-1.json"]
    assert JsonFileStateStore(tmp_path / "state").load("t-1") is not None


def test_file_store_ignores_unreadable_records(tmp_path: Path) -> None:
    directory = tmp_path / "state"
    store = JsonFileStateStore(directory)
    store.save(_execution("good"))
    (directory / "broken.json").write_text("{not json", encoding="utf-8")

    assert store.load("broken") is None
    assert [e.trace_id for e in store.list()] == ["good"]


def test_file_store_rejects_unsafe_trace_ids(tmp_path: Path) -> None:
    store = JsonFileStateStore(tmp_path / "state")

    with pytest.raises(EngineError) as exc_info:
        store.load("../escape")
    assert exc_info.value.code == ErrorCode.VALIDATION_ERROR


class _FlakyStore(InMemoryStateStore):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def save(self, execution: WorkflowExecution) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise OSError("disk busy")
        super().save(execution)


def _no_sleep_retry(max_attempts: int) -> RetryStrategy:
    async def no_sleep(_: float) -> None:
        return None

    return RetryStrategy(RetryConfig(max_attempts=max_attempts, jitter=False), sleep=no_sleep)


def test_save_retries_transient_failures() -> None:
    store = _FlakyStore(failures=2)
    manager = WorkflowStateManager(store, retry=_no_sleep_retry(3))

    asyncio.run(manager.save(_execution("t-1")))

    assert store.attempts == 3
    assert store.load("t-1") is not None


def test_save_raises_after_exhausting_attempts() -> None:
    store = _FlakyStore(failures=5)
    manager = WorkflowStateManager(store, retry=_no_sleep_retry(2))

    with pytest.raises(StateStoreError) as exc_info:
        asyncio.run(manager.save(_execution("t-1")))

    assert exc_info.value.code == ErrorCode.STORAGE_ERROR
    assert store.attempts == 2
