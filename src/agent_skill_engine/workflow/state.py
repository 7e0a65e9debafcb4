"""Persistence for workflow executions.

A :class:`StateStore` keeps execution records keyed by trace id with
last-write-wins semantics. Two stores ship with the engine: an in-memory
store for tests and short-lived processes, and a JSON file store (one
``<trace_id>.json`` per execution) that survives restarts.

:class:`WorkflowStateManager` wraps a store with the queries the executor
and callers need, and moves blocking I/O off the event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from agent_skill_engine.errors import EngineError, ErrorCode, ErrorRecoverable, StateStoreError
from agent_skill_engine.utils.retry import RetryStrategy

from .models import ExecutionStatus, ExecutionSummary, WorkflowExecution

logger = logging.getLogger(__name__)

_SAFE_TRACE_ID = re.compile(r"^[A-Za-z0-9._-]+$")


class StateStore(Protocol):
    def save(self, execution: WorkflowExecution) -> None: ...

    def load(self, trace_id: str) -> WorkflowExecution | None: ...

    def list(self) -> list[WorkflowExecution]: ...

    def delete(self, trace_id: str) -> bool: ...


@dataclass
class InMemoryStateStore:
    _records: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def save(self, execution: WorkflowExecution) -> None:
        # Stored serialised so callers never share a mutable record with the store.
        payload = execution.model_dump_json()
        with self._lock:
            self._records[execution.trace_id] = payload

    def load(self, trace_id: str) -> WorkflowExecution | None:
        with self._lock:
            payload = self._records.get(trace_id)
        if payload is None:
            return None
        return WorkflowExecution.model_validate_json(payload)

    def list(self) -> list[WorkflowExecution]:
        with self._lock:
            payloads = list(self._records.values())
        return [WorkflowExecution.model_validate_json(p) for p in payloads]

    def delete(self, trace_id: str) -> bool:
        with self._lock:
            return self._records.pop(trace_id, None) is not None


@dataclass
class JsonFileStateStore:
    directory: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _path(self, trace_id: str) -> Path:
        if not _SAFE_TRACE_ID.match(trace_id):
            raise EngineError(
                f"Unsafe trace id for file storage: {trace_id!r}",
                code=ErrorCode.VALIDATION_ERROR,
                recoverable=ErrorRecoverable.NO,
            )
        return self.directory / f"{trace_id}.json"

    def _read_unlocked(self, path: Path) -> WorkflowExecution | None:
        if not path.exists():
            return None
        try:
            return WorkflowExecution.model_validate_json(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable execution record {path.name}: {e}")
            return None

    def save(self, execution: WorkflowExecution) -> None:
        path = self._path(execution.trace_id)
        payload = json.dumps(execution.model_dump(mode="json"), indent=2, ensure_ascii=False)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload + "\n", encoding="utf-8")
            tmp.replace(path)

    def load(self, trace_id: str) -> WorkflowExecution | None:
        path = self._path(trace_id)
        with self._lock:
            return self._read_unlocked(path)

    def list(self) -> list[WorkflowExecution]:
        with self._lock:
            if not self.directory.exists():
                return []
            records = (self._read_unlocked(p) for p in sorted(self.directory.glob("*.json")))
            return [r for r in records if r is not None]

    def delete(self, trace_id: str) -> bool:
        path = self._path(trace_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True


class WorkflowStateManager:
    """Async facade over a :class:`StateStore`.

    When a retry strategy is given, saves that hit transient I/O errors are
    retried with backoff before the failure is reported.
    """

    def __init__(self, store: StateStore, *, retry: RetryStrategy | None = None) -> None:
        self.store = store
        self._retry = retry

    async def save(self, execution: WorkflowExecution) -> None:
        execution.touch()
        if self._retry is None:
            await asyncio.to_thread(self.store.save, execution)
        else:
            result = await self._retry.execute(
                lambda: asyncio.to_thread(self.store.save, execution),
                {"trace_id": execution.trace_id, "operation": "save_state"},
            )
            if not result.success:
                assert result.error is not None
                raise StateStoreError(
                    f"Failed to save execution after {result.attempts} attempt(s): {result.error}",
                    trace_id=execution.trace_id,
                ) from result.last_error
        logger.debug("Workflow state saved", extra={"trace_id": execution.trace_id})

    async def load(self, trace_id: str) -> WorkflowExecution | None:
        execution = await asyncio.to_thread(self.store.load, trace_id)
        if execution is not None:
            logger.debug("Workflow state loaded", extra={"trace_id": trace_id})
        return execution

    async def exists(self, trace_id: str) -> bool:
        return await self.load(trace_id) is not None

    async def delete(self, trace_id: str) -> bool:
        return await asyncio.to_thread(self.store.delete, trace_id)

    async def list(self) -> list[ExecutionSummary]:
        """Summaries of all stored executions, newest first."""

        executions = await asyncio.to_thread(self.store.list)
        summaries = [
            ExecutionSummary(
                trace_id=e.trace_id,
                workflow_name=e.workflow_name,
                status=e.status,
                current_step=e.current_step,
                start_time=e.start_time,
                updated_at=e.updated_at,
            )
            for e in executions
        ]
        return sorted(summaries, key=lambda s: s.start_time, reverse=True)

    async def cleanup(self, max_age: timedelta = timedelta(days=7)) -> int:
        """Delete executions started more than ``max_age`` ago."""

        cutoff = datetime.now(UTC) - max_age
        cleaned = 0
        for summary in await self.list():
            if summary.start_time < cutoff and await self.delete(summary.trace_id):
                cleaned += 1
        if cleaned:
            logger.info(f"Cleaned up {cleaned} expired workflow states")
        return cleaned

    async def get_last_resumable(self) -> WorkflowExecution | None:
        """The newest execution that is paused or still marked running."""

        for summary in await self.list():
            if summary.status in (ExecutionStatus.PAUSED, ExecutionStatus.RUNNING):
                return await self.load(summary.trace_id)
        return None
