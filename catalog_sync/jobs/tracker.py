"""Execution Tracker: the persisted state machine of a synchronization run."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.db.repositories import ExecutionRepository
from catalog_sync.errors import InvalidTransitionError, PersistenceError
from catalog_sync.ingest.models import (
    ExecutionStatus,
    ExecutionSummary,
    StoreResult,
    SyncExecution,
)
from catalog_sync.utils.dates import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALLOWED_TRANSITIONS = {
    ExecutionStatus.PENDING: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.RUNNING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
}


class ExecutionTracker:
    """Create, mutate and persist :class:`SyncExecution` records.

    Every mutation of a run goes through here and is serialized per
    execution, so concurrently finishing store pipelines never lose a
    summary update. A failed database write surfaces as
    :class:`PersistenceError` and the in-memory transition is not followed
    by any further one.
    """

    def __init__(self, executions: ExecutionRepository) -> None:
        self.executions = executions
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create(self, sync_config_id: int | None, *, total_stores: int) -> SyncExecution:
        execution = SyncExecution(
            id=str(uuid.uuid4()),
            sync_config_id=sync_config_id,
            status=ExecutionStatus.PENDING,
            started_at=utc_now(),
            summary=ExecutionSummary(total_stores=total_stores),
        )
        _append_log(execution, f"Execution created for {total_stores} store(s)")
        await self._run(self.executions.create, execution)
        logger.info("Execution %s created (config %s)", execution.id, sync_config_id)
        return execution

    async def start(self, execution: SyncExecution) -> None:
        async with self._locks[execution.id]:
            self._transition(execution, ExecutionStatus.RUNNING)
            _append_log(execution, "Execution running")
            await self._run(self.executions.save, execution)
        logger.info("Execution %s running", execution.id)

    async def record_store(self, execution: SyncExecution, result: StoreResult) -> None:
        """Fold one store's outcome into the summary."""
        async with self._locks[execution.id]:
            summary = execution.summary
            summary.products_fetched += result.products_fetched
            summary.products_updated += result.products_written
            summary.products_sent += result.products_sent
            if result.status == "success" or result.products_written:
                summary.stores_processed += 1
            if result.error:
                summary.errors += 1
                _append_log(execution, f"Store {result.store_id} failed: {result.error}")
            else:
                _append_log(execution, _describe(result))
            execution.store_results.append(result)
            await self._run(self.executions.save, execution)

    async def log(self, execution: SyncExecution, message: str) -> None:
        async with self._locks[execution.id]:
            _append_log(execution, message)
            await self._run(self.executions.save, execution)

    async def finish(
        self,
        execution: SyncExecution,
        status: ExecutionStatus,
        *,
        error_message: str | None = None,
    ) -> None:
        async with self._locks[execution.id]:
            self._transition(execution, status)
            if execution.completed_at is None:
                execution.completed_at = utc_now()
            if error_message:
                execution.error_message = error_message
            _append_log(execution, f"Execution {status.value}")
            await self._run(self.executions.save, execution)
        self._locks.pop(execution.id, None)
        logger.info("Execution %s %s", execution.id, status.value)

    async def cancel_requested(self, execution: SyncExecution) -> bool:
        return await self._run(self.executions.cancel_requested, execution.id)

    async def request_cancel(self, execution_id: str) -> bool:
        accepted = await self._run(self.executions.request_cancel, execution_id, at=utc_now())
        if accepted:
            logger.info("Cancellation requested for execution %s", execution_id)
        return accepted

    async def fail_stale(self, *, started_before: datetime) -> list[str]:
        """Fail active executions abandoned by a process that never finished them."""
        message = f"Execution abandoned: still active at {utc_now().isoformat()}"
        ids = await self._run(
            self.executions.fail_stale, started_before=started_before, at=utc_now(), message=message
        )
        for execution_id in ids:
            logger.warning("Execution %s was stale and has been marked failed", execution_id)
        return ids

    async def get(self, execution_id: str) -> SyncExecution | None:
        return await self._run(self.executions.get, execution_id)

    @staticmethod
    def _transition(execution: SyncExecution, status: ExecutionStatus) -> None:
        if status not in ALLOWED_TRANSITIONS.get(execution.status, set()):
            raise InvalidTransitionError(
                f"Execution {execution.id} cannot move from {execution.status.value} to {status.value}"
            )
        execution.status = status

    @staticmethod
    async def _run(func: Callable[..., T], *args, **kwargs) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: func(*args, **kwargs))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Execution record could not be persisted: {exc}") from exc


def _append_log(execution: SyncExecution, message: str) -> None:
    execution.execution_log.append(f"{utc_now().isoformat()} {message}")


def _describe(result: StoreResult) -> str:
    text = (
        f"Store {result.store_id} synced: {result.products_fetched} fetched, "
        f"{result.products_written} written, {result.products_sent} sent"
    )
    if result.stats is not None:
        stats = result.stats
        text += (
            f" (added {stats.added}, updated {stats.updated}, "
            f"removed {stats.removed}, unchanged {stats.unchanged})"
        )
    if result.warnings:
        text += f", {result.warnings} warning(s)"
    return text
