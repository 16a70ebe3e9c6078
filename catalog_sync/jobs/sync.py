"""Sync Orchestrator: drive one synchronization run across its stores."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, TypeVar

import httpx
from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from catalog_sync.config import Settings
from catalog_sync.db.repositories import ExecutionRepository, LookupRepository, ProductRepository
from catalog_sync.db.session import create_engine_from_settings
from catalog_sync.errors import (
    STORE_LEVEL_ERRORS,
    IntegrationConfigError,
    PersistenceError,
    PublishError,
    StoreNotFoundError,
    SyncError,
)
from catalog_sync.ingest.clients import ClientRegistry
from catalog_sync.ingest.fetcher import CatalogFetcher
from catalog_sync.ingest.models import (
    ExecutionStatus,
    Integration,
    StoreResult,
    SyncConfiguration,
    SyncExecution,
)
from catalog_sync.ingest.normalize import Normalizer
from catalog_sync.ingest.publish import CatalogPublisher
from catalog_sync.jobs.tracker import ExecutionTracker
from catalog_sync.logic.reconcile import reconcile
from catalog_sync.logic.writer import CatalogWriter
from catalog_sync.notify.dispatch import NotificationDispatcher
from catalog_sync.utils.dates import day_window, today_utc, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _RunContext:
    config: SyncConfiguration
    source: Integration
    target: Integration
    anchor: date
    window: tuple[datetime, datetime]
    normalizer: Normalizer
    cancelled: bool = False
    aborted: bool = False


class SyncOrchestrator:
    """Run Fetch, Normalize, Reconcile, Write and Publish for every store of a configuration.

    A failure confined to one store is recorded on that store's result and the
    run carries on. A failure that invalidates the whole configuration (bad
    credentials, a missing integration, a database that cannot persist the
    execution) stops the run as ``failed``. Cancellation is honoured before
    each store starts; stores already in flight finish.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        lookups: LookupRepository,
        products: ProductRepository,
        tracker: ExecutionTracker,
        fetcher: CatalogFetcher,
        writer: CatalogWriter,
        publisher: CatalogPublisher,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.settings = settings
        self.lookups = lookups
        self.products = products
        self.tracker = tracker
        self.fetcher = fetcher
        self.writer = writer
        self.publisher = publisher
        self.notifier = notifier

    async def start(self, config: SyncConfiguration) -> SyncExecution:
        """Create the pending execution, refusing a second active run of ``config``.

        Active executions older than ``settings.stale_execution_minutes`` are
        failed first: their process is gone and they would block the run forever.
        """
        if self.settings.stale_execution_minutes > 0:
            cutoff = utc_now().subtract(minutes=self.settings.stale_execution_minutes)
            await self.tracker.fail_stale(started_before=cutoff)
        store_ids = await self._store_ids(config)
        return await self.tracker.create(config.id, total_stores=len(store_ids))

    async def execute(
        self,
        execution: SyncExecution,
        config: SyncConfiguration,
        *,
        today: date | None = None,
    ) -> SyncExecution:
        status = ExecutionStatus.COMPLETED
        error_message: str | None = None
        try:
            context = await self._prepare(config, today or today_utc())
            if await self.tracker.cancel_requested(execution):
                status = ExecutionStatus.CANCELLED
            else:
                await self.tracker.start(execution)
                await self._notify(config, "started", execution)
                await self._run_stores(execution, context)
                if context.cancelled:
                    status = ExecutionStatus.CANCELLED
        except SyncError as exc:
            logger.error("Execution %s failed: %s", execution.id, exc)
            status, error_message = ExecutionStatus.FAILED, str(exc)
        except Exception as exc:
            logger.exception("Execution %s failed unexpectedly", execution.id)
            status, error_message = ExecutionStatus.FAILED, f"{type(exc).__name__}: {exc}"
        except BaseException as exc:
            logger.error("Execution %s interrupted by %s", execution.id, type(exc).__name__)
            await asyncio.shield(
                self._conclude(
                    execution,
                    config,
                    ExecutionStatus.FAILED,
                    f"Execution interrupted ({type(exc).__name__})",
                )
            )
            raise
        await self._conclude(execution, config, status, error_message)
        return execution

    async def run(self, config: SyncConfiguration, *, today: date | None = None) -> SyncExecution:
        execution = await self.start(config)
        return await self.execute(execution, config, today=today)

    async def _conclude(
        self,
        execution: SyncExecution,
        config: SyncConfiguration,
        status: ExecutionStatus,
        error_message: str | None,
    ) -> None:
        try:
            await self.tracker.finish(execution, status, error_message=error_message)
        except PersistenceError:
            logger.exception("Execution %s could not record its %s state", execution.id, status.value)
            execution.status = status
            execution.error_message = error_message or execution.error_message
            return
        await self._notify(config, status.value, execution)

    async def _prepare(self, config: SyncConfiguration, anchor: date) -> _RunContext:
        source = await self._integration(config.source_integration_id, "source")
        target = await self._integration(config.target_integration_id, "target")
        self.publisher.check_target(target)
        return _RunContext(
            config=config,
            source=source,
            target=target,
            anchor=anchor,
            window=day_window(anchor),
            normalizer=Normalizer(today=anchor, default_limit=self.settings.default_product_limit),
        )

    async def _integration(self, integration_id: int, role: str) -> Integration:
        integration = await self._call(self.lookups.get_integration, integration_id)
        if integration is None or not integration.active:
            raise IntegrationConfigError(f"The {role} integration {integration_id} is missing or inactive")
        return integration

    async def _store_ids(self, config: SyncConfiguration) -> list[int]:
        if config.store_ids:
            return list(config.store_ids)
        return await self._call(self.lookups.active_store_ids)

    async def _run_stores(self, execution: SyncExecution, context: _RunContext) -> None:
        """Run every store, at most ``batch_size`` at a time.

        Once a store raises a run-level error no further store starts, but
        stores already in flight finish their pipeline and are recorded.
        """
        store_ids = await self._store_ids(context.config)
        semaphore = asyncio.Semaphore(max(1, context.config.options.batch_size))

        async def guarded(store_id: int) -> None:
            async with semaphore:
                if context.cancelled or context.aborted:
                    return
                if await self.tracker.cancel_requested(execution):
                    context.cancelled = True
                    await self.tracker.log(execution, f"Cancellation observed before store {store_id}")
                    return
                try:
                    await self._run_store(execution, context, store_id)
                except BaseException:
                    context.aborted = True
                    raise

        tasks = [asyncio.create_task(guarded(store_id)) for store_id in store_ids]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _run_store(self, execution: SyncExecution, context: _RunContext, store_id: int) -> None:
        result = StoreResult(store_id=store_id, status="success")
        try:
            await self._sync_store(context, result)
        except STORE_LEVEL_ERRORS as exc:
            logger.warning("Store %s failed in execution %s: %s", store_id, execution.id, exc)
            result.status = "failed"
            result.error = str(exc)
        await self.tracker.record_store(execution, result)

    async def _sync_store(self, context: _RunContext, result: StoreResult) -> None:
        options = context.config.options
        store = await self._call(self.lookups.get_store, result.store_id)
        if store is None or not store.active:
            raise StoreNotFoundError(f"Store {result.store_id} is missing or inactive")
        result.store_name = store.name

        timeout = options.timeout_minutes * 60 if options.timeout_minutes else None
        payload = await self.fetcher.fetch(
            store, context.source, force=options.force_sync, timeout=timeout, day=context.anchor
        )
        result.products_fetched = len(payload.records)

        incoming, warnings = context.normalizer.normalize(payload, store.id)
        current = await self._call(self.products.list_active_products, store.id)
        replace_set = reconcile(store.id, incoming, current, options)
        result.stats = replace_set.stats
        result.warnings = len(warnings) + len(replace_set.warnings)
        for warning in [*warnings, *replace_set.warnings]:
            logger.debug("Store %s: %s", store.id, warning.message)

        result.products_written = await self.writer.replace(store.id, replace_set.records)
        try:
            result.products_sent = await self.publisher.publish(
                store, context.target, replace_set.records, window=context.window
            )
        except PublishError as exc:
            logger.warning("Store %s written locally but not published: %s", store.id, exc)
            result.status = "failed"
            result.error = str(exc)

    async def _notify(self, config: SyncConfiguration, event: str, execution: SyncExecution) -> None:
        if self.notifier is None or config.notification_channel_id is None:
            return
        try:
            await self.notifier.notify(
                config.notification_channel_id, {"event": event, "execution": execution.to_dict()}
            )
        except Exception:
            logger.warning(
                "Notification %r for execution %s failed", event, execution.id, exc_info=True
            )

    @staticmethod
    async def _call(func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)


def build_orchestrator(
    settings: Settings,
    engine: Engine,
    *,
    clients: ClientRegistry,
    notify_session: httpx.AsyncClient | None = None,
) -> SyncOrchestrator:
    lookups = LookupRepository(engine)
    products = ProductRepository(engine)
    return SyncOrchestrator(
        settings,
        lookups=lookups,
        products=products,
        tracker=ExecutionTracker(ExecutionRepository(engine)),
        fetcher=CatalogFetcher(settings, clients),
        writer=CatalogWriter(products),
        publisher=CatalogPublisher(clients),
        notifier=NotificationDispatcher(lookups, settings, session=notify_session),
    )


async def run_sync(config_id: int, settings: Settings | None = None) -> SyncExecution:
    settings = settings or Settings.from_env()
    engine = create_engine_from_settings(settings)
    config = LookupRepository(engine).get_sync_configuration(config_id)
    if config is None:
        raise IntegrationConfigError(f"Sync configuration {config_id} does not exist")
    clients = ClientRegistry(settings)
    try:
        orchestrator = build_orchestrator(settings, engine, clients=clients)
        return await orchestrator.run(config)
    finally:
        await clients.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run a catalog synchronization")
    parser.add_argument("config_id", type=int, help="sync configuration id")
    args = parser.parse_args(argv)

    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    try:
        execution = asyncio.run(run_sync(args.config_id, settings))
    except SyncError as exc:
        print(f"Sync not started: {exc}", file=sys.stderr)
        sys.exit(2)
    logger.info("Execution %s finished as %s", execution.id, execution.status.value)
    if execution.status is ExecutionStatus.FAILED:
        sys.exit(1)


if __name__ == "__main__":
    main()
