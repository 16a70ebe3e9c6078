"""Compare local active catalogs with what the target integration currently serves."""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from catalog_sync.config import Settings
from catalog_sync.db.repositories import LookupRepository, ProductRepository
from catalog_sync.db.session import create_engine_from_settings
from catalog_sync.errors import IntegrationConfigError, StoreNotFoundError, UpstreamAuthError, UpstreamError
from catalog_sync.ingest.clients import ClientRegistry
from catalog_sync.ingest.models import RawCatalogPayload, Store, SyncConfiguration
from catalog_sync.ingest.normalize import Normalizer
from catalog_sync.logic.reconcile import ComparisonResult, compare_with_target
from catalog_sync.notify.dispatch import NotificationDispatcher
from catalog_sync.utils.dates import today_utc

logger = logging.getLogger(__name__)


async def compare_store(
    store: Store,
    config: SyncConfiguration,
    *,
    engine: Engine,
    clients: ClientRegistry,
    settings: Settings,
    day: date,
) -> ComparisonResult:
    lookups = LookupRepository(engine)
    loop = asyncio.get_running_loop()
    target = await loop.run_in_executor(None, lookups.get_integration, config.target_integration_id)
    if target is None or not target.active:
        raise IntegrationConfigError(f"Target integration {config.target_integration_id} is missing or inactive")

    local = await loop.run_in_executor(
        None, ProductRepository(engine).list_active_products, store.id
    )
    raw = await clients.crescevendas(target).get_active_products(store.registration, day)
    payload = RawCatalogPayload(provider=target.type, store_id=store.id, records=raw)
    remote, _ = Normalizer(today=day, default_limit=settings.default_product_limit).normalize(payload, store.id)
    result = compare_with_target(store.id, local, remote)
    logger.info(
        "Store %s: %s missing on target, %s price differences",
        store.id,
        len(result.missing),
        len(result.price_differences),
    )
    return result


async def run_comparison(
    config_id: int,
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    clients: ClientRegistry | None = None,
    day: date | None = None,
) -> list[ComparisonResult]:
    settings = settings or Settings.from_env()
    engine = engine or create_engine_from_settings(settings)
    lookups = LookupRepository(engine)
    config = lookups.get_sync_configuration(config_id)
    if config is None:
        raise IntegrationConfigError(f"Sync configuration {config_id} does not exist")

    owned = clients is None
    clients = clients or ClientRegistry(settings)
    day = day or today_utc()
    store_ids = config.store_ids or lookups.active_store_ids()
    results: list[ComparisonResult] = []
    try:
        for store_id in store_ids:
            store = lookups.get_store(store_id)
            try:
                if store is None or not store.active:
                    raise StoreNotFoundError(f"Store {store_id} is missing or inactive")
                results.append(
                    await compare_store(
                        store, config, engine=engine, clients=clients, settings=settings, day=day
                    )
                )
            except UpstreamAuthError:
                raise
            except (UpstreamError, StoreNotFoundError) as exc:
                logger.warning("Skipping comparison for store %s: %s", store_id, exc)
    finally:
        if owned:
            await clients.close()

    if config.notification_channel_id is not None:
        notifier = NotificationDispatcher(lookups, settings)
        summary = {
            "event": "comparison",
            "results": [
                {
                    "store_id": result.store_id,
                    "differences_found": result.differences_found,
                    "missing": len(result.missing),
                    "price_differences": len(result.price_differences),
                }
                for result in results
            ],
        }
        try:
            await notifier.notify(config.notification_channel_id, summary)
        except Exception:
            logger.warning("Comparison notification failed", exc_info=True)
    return results


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Compare local catalogs with the target")
    parser.add_argument("config_id", type=int)
    args = parser.parse_args(argv)
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    asyncio.run(run_comparison(args.config_id, settings))


if __name__ == "__main__":
    main()
