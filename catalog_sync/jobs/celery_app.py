"""Celery worker for synchronization and comparison runs."""

from __future__ import annotations

import logging

from celery import Celery

from catalog_sync.config import Settings

settings = Settings.from_env()

celery_app = Celery(
    "catalog_sync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["catalog_sync.jobs.sync", "catalog_sync.jobs.compare"],
)
celery_app.conf.timezone = "UTC"
celery_app.conf.task_acks_late = True


@celery_app.task(name="catalog_sync.jobs.sync.run_sync")
def run_sync_task(config_id: int) -> dict:  # pragma: no cover - executed by worker
    import asyncio

    from catalog_sync.jobs.sync import run_sync

    logging.basicConfig(level=settings.log_level)
    execution = asyncio.run(run_sync(config_id, settings))
    return execution.to_dict()


@celery_app.task(name="catalog_sync.jobs.compare.run_comparison")
def run_comparison_task(config_id: int) -> int:  # pragma: no cover - executed by worker
    import asyncio

    from catalog_sync.jobs.compare import run_comparison

    logging.basicConfig(level=settings.log_level)
    results = asyncio.run(run_comparison(config_id, settings))
    return sum(result.differences_found for result in results)
