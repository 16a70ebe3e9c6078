"""FastAPI application to start, inspect and cancel synchronization runs."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from catalog_sync.config import Settings
from catalog_sync.db.repositories import ExecutionRepository, LookupRepository
from catalog_sync.db.session import create_engine_from_settings
from catalog_sync.errors import ExecutionConflictError
from catalog_sync.ingest.clients import ClientRegistry
from catalog_sync.ingest.models import SyncConfiguration, SyncExecution, SyncOptions
from catalog_sync.jobs.sync import SyncOrchestrator, build_orchestrator
from catalog_sync.jobs.tracker import ExecutionTracker

logger = logging.getLogger(__name__)

app = FastAPI(title="Catalog Sync API")


class SyncOptionsModel(BaseModel):
    force_sync: bool = False
    skip_comparison: bool = False
    batch_size: int = Field(default=1, ge=1)
    timeout_minutes: float | None = Field(default=None, gt=0)


class AdHocRunRequest(BaseModel):
    source_integration_id: int
    target_integration_id: int
    store_ids: list[int] = Field(default_factory=list)
    notification_channel_id: int | None = None
    options: SyncOptionsModel = Field(default_factory=SyncOptionsModel)


class CancelResponse(BaseModel):
    id: str
    status: str
    cancel_requested: bool


def get_settings() -> Settings:
    return Settings.from_env()


def get_engine(settings: Settings = Depends(get_settings)) -> Engine:
    return create_engine_from_settings(settings)


def get_clients(settings: Settings = Depends(get_settings)) -> ClientRegistry:
    return ClientRegistry(settings)


@app.get("/executions")
async def list_executions(
    sync_config_id: int | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    engine: Engine = Depends(get_engine),
) -> list[dict[str, Any]]:
    executions = ExecutionRepository(engine).list_recent(limit=limit, sync_config_id=sync_config_id)
    return [execution.to_dict() for execution in executions]


@app.get("/executions/{execution_id}")
async def get_execution(execution_id: str, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    execution = ExecutionRepository(engine).get(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return execution.to_dict()


@app.post("/executions", status_code=202)
async def start_adhoc_execution(
    payload: AdHocRunRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_engine),
    clients: ClientRegistry = Depends(get_clients),
) -> dict[str, Any]:
    config = SyncConfiguration(
        id=None,
        name="ad hoc",
        source_integration_id=payload.source_integration_id,
        target_integration_id=payload.target_integration_id,
        store_ids=payload.store_ids,
        notification_channel_id=payload.notification_channel_id,
        options=SyncOptions.from_mapping(payload.options.model_dump()),
    )
    return await _start(config, background_tasks, settings, engine, clients)


@app.post("/sync-configurations/{config_id}/executions", status_code=202)
async def start_configured_execution(
    config_id: int,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_engine),
    clients: ClientRegistry = Depends(get_clients),
) -> dict[str, Any]:
    config = LookupRepository(engine).get_sync_configuration(config_id)
    if config is None:
        await clients.close()
        raise HTTPException(status_code=404, detail="Sync configuration not found")
    return await _start(config, background_tasks, settings, engine, clients)


@app.post("/executions/{execution_id}/cancel", response_model=CancelResponse)
async def cancel_execution(execution_id: str, engine: Engine = Depends(get_engine)) -> CancelResponse:
    tracker = ExecutionTracker(ExecutionRepository(engine))
    execution = await tracker.get(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    if execution.status.is_terminal:
        raise HTTPException(status_code=409, detail=f"Execution already {execution.status.value}")
    accepted = await tracker.request_cancel(execution_id)
    return CancelResponse(id=execution_id, status=execution.status.value, cancel_requested=accepted)


async def _start(
    config: SyncConfiguration,
    background_tasks: BackgroundTasks,
    settings: Settings,
    engine: Engine,
    clients: ClientRegistry,
) -> dict[str, Any]:
    orchestrator = build_orchestrator(settings, engine, clients=clients)
    try:
        execution = await orchestrator.start(config)
    except ExecutionConflictError as exc:
        await clients.close()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    background_tasks.add_task(_execute, orchestrator, execution, config, clients)
    return execution.to_dict()


async def _execute(
    orchestrator: SyncOrchestrator,
    execution: SyncExecution,
    config: SyncConfiguration,
    clients: ClientRegistry,
) -> None:
    try:
        await orchestrator.execute(execution, config)
    finally:
        await clients.close()
