"""Persistence for products, executions and the records a run reads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Sequence

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from catalog_sync.db.tables import (
    integrations,
    notification_channels,
    products,
    stores,
    sync_configurations,
    sync_executions,
)
from catalog_sync.errors import ExecutionConflictError
from catalog_sync.ingest.models import (
    ExecutionStatus,
    ExecutionSummary,
    Integration,
    IntegrationType,
    NotificationChannel,
    ProductRecord,
    ReconcileStats,
    Store,
    StoreResult,
    SyncConfiguration,
    SyncExecution,
    SyncOptions,
)
from catalog_sync.utils.dates import as_utc, to_db


ACTIVE_STATUSES = (ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value)


class ProductRepository:
    """Store catalogs. Each method is its own transaction."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def list_active_products(self, store_id: int, *, at: datetime | None = None) -> list[ProductRecord]:
        """Live (not soft-deleted) products; restricted to the visibility window when ``at`` is given."""
        query = select(products).where(
            products.c.store_id == store_id, products.c.deleted_at.is_(None)
        )
        if at is not None:
            moment = to_db(at)
            query = query.where(
                or_(products.c.starts_at.is_(None), products.c.starts_at <= moment),
                or_(products.c.expires_at.is_(None), products.c.expires_at >= moment),
            )
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(products.c.code)).mappings().all()
        return [_product_from_row(row) for row in rows]

    def soft_delete_active(self, store_id: int, *, at: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(products)
                .where(products.c.store_id == store_id, products.c.deleted_at.is_(None))
                .values(deleted_at=to_db(at))
            )
        return result.rowcount or 0

    def insert_many(self, store_id: int, records: Sequence[ProductRecord], *, at: datetime) -> None:
        if not records:
            return
        created_at = to_db(at)
        rows = [
            {
                "store_id": store_id,
                "code": record.code,
                "price": record.price,
                "final_price": record.final_price,
                "limit": record.limit,
                "starts_at": to_db(record.starts_at),
                "expires_at": to_db(record.expires_at),
                "created_at": created_at,
                "deleted_at": None,
            }
            for record in records
        ]
        with self.engine.begin() as conn:
            conn.execute(insert(products), rows)


class ExecutionRepository:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, execution: SyncExecution) -> None:
        """Insert a new execution, refusing a second active run for the same configuration."""
        try:
            with self.engine.begin() as conn:
                if execution.sync_config_id is not None:
                    active_id = conn.execute(
                        select(sync_executions.c.id).where(
                            sync_executions.c.sync_config_id == execution.sync_config_id,
                            sync_executions.c.status.in_(ACTIVE_STATUSES),
                        )
                    ).scalar_one_or_none()
                    if active_id is not None:
                        raise ExecutionConflictError(execution.sync_config_id, active_id)
                conn.execute(insert(sync_executions).values(**_execution_row(execution)))
        except IntegrityError as exc:
            if execution.sync_config_id is None:
                raise
            # Lost a race with a concurrent start; the partial unique index caught it.
            raise ExecutionConflictError(execution.sync_config_id) from exc

    def save(self, execution: SyncExecution) -> None:
        row = _execution_row(execution)
        row.pop("id")
        row.pop("sync_config_id")
        row.pop("started_at")
        row.pop("cancel_requested_at")
        # completed_at is written once and never replaced.
        row["completed_at"] = func.coalesce(sync_executions.c.completed_at, row["completed_at"])
        with self.engine.begin() as conn:
            conn.execute(
                update(sync_executions).where(sync_executions.c.id == execution.id).values(**row)
            )

    def get(self, execution_id: str) -> SyncExecution | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sync_executions).where(sync_executions.c.id == execution_id)
            ).mappings().first()
        return _execution_from_row(row) if row else None

    def find_active(self, sync_config_id: int) -> SyncExecution | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sync_executions).where(
                    sync_executions.c.sync_config_id == sync_config_id,
                    sync_executions.c.status.in_(ACTIVE_STATUSES),
                )
            ).mappings().first()
        return _execution_from_row(row) if row else None

    def list_recent(self, *, limit: int = 50, sync_config_id: int | None = None) -> list[SyncExecution]:
        query = select(sync_executions).order_by(sync_executions.c.started_at.desc()).limit(limit)
        if sync_config_id is not None:
            query = query.where(sync_executions.c.sync_config_id == sync_config_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [_execution_from_row(row) for row in rows]

    def request_cancel(self, execution_id: str, *, at: datetime) -> bool:
        """Flag an active execution for cancellation. False if it is already terminal or unknown."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(sync_executions)
                .where(
                    and_(
                        sync_executions.c.id == execution_id,
                        sync_executions.c.status.in_(ACTIVE_STATUSES),
                        sync_executions.c.cancel_requested_at.is_(None),
                    )
                )
                .values(cancel_requested_at=to_db(at))
            )
            if result.rowcount:
                return True
            status = conn.execute(
                select(sync_executions.c.status, sync_executions.c.cancel_requested_at).where(
                    sync_executions.c.id == execution_id
                )
            ).first()
        return bool(status and status[0] in ACTIVE_STATUSES and status[1] is not None)

    def fail_stale(self, *, started_before: datetime, at: datetime, message: str) -> list[str]:
        """Fail active executions started before ``started_before``. Returns their ids."""
        stale = and_(
            sync_executions.c.status.in_(ACTIVE_STATUSES),
            sync_executions.c.started_at < to_db(started_before),
        )
        with self.engine.begin() as conn:
            ids = list(conn.execute(select(sync_executions.c.id).where(stale)).scalars())
            if ids:
                conn.execute(
                    update(sync_executions)
                    .where(and_(sync_executions.c.id.in_(ids), stale))
                    .values(
                        status=ExecutionStatus.FAILED.value,
                        completed_at=func.coalesce(sync_executions.c.completed_at, to_db(at)),
                        error_message=message,
                    )
                )
        return ids

    def cancel_requested(self, execution_id: str) -> bool:
        with self.engine.connect() as conn:
            value = conn.execute(
                select(sync_executions.c.cancel_requested_at).where(
                    sync_executions.c.id == execution_id
                )
            ).scalar_one_or_none()
        return value is not None


class LookupRepository:
    """Read-only access to records maintained by the admin panel."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_store(self, store_id: int) -> Store | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(stores).where(stores.c.id == store_id)).mappings().first()
        if row is None:
            return None
        return Store(
            id=row["id"],
            name=row["name"],
            registration=row["registration"],
            document=row["document"],
            active=bool(row["active"]),
        )

    def active_store_ids(self) -> list[int]:
        with self.engine.connect() as conn:
            return list(
                conn.execute(
                    select(stores.c.id).where(stores.c.active.is_(True)).order_by(stores.c.id)
                ).scalars()
            )

    def get_integration(self, integration_id: int) -> Integration | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(integrations).where(integrations.c.id == integration_id)
            ).mappings().first()
        if row is None:
            return None
        return Integration(
            id=row["id"],
            name=row["name"],
            type=IntegrationType(row["type"]),
            config=row["config"] or {},
            active=bool(row["active"]),
        )

    def get_channel(self, channel_id: int) -> NotificationChannel | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(notification_channels).where(notification_channels.c.id == channel_id)
            ).mappings().first()
        if row is None:
            return None
        return NotificationChannel(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            config=row["config"] or {},
            active=bool(row["active"]),
        )

    def get_sync_configuration(self, config_id: int) -> SyncConfiguration | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sync_configurations).where(sync_configurations.c.id == config_id)
            ).mappings().first()
        if row is None:
            return None
        return SyncConfiguration(
            id=row["id"],
            name=row["name"],
            source_integration_id=row["source_integration_id"],
            target_integration_id=row["target_integration_id"],
            notification_channel_id=row["notification_channel_id"],
            store_ids=[int(store_id) for store_id in row["store_ids"] or []],
            schedule_enabled=bool(row["schedule_enabled"]),
            schedule_cron=row["schedule_cron"],
            options=SyncOptions.from_mapping(row["options"]),
        )


def _product_from_row(row: Mapping[str, Any]) -> ProductRecord:
    return ProductRecord(
        code=row["code"],
        price=row["price"],
        final_price=row["final_price"],
        limit=row["limit"],
        store_id=row["store_id"],
        starts_at=as_utc(row["starts_at"]),
        expires_at=as_utc(row["expires_at"]),
    )


def _execution_row(execution: SyncExecution) -> dict[str, Any]:
    return {
        "id": execution.id,
        "sync_config_id": execution.sync_config_id,
        "status": execution.status.value,
        "started_at": to_db(execution.started_at),
        "completed_at": to_db(execution.completed_at),
        "cancel_requested_at": to_db(execution.cancel_requested_at),
        "summary": execution.summary.to_dict(),
        "store_results": [result.to_dict() for result in execution.store_results],
        "error_message": execution.error_message,
        "execution_log": list(execution.execution_log),
    }


def _execution_from_row(row: Mapping[str, Any]) -> SyncExecution:
    results = []
    for item in row["store_results"] or []:
        stats = item.get("stats")
        results.append(
            StoreResult(
                store_id=item["store_id"],
                status=item["status"],
                store_name=item.get("store_name"),
                products_fetched=item.get("products_fetched", 0),
                products_written=item.get("products_written", 0),
                products_sent=item.get("products_sent", 0),
                stats=ReconcileStats(**stats) if stats else None,
                warnings=item.get("warnings", 0),
                error=item.get("error"),
            )
        )
    return SyncExecution(
        id=row["id"],
        sync_config_id=row["sync_config_id"],
        status=ExecutionStatus(row["status"]),
        started_at=as_utc(row["started_at"]),
        completed_at=as_utc(row["completed_at"]),
        cancel_requested_at=as_utc(row["cancel_requested_at"]),
        summary=ExecutionSummary.from_mapping(row["summary"]),
        store_results=results,
        error_message=row["error_message"],
        execution_log=list(row["execution_log"] or []),
    )
