"""Table definitions."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    text,
)

from catalog_sync.ingest.models import PRICE_PLACES, PRICE_PRECISION

metadata = MetaData()

ACTIVE_EXECUTION_WHERE = text("status IN ('pending', 'running')")
LIVE_PRODUCT_WHERE = text("deleted_at IS NULL")

stores = Table(
    "stores",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("registration", Text, nullable=False, unique=True),
    Column("document", Text),
    Column("active", Boolean, nullable=False, default=True),
)

integrations = Table(
    "integrations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("type", String(32), nullable=False),
    Column("config", JSON, nullable=False),
    Column("active", Boolean, nullable=False, default=True),
)

notification_channels = Table(
    "notification_channels",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("type", String(32), nullable=False),
    Column("config", JSON, nullable=False),
    Column("active", Boolean, nullable=False, default=True),
)

sync_configurations = Table(
    "sync_configurations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("source_integration_id", Integer, ForeignKey("integrations.id"), nullable=False),
    Column("target_integration_id", Integer, ForeignKey("integrations.id"), nullable=False),
    Column("notification_channel_id", Integer, ForeignKey("notification_channels.id")),
    Column("store_ids", JSON, nullable=False),
    Column("schedule_enabled", Boolean, nullable=False, default=False),
    Column("schedule_cron", Text),
    Column("options", JSON, nullable=False),
    Column("active", Boolean, nullable=False, default=True),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("store_id", Integer, ForeignKey("stores.id"), nullable=False),
    Column("code", Integer, nullable=False),
    Column("price", Numeric(PRICE_PRECISION, PRICE_PLACES), nullable=False),
    Column("final_price", Numeric(PRICE_PRECISION, PRICE_PLACES), nullable=False),
    Column("limit", Integer, nullable=False),
    Column("starts_at", DateTime),
    Column("expires_at", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("deleted_at", DateTime),
    Index(
        "uq_products_live_code",
        "store_id",
        "code",
        unique=True,
        sqlite_where=LIVE_PRODUCT_WHERE,
        postgresql_where=LIVE_PRODUCT_WHERE,
    ),
)

sync_executions = Table(
    "sync_executions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("sync_config_id", Integer, ForeignKey("sync_configurations.id")),
    Column("status", String(16), nullable=False),
    Column("started_at", DateTime, nullable=False),
    Column("completed_at", DateTime),
    Column("cancel_requested_at", DateTime),
    Column("summary", JSON, nullable=False),
    Column("store_results", JSON, nullable=False),
    Column("error_message", Text),
    Column("execution_log", JSON, nullable=False),
    Index(
        "uq_sync_executions_active_config",
        "sync_config_id",
        unique=True,
        sqlite_where=ACTIVE_EXECUTION_WHERE,
        postgresql_where=ACTIVE_EXECUTION_WHERE,
    ),
)
