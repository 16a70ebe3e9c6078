"""Synchronization data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

# Scale of the products.price and products.final_price columns.
PRICE_PRECISION = 14
PRICE_PLACES = 4
PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_PLACES)


class IntegrationType(str, Enum):
    RP = "RP"
    CRESCEVENDAS = "CRESCEVENDAS"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


@dataclass(slots=True)
class Store:
    id: int
    name: str
    registration: str
    document: str | None = None
    active: bool = True

    @property
    def upstream_key(self) -> str:
        return self.document or self.registration


@dataclass(slots=True)
class Integration:
    id: int
    name: str
    type: IntegrationType
    config: Mapping[str, Any]
    active: bool = True


@dataclass(frozen=True, slots=True)
class ProductRecord:
    code: int
    price: Decimal
    final_price: Decimal
    limit: int
    store_id: int
    starts_at: datetime | None = None
    expires_at: datetime | None = None

    def same_values(self, other: "ProductRecord") -> bool:
        return (
            self.price == other.price
            and self.final_price == other.final_price
            and self.limit == other.limit
            and self.starts_at == other.starts_at
            and self.expires_at == other.expires_at
        )


@dataclass(slots=True)
class RawCatalogPayload:
    """Provider records exactly as the integration returned them."""

    provider: IntegrationType
    store_id: int
    records: list[Any]
    fetched_at: datetime | None = None
    from_cache: bool = False


@dataclass(frozen=True, slots=True)
class NormalizationWarning:
    store_id: int
    message: str
    code: int | None = None
    index: int | None = None


@dataclass(slots=True)
class SyncOptions:
    force_sync: bool = False
    skip_comparison: bool = False
    batch_size: int = 1
    timeout_minutes: float | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "SyncOptions":
        data = data or {}
        timeout = data.get("timeout_minutes")
        return cls(
            force_sync=bool(data.get("force_sync", False)),
            skip_comparison=bool(data.get("skip_comparison", False)),
            batch_size=max(1, int(data.get("batch_size") or 1)),
            timeout_minutes=float(timeout) if timeout else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SyncConfiguration:
    id: int | None
    source_integration_id: int
    target_integration_id: int
    store_ids: list[int]
    notification_channel_id: int | None = None
    name: str = ""
    schedule_enabled: bool = False
    schedule_cron: str | None = None
    options: SyncOptions = field(default_factory=SyncOptions)

    def __post_init__(self) -> None:
        # Ordered set: keep first occurrence only.
        self.store_ids = list(dict.fromkeys(self.store_ids))


@dataclass(slots=True)
class ExecutionSummary:
    total_stores: int = 0
    stores_processed: int = 0
    products_fetched: int = 0
    products_sent: int = 0
    products_updated: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ExecutionSummary":
        data = data or {}
        return cls(**{key: int(data.get(key, 0)) for key in cls.__dataclass_fields__})


@dataclass(slots=True)
class ReconcileStats:
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class StoreResult:
    store_id: int
    status: str
    store_name: str | None = None
    products_fetched: int = 0
    products_written: int = 0
    products_sent: int = 0
    stats: ReconcileStats | None = None
    warnings: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stats"] = self.stats.to_dict() if self.stats else None
        return data


@dataclass(slots=True)
class SyncExecution:
    id: str
    sync_config_id: int | None
    status: ExecutionStatus
    started_at: datetime
    summary: ExecutionSummary = field(default_factory=ExecutionSummary)
    completed_at: datetime | None = None
    error_message: str | None = None
    execution_log: list[str] = field(default_factory=list)
    store_results: list[StoreResult] = field(default_factory=list)
    cancel_requested_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sync_config_id": self.sync_config_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": self.summary.to_dict(),
            "error_message": self.error_message,
            "execution_log": list(self.execution_log),
            "store_results": [result.to_dict() for result in self.store_results],
            "cancel_requested": self.cancel_requested_at is not None,
        }


@dataclass(slots=True)
class NotificationChannel:
    id: int
    name: str
    type: str
    config: Mapping[str, Any]
    active: bool = True
