"""Reconcile an incoming catalog against what a store currently holds."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from catalog_sync.ingest.models import (
    NormalizationWarning,
    ProductRecord,
    ReconcileStats,
    SyncOptions,
)


@dataclass(slots=True)
class ReplaceSet:
    """The complete catalog that becomes the store's active set."""

    store_id: int
    records: list[ProductRecord]
    stats: ReconcileStats | None
    warnings: list[NormalizationWarning] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


@dataclass(slots=True)
class PriceDifference:
    code: int
    local: ProductRecord
    remote: ProductRecord


@dataclass(slots=True)
class ComparisonResult:
    store_id: int
    missing: list[int] = field(default_factory=list)
    price_differences: list[PriceDifference] = field(default_factory=list)

    @property
    def differences_found(self) -> int:
        return len(self.missing) + len(self.price_differences)


def deduplicate(
    store_id: int, incoming: Iterable[ProductRecord]
) -> tuple[list[ProductRecord], list[NormalizationWarning]]:
    """Keep the last record per code, in order of each code's final occurrence."""
    latest: dict[int, ProductRecord] = {}
    warnings: list[NormalizationWarning] = []
    for record in incoming:
        if record.code in latest:
            del latest[record.code]
            warnings.append(
                NormalizationWarning(
                    store_id,
                    f"duplicate code {record.code}: earlier occurrence replaced by a later one",
                    code=record.code,
                )
            )
        latest[record.code] = record
    return list(latest.values()), warnings


def compute_stats(incoming: Sequence[ProductRecord], current: Sequence[ProductRecord]) -> ReconcileStats:
    current_by_code = {record.code: record for record in current}
    stats = ReconcileStats()
    for record in incoming:
        existing = current_by_code.pop(record.code, None)
        if existing is None:
            stats.added += 1
        elif existing.same_values(record):
            stats.unchanged += 1
        else:
            stats.updated += 1
    stats.removed = len(current_by_code)
    return stats


def reconcile(
    store_id: int,
    incoming: Sequence[ProductRecord],
    current_active: Sequence[ProductRecord],
    options: SyncOptions,
) -> ReplaceSet:
    """Build the replace-set for one store.

    The incoming catalog is authoritative and always replaces the whole
    active set; the statistics only describe how it differs from
    ``current_active`` and are left out when ``options.skip_comparison`` is set.
    """
    records, warnings = deduplicate(store_id, incoming)
    stats = None if options.skip_comparison else compute_stats(records, current_active)
    return ReplaceSet(store_id=store_id, records=records, stats=stats, warnings=warnings)


def compare_with_target(
    store_id: int, local: Sequence[ProductRecord], remote: Sequence[ProductRecord]
) -> ComparisonResult:
    """Codes the target is missing or prices differently from the local catalog."""
    remote_by_code = {record.code: record for record in remote}
    result = ComparisonResult(store_id=store_id)
    for record in local:
        other = remote_by_code.get(record.code)
        if other is None:
            result.missing.append(record.code)
        elif other.price != record.price or other.final_price != record.final_price:
            result.price_differences.append(PriceDifference(record.code, record, other))
    return result
