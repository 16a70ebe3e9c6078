"""Map provider payloads onto canonical product records.

Each provider is a named adapter describing where its fields live. The
fallback chain is the same for every adapter and is applied in order:

* A record that is not an object is dropped.
* ``code`` is required; a record without a usable code is dropped.
* ``price`` is required; a record without a usable price is dropped.
  Prices are rounded half up to the scale of the price columns; a price
  too large for them is unusable.
* ``final_price`` falls back to ``price``.
* ``limit`` falls back to the configured default.
* ``starts_at``/``expires_at`` fall back to the UTC day window of the run's
  anchor day.

Nothing here reads the clock: the anchor day is fixed when the normalizer is
built, so every record of a run shares the same effective day.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from catalog_sync.ingest.models import (
    PRICE_PLACES,
    PRICE_PRECISION,
    PRICE_QUANTUM,
    IntegrationType,
    NormalizationWarning,
    ProductRecord,
    RawCatalogPayload,
)
from catalog_sync.utils.dates import day_window, parse_instant


@dataclass(frozen=True, slots=True)
class ProviderAdapter:
    provider: IntegrationType
    code_field: str
    price_field: str
    final_price_field: str | None = None
    limit_field: str | None = None
    starts_at_field: str | None = None
    expires_at_field: str | None = None


RP_ADAPTER = ProviderAdapter(
    provider=IntegrationType.RP,
    code_field="codigo",
    price_field="preco",
    final_price_field="precoVenda2",
)

CRESCEVENDAS_ADAPTER = ProviderAdapter(
    provider=IntegrationType.CRESCEVENDAS,
    code_field="code",
    price_field="price",
    final_price_field="final_price",
    limit_field="limit",
    starts_at_field="start_at",
    expires_at_field="expire_at",
)

ADAPTERS: dict[IntegrationType, ProviderAdapter] = {
    RP_ADAPTER.provider: RP_ADAPTER,
    CRESCEVENDAS_ADAPTER.provider: CRESCEVENDAS_ADAPTER,
}

# Largest magnitude the price columns can hold.
PRICE_LIMIT = Decimal(10) ** (PRICE_PRECISION - PRICE_PLACES)


class _Skip(Exception):
    pass


class Normalizer:
    def __init__(self, *, today: date, default_limit: int = 1000) -> None:
        self.today = today
        self.default_limit = default_limit
        self.window_start, self.window_end = day_window(today)

    def normalize(
        self, payload: RawCatalogPayload, store_id: int
    ) -> tuple[list[ProductRecord], list[NormalizationWarning]]:
        adapter = ADAPTERS[IntegrationType(payload.provider)]
        records: list[ProductRecord] = []
        warnings: list[NormalizationWarning] = []
        for index, raw in enumerate(payload.records):
            if not isinstance(raw, Mapping):
                warnings.append(
                    NormalizationWarning(store_id, "record is not an object, dropped", index=index)
                )
                continue
            notes: list[str] = []
            try:
                record = self._normalize_one(adapter, raw, store_id, notes)
            except _Skip as skip:
                warnings.append(NormalizationWarning(store_id, str(skip), index=index))
                continue
            records.append(record)
            warnings.extend(
                NormalizationWarning(store_id, note, code=record.code, index=index) for note in notes
            )
        return records, warnings

    def _normalize_one(
        self,
        adapter: ProviderAdapter,
        raw: Mapping[str, Any],
        store_id: int,
        notes: list[str],
    ) -> ProductRecord:
        code = _to_code(raw.get(adapter.code_field))
        if code is None:
            raise _Skip(f"record without a valid {adapter.code_field!r} dropped")

        price = _to_decimal(raw.get(adapter.price_field))
        if price is None:
            raise _Skip(f"code {code}: record without a valid {adapter.price_field!r} dropped")

        final_price = price
        if adapter.final_price_field:
            value = raw.get(adapter.final_price_field)
            if value not in (None, ""):
                parsed = _to_decimal(value)
                if parsed is None:
                    notes.append(f"code {code}: invalid {adapter.final_price_field!r}, using price")
                else:
                    final_price = parsed

        limit = self.default_limit
        if adapter.limit_field:
            value = raw.get(adapter.limit_field)
            if value:
                try:
                    limit = int(value)
                except (TypeError, ValueError):
                    notes.append(f"code {code}: invalid {adapter.limit_field!r}, using default limit")

        starts_at = self._instant(raw, adapter.starts_at_field, self.window_start, code, notes)
        expires_at = self._instant(raw, adapter.expires_at_field, self.window_end, code, notes)

        return ProductRecord(
            code=code,
            price=price,
            final_price=final_price,
            limit=limit,
            store_id=store_id,
            starts_at=starts_at,
            expires_at=expires_at,
        )

    @staticmethod
    def _instant(
        raw: Mapping[str, Any],
        field_name: str | None,
        fallback: datetime,
        code: int,
        notes: list[str],
    ) -> datetime:
        if not field_name or not raw.get(field_name):
            return fallback
        try:
            return parse_instant(raw[field_name])
        except (TypeError, ValueError):
            notes.append(f"code {code}: invalid {field_name!r}, using the day window")
            return fallback


def _to_code(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not number.is_finite() or number != number.to_integral_value():
        return None
    return int(number)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not number.is_finite() or abs(number) >= PRICE_LIMIT:
        return None
    return number.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
