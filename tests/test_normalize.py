from datetime import date
from decimal import Decimal

import pendulum

from catalog_sync.ingest.models import IntegrationType, RawCatalogPayload
from catalog_sync.ingest.normalize import Normalizer

DAY = date(2024, 5, 1)


def _payload(provider, records):
    return RawCatalogPayload(provider=provider, store_id=7, records=records)


def test_rp_record_maps_fields_and_defaults():
    normalizer = Normalizer(today=DAY, default_limit=1000)
    records, warnings = normalizer.normalize(
        _payload(IntegrationType.RP, [{"codigo": "123", "preco": "10.50", "precoVenda2": "9.90"}]), 7
    )
    assert warnings == []
    [record] = records
    assert record.code == 123
    assert record.price == Decimal("10.50")
    assert record.final_price == Decimal("9.90")
    assert record.limit == 1000
    assert record.store_id == 7
    assert record.starts_at == pendulum.datetime(2024, 5, 1, 0, 0, 0, tz="UTC")
    assert record.expires_at == pendulum.datetime(2024, 5, 1, 23, 59, 59, tz="UTC")


def test_missing_final_price_falls_back_to_price():
    normalizer = Normalizer(today=DAY)
    records, warnings = normalizer.normalize(_payload(IntegrationType.RP, [{"codigo": 5, "preco": 4}]), 7)
    assert records[0].final_price == Decimal("4")
    assert warnings == []


def test_invalid_final_price_warns_and_uses_price():
    normalizer = Normalizer(today=DAY)
    records, warnings = normalizer.normalize(
        _payload(IntegrationType.RP, [{"codigo": 5, "preco": "4.00", "precoVenda2": "abc"}]), 7
    )
    assert records[0].final_price == Decimal("4.00")
    assert len(warnings) == 1
    assert warnings[0].code == 5


def test_records_without_code_or_price_are_dropped_with_warning():
    normalizer = Normalizer(today=DAY)
    records, warnings = normalizer.normalize(
        _payload(
            IntegrationType.RP,
            [
                {"preco": "1.00"},
                {"codigo": "12.5", "preco": "1.00"},
                {"codigo": 3},
                {"codigo": 4, "preco": "nan"},
                {"codigo": 6, "preco": "2.00"},
            ],
        ),
        7,
    )
    assert [record.code for record in records] == [6]
    assert [warning.index for warning in warnings] == [0, 1, 2, 3]


def test_crescevendas_window_and_limit():
    normalizer = Normalizer(today=DAY, default_limit=50)
    records, warnings = normalizer.normalize(
        _payload(
            IntegrationType.CRESCEVENDAS,
            [
                {
                    "code": "77",
                    "price": 20,
                    "final_price": 15,
                    "limit": 3,
                    "start_at": "2024-05-01T08:00:00Z",
                    "expire_at": "not a date",
                },
                {"code": "78", "price": 20, "limit": 0},
            ],
        ),
        7,
    )
    first, second = records
    assert first.limit == 3
    assert first.starts_at == pendulum.datetime(2024, 5, 1, 8, 0, 0, tz="UTC")
    assert first.expires_at == pendulum.datetime(2024, 5, 1, 23, 59, 59, tz="UTC")
    assert second.limit == 50
    assert len(warnings) == 1


def test_anchor_day_is_fixed_at_construction():
    normalizer = Normalizer(today=date(2023, 12, 31))
    records, _ = normalizer.normalize(_payload(IntegrationType.RP, [{"codigo": 1, "preco": 1}]), 7)
    assert records[0].expires_at.date() == date(2023, 12, 31)


def test_prices_are_rounded_to_the_column_scale():
    normalizer = Normalizer(today=DAY)
    records, warnings = normalizer.normalize(
        _payload(
            IntegrationType.RP,
            [
                {"codigo": 1, "preco": 0.1 + 0.2, "precoVenda2": "2.00005"},
                {"codigo": 2, "preco": "12345678901.00"},
            ],
        ),
        7,
    )
    [record] = records
    assert record.price == Decimal("0.3000")
    assert str(record.price) == "0.3000"
    assert record.final_price == Decimal("2.0001")
    # Too large for the price column.
    assert [warning.index for warning in warnings] == [1]


def test_non_object_records_are_dropped_with_warning():
    normalizer = Normalizer(today=DAY)
    records, warnings = normalizer.normalize(
        _payload(IntegrationType.CRESCEVENDAS, ["oops", None, {"code": 9, "price": "1.00"}, 42]), 7
    )
    assert [record.code for record in records] == [9]
    assert [warning.index for warning in warnings] == [0, 1, 3]
    assert all("not an object" in warning.message for warning in warnings)


def test_same_payload_normalizes_identically():
    rp = _payload(
        IntegrationType.RP,
        [
            {"codigo": "1", "preco": 0.1 + 0.2, "precoVenda2": "x"},
            {"codigo": 2, "preco": "5"},
            {"preco": "3"},
        ],
    )
    crescevendas = _payload(
        IntegrationType.CRESCEVENDAS,
        [
            {"code": 3, "price": "7.5", "final_price": "7", "limit": "4",
             "start_at": "2024-05-01T10:00:00Z", "expire_at": "bad"},
            {"code": 4, "price": "1"},
        ],
    )
    for payload in (rp, crescevendas):
        first = Normalizer(today=DAY).normalize(payload, 7)
        second = Normalizer(today=DAY).normalize(payload, 7)
        assert first == second
        assert first[0]
