"""Ingestion helpers."""

from __future__ import annotations

import pathlib

import yaml

from catalog_sync.ingest.models import Store

STORES_PATH = pathlib.Path(__file__).with_name("stores.yml")


def load_stores(path: pathlib.Path | None = None, limit: int | None = None) -> list[Store]:
    data = yaml.safe_load((path or STORES_PATH).read_text()) or []
    stores = [Store(**item) for item in data]
    if limit:
        return stores[:limit]
    return stores
