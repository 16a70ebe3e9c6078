"""Catalog Fetcher: pull raw product records for one store from a source integration."""

from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from datetime import date, datetime
from typing import Any

from catalog_sync.config import Settings
from catalog_sync.errors import IntegrationConfigError, UpstreamUnavailable
from catalog_sync.ingest.clients import ClientRegistry
from catalog_sync.ingest.models import Integration, IntegrationType, RawCatalogPayload, Store
from catalog_sync.utils.dates import parse_instant, today_utc, utc_now

logger = logging.getLogger(__name__)


class PayloadCache:
    """Recently fetched payloads keyed by integration, store and anchor day.

    Kept in memory, and mirrored to ``path`` as JSON when one is given so
    separate worker processes can share it.
    """

    def __init__(self, *, ttl_seconds: int = 300, path: pathlib.Path | None = None) -> None:
        self.ttl_seconds = ttl_seconds
        self.path = path
        self._data: dict[str, dict[str, Any]] = {}
        if path is not None and path.exists():
            try:
                self._data = json.loads(path.read_text())
            except json.JSONDecodeError:
                logger.warning("Invalid payload cache at %s; resetting", path)
                self._data = {}

    @staticmethod
    def key(integration_id: int, store_id: int, day: date) -> str:
        return f"{integration_id}:{store_id}:{day.isoformat()}"

    def get(self, key: str, *, now: datetime) -> tuple[datetime, list[Any]] | None:
        if self.ttl_seconds <= 0:
            return None
        entry = self._data.get(key)
        if not entry:
            return None
        fetched_at = parse_instant(entry["fetched_at"])
        if self._expired(fetched_at, now):
            return None
        return fetched_at, entry["records"]

    def set(self, key: str, records: list[Any], *, fetched_at: datetime) -> None:
        if self.ttl_seconds <= 0:
            return
        self._data = {
            other: entry
            for other, entry in self._data.items()
            if not self._expired(parse_instant(entry["fetched_at"]), fetched_at)
        }
        self._data[key] = {"fetched_at": fetched_at.isoformat(), "records": records}
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._data, default=str))

    def _expired(self, fetched_at: datetime, now: datetime) -> bool:
        return (now - fetched_at).total_seconds() > self.ttl_seconds


class CatalogFetcher:
    def __init__(
        self,
        settings: Settings,
        clients: ClientRegistry,
        *,
        cache: PayloadCache | None = None,
    ) -> None:
        self.settings = settings
        self.clients = clients
        if cache is None:
            cache_path = pathlib.Path(settings.fetch_cache_path) if settings.fetch_cache_path else None
            cache = PayloadCache(ttl_seconds=settings.fetch_cache_ttl_seconds, path=cache_path)
        self.cache = cache

    async def fetch(
        self,
        store: Store,
        integration: Integration,
        *,
        force: bool = False,
        timeout: float | None = None,
        day: date | None = None,
    ) -> RawCatalogPayload:
        """Fetch ``store``'s catalog from ``integration``.

        ``force`` skips the payload cache. ``timeout`` bounds the whole
        upstream exchange, pagination included.
        """
        day = day or today_utc()
        key = PayloadCache.key(integration.id, store.id, day)
        now = utc_now()
        if not force:
            cached = self.cache.get(key, now=now)
            if cached is not None:
                fetched_at, records = cached
                logger.info("Using cached catalog for store %s (fetched %s)", store.id, fetched_at)
                return RawCatalogPayload(
                    provider=integration.type,
                    store_id=store.id,
                    records=records,
                    fetched_at=fetched_at,
                    from_cache=True,
                )

        limit = timeout if timeout is not None else self.settings.fetch_timeout_seconds
        try:
            records = await asyncio.wait_for(self._fetch_records(store, integration, day), limit)
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(
                f"Fetching store {store.id} from integration {integration.id} timed out after {limit:.0f}s",
                integration_id=integration.id,
            ) from exc
        self.cache.set(key, records, fetched_at=now)
        return RawCatalogPayload(
            provider=integration.type,
            store_id=store.id,
            records=records,
            fetched_at=now,
        )

    async def _fetch_records(
        self, store: Store, integration: Integration, day: date
    ) -> list[Any]:
        if integration.type is IntegrationType.RP:
            return await self.clients.rp(integration).fetch_products(store.upstream_key)
        if integration.type is IntegrationType.CRESCEVENDAS:
            client = self.clients.crescevendas(integration)
            return await client.get_active_products(store.registration, day)
        raise IntegrationConfigError(f"Integration type {integration.type} cannot act as a source")
