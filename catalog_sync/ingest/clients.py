"""One client per integration, sharing an HTTP session and rate limiter."""

from __future__ import annotations

import httpx

from catalog_sync.config import Settings
from catalog_sync.ingest.crescevendas import CresceVendasClient
from catalog_sync.ingest.http import build_session
from catalog_sync.ingest.models import Integration
from catalog_sync.ingest.rp import RPClient
from catalog_sync.utils.rate_limit import RateLimiter


class ClientRegistry:
    def __init__(
        self,
        settings: Settings,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self.settings = settings
        self._owns_session = session is None
        self._session = session or build_session()
        self._rate_limiter = rate_limiter or RateLimiter(rate=settings.requests_per_second)
        self._retries = retries
        self._retry_delay = retry_delay
        self._rp: dict[int, RPClient] = {}
        self._crescevendas: dict[int, CresceVendasClient] = {}

    def rp(self, integration: Integration) -> RPClient:
        client = self._rp.get(integration.id)
        if client is None:
            client = RPClient(
                integration,
                session=self._session,
                rate_limiter=self._rate_limiter,
                max_pages=self.settings.max_pages,
                retries=self._retries,
                retry_delay=self._retry_delay,
            )
            self._rp[integration.id] = client
        return client

    def crescevendas(self, integration: Integration) -> CresceVendasClient:
        client = self._crescevendas.get(integration.id)
        if client is None:
            client = CresceVendasClient(
                integration,
                session=self._session,
                rate_limiter=self._rate_limiter,
                retries=self._retries,
                retry_delay=self._retry_delay,
            )
            self._crescevendas[integration.id] = client
        return client

    async def close(self) -> None:
        if self._owns_session:
            await self._session.aclose()
