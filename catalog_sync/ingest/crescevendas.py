"""CresceVendas discount platform: catalog source and publish target."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Sequence

import httpx

from catalog_sync.errors import IntegrationConfigError, UpstreamFormatError
from catalog_sync.ingest.http import (
    DEFAULT_TIMEOUT,
    build_session,
    check_response,
    decode_json,
    transport_failure,
)
from catalog_sync.ingest.models import Integration, ProductRecord
from catalog_sync.utils.dates import format_day
from catalog_sync.utils.rate_limit import RateLimiter
from catalog_sync.utils.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_GET_ENDPOINT = "/admin/integrations/discount_stores"
DEFAULT_SEND_ENDPOINT = "/admin/integrations/discount_stores/batch_upload"
REQUIRED_HEADERS = ("X-AdminUser-Email", "X-AdminUser-Token")


class CresceVendasClient:
    def __init__(
        self,
        integration: Integration,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        config = dict(integration.config)
        self.integration_id = integration.id
        self.base_url = (config.get("base_url") or "").rstrip("/")
        if not self.base_url:
            raise IntegrationConfigError(f"CresceVendas integration {integration.id} needs base_url")
        auth_headers = dict(config.get("auth_headers") or {})
        missing = [name for name in REQUIRED_HEADERS if not auth_headers.get(name)]
        if missing:
            raise IntegrationConfigError(
                f"CresceVendas integration {integration.id} is missing headers: {', '.join(missing)}"
            )
        self.headers = {**auth_headers, "Content-Type": "application/json"}
        self.get_endpoint = config.get("get_products_endpoint") or DEFAULT_GET_ENDPOINT
        self.send_endpoint = config.get("send_products_endpoint") or DEFAULT_SEND_ENDPOINT
        self._session = session or build_session(timeout)
        self._rate_limiter = rate_limiter or RateLimiter()
        self._retries = retries
        self._retry_delay = retry_delay

    async def close(self) -> None:
        await self._session.aclose()

    async def get_active_products(self, store_registration: str, day: date) -> list[Any]:
        """Discount lines active for ``store_registration`` on ``day``."""
        params = {
            "store_registration": store_registration,
            "start_date": f"{format_day(day)}T00:01:00",
            "end_date": f"{format_day(day)}T23:59:00",
        }
        response = await self._send("GET", f"{self.base_url}{self.get_endpoint}", params=params)
        data = decode_json(response, self.integration_id)
        body = data.get("response") if isinstance(data, dict) else None
        discounts = body.get("discounts") if isinstance(body, dict) else None
        if discounts is None and isinstance(body, dict):
            # No campaign for the day.
            return []
        if not isinstance(discounts, list):
            raise UpstreamFormatError(
                f"CresceVendas response for {store_registration} has no discounts list",
                integration_id=self.integration_id,
            )
        return discounts

    async def send_products(
        self,
        store_registration: str,
        records: Sequence[ProductRecord],
        *,
        starts_at: datetime,
        expires_at: datetime,
    ) -> dict[str, Any]:
        """Upload one store's discount lines as a batch that overrides the current campaign."""
        day = format_day(starts_at.date())
        body = {
            "override": 1,
            "start_date": starts_at.strftime("%Y-%m-%dT%H:%M"),
            "end_date": expires_at.strftime("%Y-%m-%dT%H:%M"),
            "store_registrations": [store_registration],
            "name": f"{store_registration[9:12] or store_registration} Descontos - {day}",
            "discount_store_lines": [
                {
                    "code": str(record.code),
                    "price": float(record.price),
                    "final_price": float(record.final_price),
                    "limit": record.limit,
                }
                for record in records
            ],
        }
        response = await self._send("POST", f"{self.base_url}{self.send_endpoint}", json=body)
        logger.info(
            "Sent %s discount lines to CresceVendas for %s", len(records), store_registration
        )
        data = decode_json(response, self.integration_id)
        return data if isinstance(data, dict) else {"response": data}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self._rate_limiter.wait(f"crescevendas:{self.integration_id}")
        request = retry_async(self._session.request, attempts=self._retries, base_delay=self._retry_delay)
        try:
            response = await request(method, url, headers=self.headers, **kwargs)
        except httpx.TransportError as exc:
            raise transport_failure(exc, url, self.integration_id) from exc
        check_response(response, self.integration_id)
        return response
