"""RP (ERP) product source."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from catalog_sync.errors import IntegrationConfigError, UpstreamAuthError, UpstreamFormatError
from catalog_sync.ingest.http import (
    DEFAULT_TIMEOUT,
    build_session,
    check_response,
    decode_json,
    extract_path,
    transport_failure,
)
from catalog_sync.ingest.models import Integration
from catalog_sync.utils.rate_limit import RateLimiter
from catalog_sync.utils.retry import retry_async

logger = logging.getLogger(__name__)

AUTH_TOKEN = "TOKEN"
AUTH_LOGIN = "LOGIN"
DEFAULT_TOKEN_FIELD = "response.token"
DEFAULT_TOKEN_HEADER = "Authorization"


class RPClient:
    def __init__(
        self,
        integration: Integration,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_pages: int = 1000,
        retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        config = dict(integration.config)
        self.integration_id = integration.id
        self.base_url = (config.get("base_url") or "").rstrip("/")
        self.auth_method = config.get("auth_method")
        self.products_endpoint = config.get("products_endpoint")
        if not self.base_url or not self.products_endpoint:
            raise IntegrationConfigError(
                f"RP integration {integration.id} needs base_url and products_endpoint"
            )
        if self.auth_method not in (AUTH_TOKEN, AUTH_LOGIN):
            raise IntegrationConfigError(
                f"RP integration {integration.id} has no valid auth_method"
            )
        self.config = config
        self.max_pages = max_pages
        self._token: str | None = config.get("static_token") if self.auth_method == AUTH_TOKEN else None
        self._session = session or build_session(timeout)
        self._rate_limiter = rate_limiter or RateLimiter()
        self._retries = retries
        self._retry_delay = retry_delay

    async def close(self) -> None:
        await self._session.aclose()

    async def authenticate(self) -> str:
        if self.auth_method == AUTH_TOKEN:
            if not self._token:
                raise UpstreamAuthError(
                    "RP static token is not configured", integration_id=self.integration_id
                )
            return self._token
        login_endpoint = self.config.get("login_endpoint")
        username = self.config.get("username")
        password = self.config.get("password")
        if not login_endpoint or not username or not password:
            raise IntegrationConfigError(
                f"RP integration {self.integration_id} has an incomplete login configuration"
            )
        url = f"{self.base_url}{login_endpoint}"
        response = await self._send("POST", url, json={"usuario": username, "senha": password})
        data = decode_json(response, self.integration_id)
        token = extract_path(data, self.config.get("token_response_field") or DEFAULT_TOKEN_FIELD)
        if not token:
            raise UpstreamAuthError(
                "RP login response did not contain a token", integration_id=self.integration_id
            )
        self._token = str(token)
        logger.info("Authenticated against RP integration %s", self.integration_id)
        return self._token

    async def fetch_products(self, store_key: str) -> list[Any]:
        """Fetch every product for one store, following ``{lastId}`` pagination."""
        if self._token is None:
            await self.authenticate()
        paginated = "{lastId}" in self.products_endpoint
        products: list[Any] = []
        last_id = 0
        for _ in range(self.max_pages):
            page = await self._fetch_page(store_key, last_id)
            products.extend(page)
            if not paginated or not page:
                break
            last_item = next((item for item in reversed(page) if isinstance(item, dict)), {})
            next_id = last_item.get("id")
            if next_id is None or next_id == last_id:
                logger.warning("RP page for %s has no usable id; stopping pagination", store_key)
                break
            last_id = next_id
        else:
            logger.warning("RP pagination for %s stopped at %s pages", store_key, self.max_pages)
        logger.info("Fetched %s RP products for %s", len(products), store_key)
        return products

    async def _fetch_page(self, store_key: str, last_id: int) -> list[Any]:
        url = self._products_url(store_key, last_id)
        response = await self._send("GET", url, headers=self._auth_headers(), check=False)
        if response.status_code == 401 and self.auth_method == AUTH_LOGIN:
            # Session tokens expire; log in again once.
            await self.authenticate()
            response = await self._send("GET", url, headers=self._auth_headers(), check=False)
        check_response(response, self.integration_id)
        data = decode_json(response, self.integration_id)
        items = data.get("response") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise UpstreamFormatError(
                f"RP products response for {store_key} has no 'response' list",
                integration_id=self.integration_id,
            )
        return items

    def _products_url(self, store_key: str, last_id: int) -> str:
        path = self.products_endpoint.replace("{lastId}", str(last_id)).replace("{storeReg}", store_key)
        url = f"{self.base_url}{path}"
        params = (self.config.get("pagination") or {}).get("additional_params") or {}
        if params:
            url += "?" + urlencode(params)
        return url

    def _auth_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {self.config.get("token_header") or DEFAULT_TOKEN_HEADER: self._token}

    async def _send(self, method: str, url: str, *, check: bool = True, **kwargs: Any) -> httpx.Response:
        await self._rate_limiter.wait(f"rp:{self.integration_id}")
        request = retry_async(self._session.request, attempts=self._retries, base_delay=self._retry_delay)
        try:
            response = await request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise transport_failure(exc, url, self.integration_id) from exc
        if check:
            check_response(response, self.integration_id)
        return response
