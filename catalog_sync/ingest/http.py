"""Shared httpx plumbing for integration clients."""

from __future__ import annotations

from typing import Any

import httpx

from catalog_sync.errors import UpstreamAuthError, UpstreamFormatError, UpstreamUnavailable

DEFAULT_TIMEOUT = 30.0
USER_AGENT = "CatalogSync/1.0"


def build_session(timeout: float = DEFAULT_TIMEOUT, headers: dict[str, str] | None = None) -> httpx.AsyncClient:
    merged = {"User-Agent": USER_AGENT}
    merged.update(headers or {})
    return httpx.AsyncClient(timeout=timeout, headers=merged)


def check_response(response: httpx.Response, integration_id: int | None) -> None:
    """Translate an HTTP status into the upstream error taxonomy."""
    status = response.status_code
    if status in (401, 403):
        raise UpstreamAuthError(
            f"{response.request.url} rejected credentials ({status})", integration_id=integration_id
        )
    if status == 429 or status >= 500:
        raise UpstreamUnavailable(
            f"{response.request.url} unavailable ({status})", integration_id=integration_id
        )
    if status >= 400:
        raise UpstreamFormatError(
            f"{response.request.url} answered {status}", integration_id=integration_id
        )


def decode_json(response: httpx.Response, integration_id: int | None) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamFormatError(
            f"{response.request.url} returned a body that is not JSON", integration_id=integration_id
        ) from exc


def transport_failure(exc: Exception, url: str, integration_id: int | None) -> UpstreamUnavailable:
    return UpstreamUnavailable(f"Request to {url} failed: {exc}", integration_id=integration_id)


def extract_path(data: Any, path: str) -> Any:
    """Follow a dotted path such as ``response.token`` through nested mappings."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current
