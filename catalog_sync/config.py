"""Runtime settings."""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, fields
from typing import Any, Mapping

import yaml

DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/catalog_sync"
SETTINGS_ENV = "CATALOG_SYNC_SETTINGS"

_ENV_NAMES = {
    "database_url": "DATABASE_URL",
    "default_product_limit": "DEFAULT_PRODUCT_LIMIT",
    "fetch_timeout_seconds": "FETCH_TIMEOUT_SECONDS",
    "fetch_cache_ttl_seconds": "FETCH_CACHE_TTL_SECONDS",
    "fetch_cache_path": "FETCH_CACHE_PATH",
    "requests_per_second": "UPSTREAM_RATE",
    "max_pages": "RP_MAX_PAGES",
    "telegram_api_base": "TELEGRAM_API_BASE",
    "log_level": "LOG_LEVEL",
    "redis_url": "REDIS_URL",
    "stale_execution_minutes": "STALE_EXECUTION_MINUTES",
}


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    default_product_limit: int = 1000
    fetch_timeout_seconds: float = 300.0
    fetch_cache_ttl_seconds: int = 300
    fetch_cache_path: str | None = None
    requests_per_second: float = 5.0
    max_pages: int = 1000
    telegram_api_base: str = "https://api.telegram.org"
    log_level: str = "INFO"
    redis_url: str = "redis://redis:6379/0"
    stale_execution_minutes: int = 360

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, raw in data.items():
            if key not in known or raw is None:
                continue
            values[key] = _coerce(known[key].type, raw)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from an optional YAML file overlaid with environment variables."""
        env = os.environ if environ is None else environ
        base: dict[str, Any] = {}
        settings_path = env.get(SETTINGS_ENV)
        if settings_path:
            loaded = yaml.safe_load(pathlib.Path(settings_path).read_text()) or {}
            base.update(loaded)
        for attr, name in _ENV_NAMES.items():
            if name in env and env[name] != "":
                base[attr] = env[name]
        return cls.from_mapping(base)


def _coerce(annotation: Any, raw: Any) -> Any:
    # Annotations are strings because of the __future__ import.
    kind = str(annotation)
    if kind.startswith("int"):
        return int(raw)
    if kind.startswith("float"):
        return float(raw)
    return str(raw)
