"""Database engine helpers."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from catalog_sync.config import Settings


def create_engine_from_settings(settings: Settings) -> Engine:
    """Create an engine for ``settings.database_url``."""
    return create_engine(settings.database_url, pool_pre_ping=True, future=True)
