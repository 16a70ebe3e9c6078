"""Create the synchronization schema."""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.config import Settings
from catalog_sync.db.session import create_engine_from_settings
from catalog_sync.db.tables import metadata

logger = logging.getLogger(__name__)


def run_migrations(engine: Engine) -> None:
    """Create every missing table and index."""
    metadata.create_all(engine)


def main() -> None:
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    engine = create_engine_from_settings(settings)
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)
    logger.info("Schema is up to date")


if __name__ == "__main__":
    main()
