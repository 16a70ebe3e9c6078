"""Seed the database with the demo stores."""

from __future__ import annotations

from dotenv import load_dotenv
from sqlalchemy import select

from catalog_sync.config import Settings
from catalog_sync.db.migrate import run_migrations
from catalog_sync.db.session import create_engine_from_settings
from catalog_sync.db.tables import stores
from catalog_sync.ingest import load_stores


def main() -> None:
    load_dotenv()
    engine = create_engine_from_settings(Settings.from_env())
    run_migrations(engine)
    with engine.begin() as conn:
        existing = set(conn.execute(select(stores.c.registration)).scalars())
        for store in load_stores():
            if store.registration in existing:
                continue
            conn.execute(
                stores.insert().values(
                    id=store.id,
                    name=store.name,
                    registration=store.registration,
                    document=store.document,
                    active=store.active,
                )
            )
    print("Seed complete")


if __name__ == "__main__":
    main()
