import pytest
from sqlalchemy import create_engine

from catalog_sync.config import Settings
from catalog_sync.db.migrate import run_migrations
from catalog_sync.db.tables import integrations, notification_channels, stores, sync_configurations

RP_CONFIG = {
    "base_url": "https://rp.example.com",
    "auth_method": "TOKEN",
    "static_token": "rp-secret",
    "products_endpoint": "/v1.1/produtounidade/listaprodutos/{lastId}/unidade/{storeReg}/detalhado",
}

CRESCEVENDAS_CONFIG = {
    "base_url": "https://cv.example.com",
    "auth_headers": {"X-AdminUser-Email": "ops@example.com", "X-AdminUser-Token": "cv-token"},
}


@pytest.fixture()
def engine(tmp_path):
    # File-backed so executor threads share the database.
    engine = create_engine(f"sqlite:///{tmp_path / 'catalog_sync.db'}", future=True)
    run_migrations(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def settings(engine):
    return Settings(database_url=str(engine.url), fetch_cache_ttl_seconds=0, requests_per_second=0)


@pytest.fixture()
def seeded_engine(engine):
    with engine.begin() as conn:
        conn.execute(stores.insert(), [
            {
                "id": idx,
                "name": f"Loja {idx}",
                "registration": f"1234567800{idx:04d}",
                "document": None,
                "active": True,
            }
            for idx in range(1, 6)
        ])
        conn.execute(integrations.insert(), [
            {"id": 1, "name": "RP", "type": "RP", "config": RP_CONFIG, "active": True},
            {"id": 2, "name": "CresceVendas", "type": "CRESCEVENDAS", "config": CRESCEVENDAS_CONFIG, "active": True},
        ])
        conn.execute(notification_channels.insert(), [
            {"id": 1, "name": "ops hook", "type": "WEBHOOK", "config": {"url": "https://hooks.example.com/sync"}, "active": True},
        ])
        conn.execute(sync_configurations.insert(), [
            {
                "id": 1,
                "name": "nightly",
                "source_integration_id": 1,
                "target_integration_id": 2,
                "notification_channel_id": 1,
                "store_ids": [1, 2, 3, 4, 5],
                "schedule_enabled": False,
                "schedule_cron": None,
                "options": {},
                "active": True,
            },
        ])
    return engine
