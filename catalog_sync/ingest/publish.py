"""Push a store's freshly written catalog to the target integration."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from catalog_sync.errors import IntegrationConfigError, PublishError, UpstreamAuthError, UpstreamError
from catalog_sync.ingest.clients import ClientRegistry
from catalog_sync.ingest.models import Integration, IntegrationType, ProductRecord, Store

logger = logging.getLogger(__name__)


class CatalogPublisher:
    def __init__(self, clients: ClientRegistry) -> None:
        self.clients = clients

    def check_target(self, integration: Integration) -> None:
        if integration.type is not IntegrationType.CRESCEVENDAS:
            raise IntegrationConfigError(
                f"Integration {integration.id} ({integration.type.value}) cannot act as a target"
            )
        self.clients.crescevendas(integration)

    async def publish(
        self,
        store: Store,
        integration: Integration,
        records: Sequence[ProductRecord],
        *,
        window: tuple[datetime, datetime],
    ) -> int:
        """Return the number of lines sent. Nothing is sent for an empty catalog."""
        if not records:
            logger.info("Store %s has an empty catalog; nothing to publish", store.id)
            return 0
        client = self.clients.crescevendas(integration)
        starts_at, expires_at = window
        try:
            await client.send_products(
                store.registration, records, starts_at=starts_at, expires_at=expires_at
            )
        except UpstreamAuthError:
            raise
        except UpstreamError as exc:
            raise PublishError(f"Publishing store {store.id} failed: {exc}") from exc
        return len(records)
