"""Catalog Writer: two-phase replace of a store's active catalog."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.db.repositories import ProductRepository
from catalog_sync.errors import CatalogWriteError, PartialWriteError
from catalog_sync.ingest.models import ProductRecord
from catalog_sync.utils.dates import utc_now

logger = logging.getLogger(__name__)


class CatalogWriter:
    """Supersede a store's live products with a replace-set.

    Phase one soft-deletes every live row of the store; phase two inserts the
    new rows. Each phase is atomic on its own but the pair is not: when phase
    two fails the store is left with no active products and
    :class:`PartialWriteError` is raised. When phase one fails nothing has
    changed and :class:`CatalogWriteError` is raised.

    Cancelling the caller does not interrupt a replace that has begun: both
    phases still run, so a cancelled run never strands a store between them.
    """

    def __init__(self, products: ProductRepository) -> None:
        self.products = products

    async def replace(self, store_id: int, records: Sequence[ProductRecord], *, at: datetime | None = None) -> int:
        return await asyncio.shield(self._replace(store_id, records, at or utc_now()))

    async def _replace(self, store_id: int, records: Sequence[ProductRecord], moment: datetime) -> int:
        loop = asyncio.get_running_loop()
        try:
            removed = await loop.run_in_executor(None, self._soft_delete, store_id, moment)
        except SQLAlchemyError as exc:
            raise CatalogWriteError(
                store_id, f"Could not retire the current catalog of store {store_id}: {exc}"
            ) from exc
        try:
            await loop.run_in_executor(None, self._insert, store_id, records, moment)
        except SQLAlchemyError as exc:
            logger.error(
                "Store %s lost its catalog: %s rows retired, insert of %s failed",
                store_id,
                removed,
                len(records),
            )
            raise PartialWriteError(
                store_id,
                f"Inserting {len(records)} products for store {store_id} failed after "
                f"retiring {removed}; the store has no active products: {exc}",
            ) from exc
        logger.info("Store %s catalog replaced: %s retired, %s inserted", store_id, removed, len(records))
        return len(records)

    def _soft_delete(self, store_id: int, moment: datetime) -> int:
        return self.products.soft_delete_active(store_id, at=moment)

    def _insert(self, store_id: int, records: Sequence[ProductRecord], moment: datetime) -> None:
        self.products.insert_many(store_id, records, at=moment)
