"""Access to the append-only ``inventory_movements`` table."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import aggregator
from .exceptions import StoreUnavailableError
from .ledger import MovementEvent
from .models import InventoryMovement

logger = logging.getLogger(__name__)


class MovementStore:
    """Insert and select ledger rows; there is deliberately no update."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, movement: InventoryMovement) -> int:
        ids = await self.insert_many([movement])
        return ids[0]

    async def insert_many(self, movements: Sequence[InventoryMovement]) -> list[int]:
        """Stage ``movements`` in the current transaction and return their ids.

        Nothing is committed here: the caller owns the transaction, so every
        row of one logical operation lands or none does.
        """

        self.session.add_all(movements)
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error("Movement insert failed: %s", exc)
            raise StoreUnavailableError("movement store rejected the write") from exc
        return [movement.id for movement in movements]

    async def select_movements(
        self,
        *,
        product_id: Optional[int] = None,
        location_id: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> list[InventoryMovement]:
        """Movements matching the filter, newest first."""

        stmt = select(InventoryMovement)
        if product_id is not None:
            stmt = stmt.where(InventoryMovement.product_id == product_id)
        if location_id is not None:
            stmt = stmt.where(
                or_(
                    InventoryMovement.from_location_id == location_id,
                    InventoryMovement.to_location_id == location_id,
                )
            )
        if since is not None:
            stmt = stmt.where(InventoryMovement.created_at >= since)
        stmt = stmt.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Movement select failed: %s", exc)
            raise StoreUnavailableError("movement store is unavailable") from exc
        return list(result.scalars().all())

    async def select_events(self, **filters) -> list[MovementEvent]:
        rows = await self.select_movements(**filters)
        return [MovementEvent.from_row(row) for row in rows]

    async def product_stock(self, product_id: int) -> int:
        events = await self.select_events(product_id=product_id)
        return aggregator.product_stock(events, product_id)

    async def location_stock(self, product_id: int, location_id: int) -> int:
        events = await self.select_events(product_id=product_id, location_id=location_id)
        return aggregator.location_stock(events, location_id, product_id)

    async def delete_for_product(self, product_id: int) -> int:
        """Erase a product's history. Only used when the product is deleted."""

        try:
            result = await self.session.execute(
                delete(InventoryMovement).where(InventoryMovement.product_id == product_id)
            )
        except SQLAlchemyError as exc:
            logger.error("Movement delete failed for product %s: %s", product_id, exc)
            raise StoreUnavailableError("movement store rejected the delete") from exc
        return result.rowcount or 0


__all__ = ["MovementStore"]
