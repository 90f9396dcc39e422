"""Full refresh of the catalog and its derived stock state."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from . import aggregator, crud
from .config import Settings
from .exceptions import NotFoundError
from .ledger import MovementEvent, ProductView
from .models import Batch, Category, Warehouse
from .store import MovementStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchView:
    id: int
    product_id: int
    batch_number: str
    expiry_date: Optional[date]
    manufactured_date: Optional[date]
    product_name: Optional[str]


@dataclass(frozen=True)
class InventorySnapshot:
    products: list[ProductView]
    categories: Sequence[Category]
    warehouses: Sequence[Warehouse]
    batches: list[BatchView]
    movements: list[MovementEvent]


async def load_movements(
    session: AsyncSession,
    *,
    product_id: Optional[int] = None,
    location_id: Optional[int] = None,
) -> list[MovementEvent]:
    """Movements newest first, labelled with product and location names."""

    products = await crud.list_products(session)
    warehouses = await crud.list_warehouses(session)
    rows = await MovementStore(session).select_movements(
        product_id=product_id, location_id=location_id
    )
    return _label(rows, products, warehouses)


def _label(rows, products, warehouses) -> list[MovementEvent]:
    product_names = {product.id: product.name for product in products}
    warehouse_names = {warehouse.id: warehouse.name for warehouse in warehouses}
    return [
        MovementEvent.from_row(
            row,
            product_name=product_names.get(row.product_id),
            from_location_name=warehouse_names.get(row.from_location_id),
            to_location_name=warehouse_names.get(row.to_location_id),
        )
        for row in rows
    ]


async def load_inventory(session: AsyncSession, settings: Settings) -> InventorySnapshot:
    """Read every entity and the complete movement set, then re-derive stock.

    Stock is always recomputed from the whole ledger; nothing is cached
    between calls.
    """

    categories = await crud.list_categories(session)
    warehouses = await crud.list_warehouses(session)
    products = await crud.list_products(session)
    batches: Sequence[Batch] = await crud.list_batches(session)
    serials = await crud.list_serials(session)
    rows = await MovementStore(session).select_movements()

    movements = _label(rows, products, warehouses)
    product_names = {product.id: product.name for product in products}
    views = aggregator.build_product_views(
        products,
        movements,
        batches=batches,
        serials=serials,
        category_names={category.id: category.name for category in categories},
        low_stock_threshold=settings.low_stock_threshold,
    )
    logger.debug("Loaded %s products and %s movements", len(views), len(movements))
    return InventorySnapshot(
        products=views,
        categories=categories,
        warehouses=warehouses,
        batches=[
            BatchView(
                id=batch.id,
                product_id=batch.product_id,
                batch_number=batch.batch_number,
                expiry_date=batch.expiry_date,
                manufactured_date=batch.manufactured_date,
                product_name=product_names.get(batch.product_id),
            )
            for batch in batches
        ],
        movements=movements,
    )


def find_product(snapshot: InventorySnapshot, product_id: int) -> ProductView:
    for product in snapshot.products:
        if product.id == product_id:
            return product
    raise NotFoundError(f"Product {product_id} not found")


__all__ = ["BatchView", "InventorySnapshot", "find_product", "load_inventory", "load_movements"]
