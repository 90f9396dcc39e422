"""Catalog persistence: products, categories, warehouses, batches and serials."""
from __future__ import annotations

import time
from collections.abc import Sequence
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import schemas
from .exceptions import ConfigurationError, NotFoundError, ValidationError
from .ledger import SerialStatus
from .models import Batch, Category, InventoryMovement, Product, SerialNumber, Warehouse


async def create_category(session: AsyncSession, data: schemas.CategoryCreate) -> Category:
    await _ensure_category_name_free(session, data.name)
    category = Category(**data.model_dump())
    session.add(category)
    await session.flush()
    return category


async def list_categories(session: AsyncSession) -> Sequence[Category]:
    stmt = select(Category).order_by(Category.name)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_category(session: AsyncSession, category_id: int) -> Category:
    category = await session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


async def find_category_by_name(session: AsyncSession, name: str) -> Optional[Category]:
    stmt = (
        select(Category)
        .where(func.lower(Category.name) == name.strip().lower())
        .order_by(Category.id)
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _ensure_category_name_free(
    session: AsyncSession, name: str, *, category_id: Optional[int] = None
) -> None:
    existing = await find_category_by_name(session, name)
    if existing is not None and existing.id != category_id:
        raise ValidationError(f"Category '{existing.name}' already exists", category_id=existing.id)


async def resolve_category(
    session: AsyncSession, name: Optional[str], *, create: bool = True
) -> Optional[Category]:
    """Case-insensitive lookup, creating the category on a miss when allowed."""

    if name is None or not name.strip():
        return None
    category = await find_category_by_name(session, name)
    if category is None and create:
        category = Category(name=name.strip(), description="Added via product creation")
        session.add(category)
        await session.flush()
    return category


async def update_category(
    session: AsyncSession, category: Category, data: schemas.CategoryUpdate
) -> Category:
    changes = data.model_dump(exclude_unset=True)
    if changes.get("name") is not None:
        await _ensure_category_name_free(session, changes["name"], category_id=category.id)
    for field, value in changes.items():
        setattr(category, field, value)
    await session.flush()
    return category


async def delete_category(session: AsyncSession, category: Category) -> None:
    await session.execute(
        update(Product).where(Product.category_id == category.id).values(category_id=None)
    )
    await session.delete(category)
    await session.flush()


async def create_warehouse(session: AsyncSession, data: schemas.WarehouseCreate) -> Warehouse:
    payload = data.model_dump()
    payload["type"] = data.type.value
    warehouse = Warehouse(**payload)
    session.add(warehouse)
    await session.flush()
    return warehouse


async def list_warehouses(session: AsyncSession) -> Sequence[Warehouse]:
    stmt = select(Warehouse).order_by(Warehouse.name)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_warehouse(session: AsyncSession, warehouse_id: int) -> Warehouse:
    warehouse = await session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


async def get_default_location(session: AsyncSession, name: str) -> Warehouse:
    """The conventional default location, matched by exact name."""

    stmt = select(Warehouse).where(Warehouse.name == name).order_by(Warehouse.id).limit(1)
    result = await session.execute(stmt)
    warehouse = result.scalar_one_or_none()
    if warehouse is None:
        raise ConfigurationError(f"Default warehouse '{name}' missing")
    return warehouse


async def update_warehouse(
    session: AsyncSession, warehouse: Warehouse, data: schemas.WarehouseUpdate
) -> Warehouse:
    for field, value in data.model_dump(exclude_unset=True).items():
        if field == "type" and value is not None:
            value = value.value
        setattr(warehouse, field, value)
    await session.flush()
    return warehouse


async def delete_warehouse(session: AsyncSession, warehouse: Warehouse) -> None:
    """Remove a location that no ledger movement references.

    Movements are never rewritten, so a location with history can only be
    deactivated.
    """

    stmt = select(func.count(InventoryMovement.id)).where(
        or_(
            InventoryMovement.from_location_id == warehouse.id,
            InventoryMovement.to_location_id == warehouse.id,
        )
    )
    referenced = (await session.execute(stmt)).scalar_one()
    if referenced:
        raise ValidationError(
            f"Warehouse '{warehouse.name}' has {referenced} ledger movements; deactivate it instead",
            warehouse_id=warehouse.id,
            movements=referenced,
        )
    await session.delete(warehouse)
    await session.flush()


async def create_product(
    session: AsyncSession, data: schemas.ProductCreate, *, category_id: Optional[int]
) -> Product:
    product = Product(
        name=data.name,
        sku=data.sku,
        category_id=category_id,
        buying_price=data.buying_price,
        selling_price=data.selling_price,
        model=data.model,
        description=data.description,
        image=data.image,
        colors=list(data.colors),
    )
    session.add(product)
    await session.flush()
    return product


async def list_products(session: AsyncSession) -> Sequence[Product]:
    stmt = select(Product).order_by(Product.name, Product.id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_product(session: AsyncSession, product_id: int) -> Product:
    product = await session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


async def update_product(
    session: AsyncSession, product: Product, data: schemas.ProductUpdate
) -> Product:
    """Apply a catalog edit. Movements are never touched, only batch dates."""

    changes = data.model_dump(exclude_unset=True)
    category_name = changes.pop("category", None)
    expiry_date = changes.pop("expiry_date", None)
    manufactured_date = changes.pop("manufactured_date", None)
    for field, value in changes.items():
        if value is None and field in {"name", "sku", "buying_price", "selling_price", "colors"}:
            continue
        setattr(product, field, value)
    if category_name:
        category = await resolve_category(session, category_name, create=False)
        if category is not None:
            product.category_id = category.id
    if expiry_date is not None or manufactured_date is not None:
        await upsert_batch(
            session,
            product.id,
            expiry_date=expiry_date,
            manufactured_date=manufactured_date,
        )
    await session.flush()
    return product


async def delete_product_records(session: AsyncSession, product: Product) -> None:
    """Remove serials, batches and the product row itself."""

    await session.execute(delete(SerialNumber).where(SerialNumber.product_id == product.id))
    await session.execute(delete(Batch).where(Batch.product_id == product.id))
    await session.delete(product)
    await session.flush()


def generate_batch_number() -> str:
    return f"B-{int(time.time() * 1000)}"


async def create_batch(
    session: AsyncSession,
    product_id: int,
    *,
    expiry_date: Optional[date],
    manufactured_date: Optional[date],
    batch_number: Optional[str] = None,
) -> Batch:
    batch = Batch(
        product_id=product_id,
        batch_number=batch_number or generate_batch_number(),
        expiry_date=expiry_date,
        manufactured_date=manufactured_date,
    )
    session.add(batch)
    await session.flush()
    return batch


async def upsert_batch(
    session: AsyncSession,
    product_id: int,
    *,
    expiry_date: Optional[date],
    manufactured_date: Optional[date],
) -> Batch:
    stmt = select(Batch).where(Batch.product_id == product_id).order_by(Batch.id).limit(1)
    result = await session.execute(stmt)
    batch = result.scalar_one_or_none()
    if batch is None:
        return await create_batch(
            session,
            product_id,
            expiry_date=expiry_date,
            manufactured_date=manufactured_date,
        )
    batch.expiry_date = expiry_date
    batch.manufactured_date = manufactured_date
    await session.flush()
    return batch


async def list_batches(session: AsyncSession) -> Sequence[Batch]:
    stmt = select(Batch).order_by(Batch.product_id, Batch.id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def add_serials(
    session: AsyncSession,
    product_id: int,
    serial_numbers: Sequence[str],
    *,
    location_id: Optional[int],
) -> list[SerialNumber]:
    serials = [
        SerialNumber(
            product_id=product_id,
            serial_number=number,
            status=SerialStatus.AVAILABLE.value,
            current_location_id=location_id,
        )
        for number in serial_numbers
    ]
    session.add_all(serials)
    await session.flush()
    return serials


async def list_serials(session: AsyncSession) -> Sequence[SerialNumber]:
    stmt = select(SerialNumber).order_by(SerialNumber.product_id, SerialNumber.id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def find_serials(
    session: AsyncSession, product_id: int, serial_numbers: Sequence[str]
) -> Sequence[SerialNumber]:
    stmt = select(SerialNumber).where(
        SerialNumber.product_id == product_id,
        SerialNumber.serial_number.in_(list(serial_numbers)),
    )
    result = await session.execute(stmt)
    return result.scalars().all()


__all__ = [name for name in globals() if not name.startswith("_")]
