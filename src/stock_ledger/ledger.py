"""Core ledger types shared by the writer, aggregator and projector.

Stock is never stored. A product's stock is a fold over immutable
:class:`MovementEvent` records; everything in this module is a value type so
that a snapshot can be aggregated any number of times with identical results.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional


class MovementType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"
    RESERVE = "RESERVE"
    RETURN = "RETURN"


class StockStatus(str, enum.Enum):
    IN_STOCK = "In Stock"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"


class WarehouseType(str, enum.Enum):
    WAREHOUSE = "Warehouse"
    STORE_FRONT = "Store Front"
    BACKROOM = "Backroom"


class SerialStatus(str, enum.Enum):
    AVAILABLE = "Available"
    SOLD = "Sold"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class MovementEvent:
    """Immutable view of one ledger row."""

    id: int
    product_id: int
    quantity: int
    movement_type: MovementType
    created_at: datetime
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    reason: Optional[str] = None
    operation_id: Optional[str] = None
    product_name: Optional[str] = None
    from_location_name: Optional[str] = None
    to_location_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any, **names: Optional[str]) -> "MovementEvent":
        return cls(
            id=row.id,
            product_id=row.product_id,
            quantity=int(row.quantity),
            movement_type=MovementType(row.movement_type),
            created_at=as_utc(row.created_at),
            from_location_id=row.from_location_id,
            to_location_id=row.to_location_id,
            reason=row.reason,
            operation_id=row.operation_id,
            **names,
        )


@dataclass(frozen=True)
class ProductView:
    """A catalog product enriched with its derived stock state."""

    id: int
    name: str
    sku: str
    category: str
    selling_price: Decimal
    buying_price: Decimal
    stock: int
    status: StockStatus
    category_id: Optional[int] = None
    model: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    serials: tuple[str, ...] = field(default_factory=tuple)
    colors: tuple[str, ...] = field(default_factory=tuple)
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None


__all__ = [
    "MovementEvent",
    "MovementType",
    "ProductView",
    "SerialStatus",
    "StockStatus",
    "WarehouseType",
    "as_utc",
    "utcnow",
]
