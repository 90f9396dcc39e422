"""Folds over the movement ledger.

Every function here is pure: it reads the movements it is given and returns
fresh values. Nothing is cached between calls, so aggregating the same
snapshot twice always yields the same result.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, Optional, Protocol

from .ledger import ProductView, SerialStatus, StockStatus

DEFAULT_LOW_STOCK_THRESHOLD = 10


class MovementLike(Protocol):
    product_id: int
    quantity: int
    from_location_id: Optional[int]
    to_location_id: Optional[int]


def stock_by_product(movements: Iterable[MovementLike]) -> dict[int, int]:
    """Sum signed quantities per product, regardless of location."""

    totals: dict[int, int] = defaultdict(int)
    for movement in movements:
        totals[movement.product_id] += int(movement.quantity)
    return dict(totals)


def product_stock(movements: Iterable[MovementLike], product_id: int) -> int:
    return sum(int(m.quantity) for m in movements if m.product_id == product_id)


def _touches(movement: MovementLike, location_id: int) -> bool:
    return movement.to_location_id == location_id or movement.from_location_id == location_id


def location_stock(
    movements: Iterable[MovementLike],
    location_id: int,
    product_id: Optional[int] = None,
) -> int:
    """Stock held at ``location_id``.

    Outflow rows are stored with a negative quantity, so the signed quantity
    is accumulated as-is whenever either location id matches. Subtracting on
    the ``from`` side would count a transfer's outbound leg twice.
    """

    total = 0
    for movement in movements:
        if product_id is not None and movement.product_id != product_id:
            continue
        if _touches(movement, location_id):
            total += int(movement.quantity)
    return total


def stock_by_location(movements: Iterable[MovementLike]) -> dict[tuple[int, int], int]:
    """Per (product, location) balances for every location a movement touches."""

    totals: dict[tuple[int, int], int] = defaultdict(int)
    for movement in movements:
        locations = {movement.to_location_id, movement.from_location_id} - {None}
        for location_id in locations:
            totals[(movement.product_id, location_id)] += int(movement.quantity)
    return dict(totals)


def classify_stock(stock: int, low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> StockStatus:
    if stock > low_stock_threshold:
        return StockStatus.IN_STOCK
    if stock > 0:
        return StockStatus.LOW_STOCK
    return StockStatus.OUT_OF_STOCK


def resolve_batches(batches: Iterable[Any]) -> dict[int, Any]:
    """Pick the display batch per product: the soonest non-null expiry wins.

    A batch without an expiry date only stands in when the product has no
    dated batch at all.
    """

    resolved: dict[int, Any] = {}
    for batch in batches:
        current = resolved.get(batch.product_id)
        if current is None:
            resolved[batch.product_id] = batch
            continue
        if batch.expiry_date is None:
            continue
        if current.expiry_date is None or batch.expiry_date < current.expiry_date:
            resolved[batch.product_id] = batch
    return resolved


def serials_by_product(serials: Iterable[Any], *, available_only: bool = True) -> dict[int, list[str]]:
    grouped: dict[int, list[str]] = defaultdict(list)
    for serial in serials:
        if available_only and serial.status != SerialStatus.AVAILABLE.value:
            continue
        grouped[serial.product_id].append(serial.serial_number)
    return dict(grouped)


def build_product_views(
    products: Iterable[Any],
    movements: Iterable[MovementLike],
    *,
    batches: Iterable[Any] = (),
    serials: Iterable[Any] = (),
    category_names: Optional[Mapping[int, str]] = None,
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> list[ProductView]:
    """Derive stock, status, dates and serials for each catalog product."""

    stock_map = stock_by_product(movements)
    batch_map = resolve_batches(batches)
    serial_map = serials_by_product(serials)
    category_names = category_names or {}

    views: list[ProductView] = []
    for product in products:
        stock = stock_map.get(product.id, 0)
        batch = batch_map.get(product.id)
        category = category_names.get(product.category_id) if product.category_id else None
        views.append(
            ProductView(
                id=product.id,
                name=product.name or "Unnamed Product",
                sku=product.sku or "N/A",
                category=category or "Uncategorized",
                category_id=product.category_id,
                selling_price=Decimal(str(product.selling_price or 0)),
                buying_price=Decimal(str(product.buying_price or 0)),
                stock=stock,
                status=classify_stock(stock, low_stock_threshold),
                model=product.model,
                description=product.description,
                image=product.image,
                serials=tuple(serial_map.get(product.id, ())),
                colors=tuple(product.colors or ()),
                expiry_date=batch.expiry_date if batch is not None else None,
                manufactured_date=batch.manufactured_date if batch is not None else None,
            )
        )
    return views


__all__ = [
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "build_product_views",
    "classify_stock",
    "location_stock",
    "product_stock",
    "resolve_batches",
    "serials_by_product",
    "stock_by_location",
    "stock_by_product",
]
