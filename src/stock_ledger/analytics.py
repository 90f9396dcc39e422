"""Read-only projections over the movement ledger and the derived catalog.

All functions take their inputs explicitly, including ``now``, and never
touch the database. They work on :class:`~stock_ledger.ledger.ProductView`
instances and on any movement-like objects (ledger events or ORM rows).
"""
from __future__ import annotations

import enum
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Any, Optional
from zoneinfo import ZoneInfo

from .aggregator import DEFAULT_LOW_STOCK_THRESHOLD, stock_by_location
from .exceptions import ValidationError
from .ledger import MovementType, ProductView, StockStatus, as_utc

ORDER_REFERENCE_PATTERN = re.compile(r"ORD-\d+")
DEFAULT_EXPIRY_WINDOW_DAYS = 30
WALK_IN_CUSTOMER = "Walk-in Customer"


class AuditRange(str, enum.Enum):
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"
    CUSTOM = "custom"


_AUDIT_WINDOWS: dict[AuditRange, timedelta] = {
    AuditRange.SECOND: timedelta(seconds=1),
    AuditRange.MINUTE: timedelta(minutes=1),
    AuditRange.HOUR: timedelta(hours=1),
    AuditRange.DAY: timedelta(days=1),
    AuditRange.WEEK: timedelta(days=7),
    AuditRange.MONTH: timedelta(days=30),
    AuditRange.YEAR: timedelta(days=365),
}


@dataclass(frozen=True)
class DailySales:
    day: date
    sales_value: Decimal
    units_sold: int
    inflow_units: int


@dataclass(frozen=True)
class CategorySummary:
    category_id: Optional[int]
    name: str
    units: int
    value: Decimal
    product_count: int


@dataclass(frozen=True)
class ExpiryAlert:
    product_id: int
    name: str
    stock: int
    expiry_date: date
    days_left: int
    urgency: str


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    name: str
    qty: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.qty


@dataclass
class DerivedOrder:
    id: str
    time: datetime
    customer: str = WALK_IN_CUSTOMER
    status: str = "Completed"
    items: list[OrderLine] = field(default_factory=list)
    total: Decimal = Decimal("0")
    movement_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class DashboardMetrics:
    total_value: Decimal
    total_inventory_cost: Decimal
    total_items: int
    orders_today: int
    revenue_today: Decimal
    cost_of_goods_sold_today: Decimal
    profit_today: Decimal
    low_stock_count: int
    status_counts: dict[str, int]


@dataclass(frozen=True)
class LocationStockItem:
    product_id: int
    name: str
    sku: str
    stock: int


def _resolve_tz(tz: str | tzinfo) -> tzinfo:
    if not isinstance(tz, str):
        return tz
    if tz.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(tz)


def _local_day(value: datetime, tz: tzinfo) -> date:
    return as_utc(value).astimezone(tz).date()


def _is_type(movement: Any, movement_type: MovementType) -> bool:
    return MovementType(movement.movement_type) is movement_type


def _prices(products: Iterable[ProductView]) -> dict[int, ProductView]:
    return {product.id: product for product in products}


def daily_sales_series(
    movements: Iterable[Any],
    products: Iterable[ProductView],
    now: datetime,
    *,
    days: int = 7,
    tz: str | tzinfo = "UTC",
) -> list[DailySales]:
    """Per-day sales value and inflow for the trailing ``days`` calendar days.

    Buckets are ordered oldest first and always present, zero-filled when a
    day has no movements. Today is the last bucket.
    """

    zone = _resolve_tz(tz)
    catalog = _prices(products)
    today = _local_day(now, zone)
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    buckets: dict[date, dict[str, Any]] = {
        day: {"sales_value": Decimal("0"), "units_sold": 0, "inflow_units": 0} for day in window
    }

    for movement in movements:
        day = _local_day(movement.created_at, zone)
        bucket = buckets.get(day)
        if bucket is None:
            continue
        if _is_type(movement, MovementType.OUT):
            units = abs(int(movement.quantity))
            product = catalog.get(movement.product_id)
            price = product.selling_price if product is not None else Decimal("0")
            bucket["sales_value"] += price * units
            bucket["units_sold"] += units
        elif _is_type(movement, MovementType.IN):
            bucket["inflow_units"] += int(movement.quantity)

    return [DailySales(day=day, **buckets[day]) for day in window]


def category_breakdown(
    products: Iterable[ProductView],
    categories: Iterable[Any],
) -> list[CategorySummary]:
    """Stock units and stock value per category, most valuable first."""

    products = list(products)
    summaries: list[CategorySummary] = []
    for category in categories:
        key = category.name.casefold()
        members = [
            product
            for product in products
            if (
                product.category_id == category.id
                if product.category_id is not None
                else product.category.casefold() == key
            )
        ]
        summaries.append(
            CategorySummary(
                category_id=category.id,
                name=category.name,
                units=sum(product.stock for product in members),
                value=sum(
                    (product.selling_price * product.stock for product in members),
                    Decimal("0"),
                ),
                product_count=len(members),
            )
        )
    summaries.sort(key=lambda summary: summary.value, reverse=True)
    return summaries


def expiry_urgency(days_left: int) -> str:
    if days_left <= 0:
        return "Expired"
    if days_left <= 1:
        return "Critical"
    if days_left <= 3:
        return "Urgent"
    if days_left <= 7:
        return "Soon"
    return "Upcoming"


def expiry_alerts(
    products: Iterable[ProductView],
    now: datetime,
    *,
    window_days: int = DEFAULT_EXPIRY_WINDOW_DAYS,
    tz: str | tzinfo = "UTC",
) -> list[ExpiryAlert]:
    """Stocked products expiring within the next ``window_days`` days."""

    today = _local_day(now, _resolve_tz(tz))
    alerts: list[ExpiryAlert] = []
    for product in products:
        if product.stock <= 0 or product.expiry_date is None:
            continue
        days_left = (product.expiry_date - today).days
        if not 0 < days_left <= window_days:
            continue
        alerts.append(
            ExpiryAlert(
                product_id=product.id,
                name=product.name,
                stock=product.stock,
                expiry_date=product.expiry_date,
                days_left=days_left,
                urgency=expiry_urgency(days_left),
            )
        )
    alerts.sort(key=lambda alert: (alert.days_left, alert.name))
    return alerts


def low_stock(
    products: Iterable[ProductView],
    *,
    threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    category: Optional[str] = None,
) -> list[ProductView]:
    selected = [
        product
        for product in products
        if 0 < product.stock <= threshold and _in_category(product, category)
    ]
    return sorted(selected, key=lambda product: (product.stock, product.name))


def out_of_stock(
    products: Iterable[ProductView],
    *,
    category: Optional[str] = None,
) -> list[ProductView]:
    # Negative balances only happen after an unserialized oversell; list them too.
    selected = [
        product
        for product in products
        if product.stock <= 0 and _in_category(product, category)
    ]
    return sorted(selected, key=lambda product: (product.stock, product.name))


def _in_category(product: ProductView, category: Optional[str]) -> bool:
    return category is None or product.category.casefold() == category.casefold()


def filter_audit_entries(
    entries: Iterable[Any],
    range_token: AuditRange | str,
    now: datetime,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Any]:
    """Entries whose age relative to ``now`` falls inside the named window.

    Fixed windows are exclusive (``now - time < window``); ``custom`` keeps
    entries inside the inclusive ``[start, end]`` bounds.
    """

    try:
        token = AuditRange(range_token)
    except ValueError as exc:
        raise ValidationError(f"unknown audit range: {range_token!r}") from exc

    entries = list(entries)
    if token is AuditRange.ALL:
        return entries
    if token is AuditRange.CUSTOM:
        if start is None or end is None:
            raise ValidationError("custom audit range requires both start and end")
        lower, upper = as_utc(start), as_utc(end)
        if lower > upper:
            raise ValidationError("custom audit range start must not be after end")
        return [entry for entry in entries if lower <= as_utc(entry.created_at) <= upper]

    window = _AUDIT_WINDOWS[token]
    reference = as_utc(now)
    return [entry for entry in entries if reference - as_utc(entry.created_at) < window]


def order_key(movement: Any) -> str:
    match = ORDER_REFERENCE_PATTERN.search(movement.reason or "")
    if match:
        return match.group(0)
    return f"ORD-M{movement.id}"


def derive_orders(
    movements: Iterable[Any],
    products: Iterable[ProductView],
) -> list[DerivedOrder]:
    """Reconstruct sales orders from OUT movements, newest first.

    Movements sharing an ``ORD-<digits>`` token in their reason form one
    order; every other OUT movement is its own single-line order.
    """

    catalog = _prices(products)
    orders: dict[str, DerivedOrder] = {}
    for movement in movements:
        if not _is_type(movement, MovementType.OUT):
            continue
        key = order_key(movement)
        created_at = as_utc(movement.created_at)
        order = orders.get(key)
        if order is None:
            order = orders[key] = DerivedOrder(id=key, time=created_at)
        elif created_at > order.time:
            order.time = created_at

        product = catalog.get(movement.product_id)
        unit_price = product.selling_price if product is not None else Decimal("0")
        name = getattr(movement, "product_name", None) or (
            product.name if product is not None else "Unknown Product"
        )
        line = OrderLine(
            product_id=movement.product_id,
            name=name,
            qty=abs(int(movement.quantity)),
            unit_price=unit_price,
        )
        order.items.append(line)
        order.total += line.line_total
        order.movement_ids.append(movement.id)

    return sorted(orders.values(), key=lambda order: order.time, reverse=True)


def dashboard_metrics(
    products: Sequence[ProductView],
    movements: Iterable[Any],
    now: datetime,
    *,
    tz: str | tzinfo = "UTC",
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> DashboardMetrics:
    zone = _resolve_tz(tz)
    today = _local_day(now, zone)
    catalog = _prices(products)

    todays_sales = [
        movement
        for movement in movements
        if _is_type(movement, MovementType.OUT) and _local_day(movement.created_at, zone) == today
    ]
    revenue = Decimal("0")
    cost = Decimal("0")
    for movement in todays_sales:
        product = catalog.get(movement.product_id)
        if product is None:
            continue
        units = abs(int(movement.quantity))
        revenue += product.selling_price * units
        cost += product.buying_price * units

    status_counts = {status.value: 0 for status in StockStatus}
    for product in products:
        status_counts[product.status.value] += 1

    return DashboardMetrics(
        total_value=sum((p.selling_price * p.stock for p in products), Decimal("0")),
        total_inventory_cost=sum((p.buying_price * p.stock for p in products), Decimal("0")),
        total_items=sum(p.stock for p in products),
        orders_today=len(derive_orders(todays_sales, products)),
        revenue_today=revenue,
        cost_of_goods_sold_today=cost,
        profit_today=revenue - cost,
        low_stock_count=len(low_stock(products, threshold=low_stock_threshold)),
        status_counts=status_counts,
    )


def location_inventory(
    movements: Iterable[Any],
    products: Iterable[ProductView],
    location_id: int,
) -> list[LocationStockItem]:
    """Products with a positive balance at ``location_id``."""

    balances = stock_by_location(movements)
    items = [
        LocationStockItem(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            stock=balances[(product.id, location_id)],
        )
        for product in products
        if balances.get((product.id, location_id), 0) > 0
    ]
    return sorted(items, key=lambda item: item.name)


__all__ = [
    "AuditRange",
    "CategorySummary",
    "DailySales",
    "DashboardMetrics",
    "DerivedOrder",
    "ExpiryAlert",
    "LocationStockItem",
    "OrderLine",
    "category_breakdown",
    "daily_sales_series",
    "dashboard_metrics",
    "derive_orders",
    "expiry_alerts",
    "expiry_urgency",
    "filter_audit_entries",
    "location_inventory",
    "low_stock",
    "order_key",
    "out_of_stock",
]
