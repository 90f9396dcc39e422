from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from stock_ledger import analytics
from stock_ledger.aggregator import classify_stock
from stock_ledger.exceptions import ValidationError
from stock_ledger.ledger import MovementEvent, MovementType, ProductView

NOW = datetime(2024, 5, 10, 15, 30, tzinfo=timezone.utc)


def _product(
    product_id: int,
    name: str,
    stock: int,
    *,
    price: str = "10.00",
    cost: str = "6.00",
    category: str = "Uncategorized",
    category_id=None,
    expiry_date=None,
) -> ProductView:
    return ProductView(
        id=product_id,
        name=name,
        sku=f"SKU-{product_id}",
        category=category,
        category_id=category_id,
        selling_price=Decimal(price),
        buying_price=Decimal(cost),
        stock=stock,
        status=classify_stock(stock),
        expiry_date=expiry_date,
    )


def _event(
    movement_id: int,
    quantity: int,
    movement_type: MovementType,
    created_at: datetime,
    *,
    product_id: int = 1,
    reason=None,
    from_location_id=None,
    to_location_id=None,
) -> MovementEvent:
    return MovementEvent(
        id=movement_id,
        product_id=product_id,
        quantity=quantity,
        movement_type=movement_type,
        created_at=created_at,
        reason=reason,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
    )


def test_daily_sales_series_is_zero_filled_and_chronological() -> None:
    products = [_product(1, "Coffee", 30, price="4.00")]
    first_day = NOW - timedelta(days=6)
    fifth_day = NOW - timedelta(days=2)
    movements = [
        _event(1, -2, MovementType.OUT, first_day),
        _event(2, -3, MovementType.OUT, fifth_day),
        _event(3, 12, MovementType.IN, fifth_day),
        _event(4, -9, MovementType.OUT, NOW - timedelta(days=8)),
    ]

    series = analytics.daily_sales_series(movements, products, NOW)

    assert len(series) == 7
    assert [entry.day for entry in series] == [
        date(2024, 5, 4) + timedelta(days=offset) for offset in range(7)
    ]
    assert series[0].sales_value == Decimal("8.00")
    assert series[0].units_sold == 2
    assert series[4].sales_value == Decimal("12.00")
    assert series[4].inflow_units == 12
    for index in (1, 2, 3, 5, 6):
        assert series[index].sales_value == 0
        assert series[index].units_sold == 0


def test_daily_sales_series_buckets_by_configured_timezone() -> None:
    products = [_product(1, "Coffee", 30, price="4.00")]
    late_evening = datetime(2024, 5, 9, 23, 30, tzinfo=timezone.utc)
    movements = [_event(1, -1, MovementType.OUT, late_evening)]

    series = analytics.daily_sales_series(movements, products, NOW, tz="Asia/Tokyo")

    assert series[-1].day == date(2024, 5, 11)
    assert series[-2].day == date(2024, 5, 10)
    assert series[-2].units_sold == 1


@pytest.mark.parametrize(
    ("days_left", "urgency"),
    [(-1, "Expired"), (0, "Expired"), (1, "Critical"), (3, "Urgent"), (7, "Soon"), (10, "Upcoming")],
)
def test_expiry_urgency_tiers(days_left: int, urgency: str) -> None:
    assert analytics.expiry_urgency(days_left) == urgency


def test_expiry_alerts_only_keep_stocked_products_inside_window() -> None:
    today = NOW.date()
    products = [
        _product(1, "Yoghurt", 5, expiry_date=today + timedelta(days=2)),
        _product(2, "Cheese", 5, expiry_date=today + timedelta(days=20)),
        _product(3, "Old Milk", 5, expiry_date=today - timedelta(days=1)),
        _product(4, "Empty Cream", 0, expiry_date=today + timedelta(days=2)),
        _product(5, "Honey", 5, expiry_date=today + timedelta(days=90)),
        _product(6, "Salt", 5),
    ]

    alerts = analytics.expiry_alerts(products, NOW)

    assert [alert.name for alert in alerts] == ["Yoghurt", "Cheese"]
    assert alerts[0].days_left == 2
    assert alerts[0].urgency == "Urgent"
    assert alerts[1].urgency == "Upcoming"


def test_low_and_out_of_stock() -> None:
    products = [
        _product(1, "Tea", 3, category="Drinks"),
        _product(2, "Juice", 10, category="Drinks"),
        _product(3, "Soap", 2, category="Household"),
        _product(4, "Water", 0, category="Drinks"),
        _product(5, "Oversold", -1, category="Household"),
        _product(6, "Rice", 50),
    ]

    assert [p.name for p in analytics.low_stock(products)] == ["Soap", "Tea", "Juice"]
    assert [p.name for p in analytics.low_stock(products, category="drinks")] == ["Tea", "Juice"]
    assert [p.name for p in analytics.low_stock(products, threshold=2)] == ["Soap"]
    assert [p.name for p in analytics.out_of_stock(products)] == ["Oversold", "Water"]
    assert [p.name for p in analytics.out_of_stock(products, category="Drinks")] == ["Water"]


def test_category_breakdown_matches_by_id_or_name() -> None:
    categories = [
        SimpleNamespace(id=1, name="Drinks"),
        SimpleNamespace(id=2, name="Snacks"),
        SimpleNamespace(id=3, name="Empty"),
    ]
    products = [
        _product(1, "Tea", 4, price="5.00", category="Drinks", category_id=1),
        _product(2, "Juice", 2, price="3.00", category="drinks"),
        _product(3, "Chips", 10, price="2.00", category="Snacks", category_id=2),
    ]

    summaries = analytics.category_breakdown(products, categories)

    assert [summary.name for summary in summaries] == ["Drinks", "Snacks", "Empty"]
    drinks = summaries[0]
    assert drinks.units == 6
    assert drinks.value == Decimal("26.00")
    assert drinks.product_count == 2
    assert summaries[2].units == 0


def test_category_breakdown_counts_linked_products_once() -> None:
    categories = [SimpleNamespace(id=1, name="Drinks"), SimpleNamespace(id=2, name="drinks")]
    products = [
        _product(1, "Tea", 5, price="4.00", category="Drinks", category_id=1),
        _product(2, "Water", 3, price="1.00", category="drinks", category_id=2),
    ]

    summaries = analytics.category_breakdown(products, categories)

    assert sum(summary.units for summary in summaries) == 8
    by_id = {summary.category_id: summary for summary in summaries}
    assert by_id[1].units == 5
    assert by_id[2].units == 3
    assert by_id[2].product_count == 1


def test_filter_audit_entries_by_named_window() -> None:
    two_hours_ago = SimpleNamespace(id=1, created_at=NOW - timedelta(hours=2))
    entries = [two_hours_ago]

    assert analytics.filter_audit_entries(entries, "day", NOW) == entries
    assert analytics.filter_audit_entries(entries, "week", NOW) == entries
    assert analytics.filter_audit_entries(entries, "hour", NOW) == []
    assert analytics.filter_audit_entries(entries, "all", NOW) == entries


def test_filter_audit_entries_accepts_naive_timestamps() -> None:
    naive = SimpleNamespace(id=1, created_at=(NOW - timedelta(seconds=30)).replace(tzinfo=None))

    assert analytics.filter_audit_entries([naive], "minute", NOW) == [naive]
    assert analytics.filter_audit_entries([naive], "second", NOW) == []


def test_filter_audit_entries_custom_range() -> None:
    inside = SimpleNamespace(id=1, created_at=NOW - timedelta(days=3))
    outside = SimpleNamespace(id=2, created_at=NOW - timedelta(days=10))

    selected = analytics.filter_audit_entries(
        [inside, outside],
        "custom",
        NOW,
        start=NOW - timedelta(days=5),
        end=NOW - timedelta(days=1),
    )

    assert selected == [inside]
    with pytest.raises(ValidationError):
        analytics.filter_audit_entries([inside], "custom", NOW, start=NOW)
    with pytest.raises(ValidationError):
        analytics.filter_audit_entries([inside], "custom", NOW, start=NOW, end=NOW - timedelta(days=1))


def test_filter_audit_entries_rejects_unknown_range() -> None:
    with pytest.raises(ValidationError):
        analytics.filter_audit_entries([], "fortnight", NOW)


def test_derive_orders_groups_by_order_reference() -> None:
    products = [_product(1, "Tea", 10, price="5.00"), _product(2, "Cake", 10, price="12.50")]
    earlier = NOW - timedelta(hours=3)
    movements = [
        _event(1, -2, MovementType.OUT, earlier, reason="Sales Order: ORD-1700000000000"),
        _event(2, -1, MovementType.OUT, earlier, product_id=2, reason="Sales Order: ORD-1700000000000 - Payment: CASH"),
        _event(3, -4, MovementType.OUT, NOW, reason="Manual deduction"),
        _event(4, 10, MovementType.IN, NOW, reason="Sales Order: ORD-1"),
        _event(5, -3, MovementType.TRANSFER, NOW, reason="Transfer OUT: ORD-2"),
    ]

    orders = analytics.derive_orders(movements, products)

    assert [order.id for order in orders] == ["ORD-M3", "ORD-1700000000000"]
    standalone, grouped = orders
    assert standalone.total == Decimal("20.00")
    assert [(line.name, line.qty) for line in grouped.items] == [("Tea", 2), ("Cake", 1)]
    assert grouped.total == Decimal("22.50")
    assert grouped.customer == "Walk-in Customer"
    assert grouped.movement_ids == [1, 2]


def test_dashboard_metrics_counts_todays_sales() -> None:
    products = [
        _product(1, "Tea", 20, price="5.00", cost="3.00"),
        _product(2, "Cake", 4, price="10.00", cost="4.00"),
        _product(3, "Gone", 0),
    ]
    movements = [
        _event(1, -2, MovementType.OUT, NOW - timedelta(hours=1), reason="Sales Order: ORD-11"),
        _event(2, -1, MovementType.OUT, NOW - timedelta(hours=1), product_id=2, reason="Sales Order: ORD-11"),
        _event(3, -5, MovementType.OUT, NOW - timedelta(days=2), reason="Sales Order: ORD-7"),
    ]

    metrics = analytics.dashboard_metrics(products, movements, NOW)

    assert metrics.total_items == 24
    assert metrics.total_value == Decimal("140.00")
    assert metrics.total_inventory_cost == Decimal("76.00")
    assert metrics.orders_today == 1
    assert metrics.revenue_today == Decimal("20.00")
    assert metrics.cost_of_goods_sold_today == Decimal("10.00")
    assert metrics.profit_today == Decimal("10.00")
    assert metrics.low_stock_count == 1
    assert metrics.status_counts == {"In Stock": 1, "Low Stock": 1, "Out of Stock": 1}


def test_location_inventory_lists_positive_balances() -> None:
    products = [_product(1, "Tea", 10), _product(2, "Cake", 0)]
    movements = [
        _event(1, 10, MovementType.IN, NOW, to_location_id=1),
        _event(2, -4, MovementType.TRANSFER, NOW, from_location_id=1),
        _event(3, 4, MovementType.TRANSFER, NOW, to_location_id=2),
        _event(4, 3, MovementType.IN, NOW, product_id=2, to_location_id=2),
        _event(5, -3, MovementType.OUT, NOW, product_id=2, from_location_id=2),
    ]

    items = analytics.location_inventory(movements, products, 2)

    assert [(item.name, item.stock) for item in items] == [("Tea", 4)]
    assert analytics.location_inventory(movements, products, 1)[0].stock == 6
