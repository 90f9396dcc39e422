from __future__ import annotations

import csv
from io import StringIO
from typing import Any, Dict

from httpx import AsyncClient


async def _issue_token(client: AsyncClient, username: str = "alice", role: str = "manager") -> Dict[str, Any]:
    response = await client.post("/auth/token", json={"username": username, "role": role})
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["token"]
    return payload


async def _auth_headers(client: AsyncClient) -> Dict[str, str]:
    payload = await _issue_token(client)
    return {"Authorization": f"Bearer {payload['token']}"}


async def _create_product(client: AsyncClient, headers, **fields) -> Dict[str, Any]:
    body = {"name": "Widget", "sku": "W-1", "selling_price": "10.00", "buying_price": "6.00"}
    body.update(fields)
    response = await client.post("/products", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def _main_store(client: AsyncClient) -> Dict[str, Any]:
    response = await client.get("/warehouses")
    return next(w for w in response.json() if w["name"] == "Main Store")


async def test_health_endpoint(client: AsyncClient) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "environment": "test"}


async def test_issue_token_and_reject_unknown_role(client: AsyncClient) -> None:
    payload = await _issue_token(client, role="admin")
    assert payload["token_type"] == "Bearer"
    assert payload["role"] == "admin"
    assert payload["expires_in"] == 3600

    response = await client.post("/auth/token", json={"username": "mallory", "role": "root"})
    assert response.status_code == 400
    assert response.json()["status"] == "error"
    assert response.json()["code"] == "validation_error"

    log = (await client.get("/audit-log")).json()
    assert [entry["action"] for entry in log] == ["Login"]
    assert log[0]["actor"] == "alice"


async def test_write_endpoints_require_token(client: AsyncClient) -> None:
    response = await client.post("/movements/sales", json={"items": [{"product_id": 1, "quantity": 1}]})
    assert response.status_code == 401

    response = await client.post(
        "/products",
        json={"name": "Widget", "sku": "W-1"},
        headers={"Authorization": "Bearer forged"},
    )
    assert response.status_code == 401


async def test_create_product_with_initial_stock(client: AsyncClient) -> None:
    headers = await _auth_headers(client)

    product = await _create_product(client, headers, stock=20, category="Tools")

    assert product["stock"] == 20
    assert product["status"] == "In Stock"
    assert product["category"] == "Tools"
    assert product["selling_price"] == "10.00"

    movements = (await client.get("/movements", params={"product_id": product["id"]})).json()
    assert len(movements) == 1
    assert movements[0]["movement_type"] == "IN"
    assert movements[0]["quantity"] == 20
    assert movements[0]["to_location_name"] == "Main Store"
    assert movements[0]["product_name"] == "Widget"


async def test_sale_flow_and_insufficient_stock(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    product = await _create_product(client, headers, stock=3)

    rejected = await client.post(
        "/movements/sales",
        json={"items": [{"product_id": product["id"], "quantity": 5}]},
        headers=headers,
    )
    assert rejected.status_code == 409
    error = rejected.json()
    assert error["status"] == "error"
    assert error["code"] == "insufficient_stock"
    assert error["details"]["available"] == 3

    accepted = await client.post(
        "/movements/sales",
        json={
            "items": [{"product_id": product["id"], "quantity": 2}],
            "order_reference": "ORD-1700000000001",
            "payment_method": "card",
        },
        headers=headers,
    )
    assert accepted.status_code == 201
    result = accepted.json()
    assert result["status"] == "success"
    assert result["movements"][0]["quantity"] == -2
    assert result["movements"][0]["operation_id"] == result["operation_id"]

    refreshed = (await client.get(f"/products/{product['id']}")).json()
    assert refreshed["stock"] == 1
    assert refreshed["status"] == "Low Stock"

    orders = (await client.get("/orders")).json()
    assert orders[0]["id"] == "ORD-1700000000001"
    assert orders[0]["total"] == "20.00"
    assert orders[0]["items"][0]["qty"] == 2


async def test_transfer_and_location_inventory(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    product = await _create_product(client, headers, stock=10)
    main_store = await _main_store(client)
    backroom = (await client.post("/warehouses", json={"name": "Backroom", "type": "Backroom"})).json()

    response = await client.post(
        "/movements/transfers",
        json={
            "product_id": product["id"],
            "from_location_id": main_store["id"],
            "to_location_id": backroom["id"],
            "quantity": 4,
            "note": "shelf",
        },
        headers=headers,
    )
    assert response.status_code == 201
    legs = response.json()["movements"]
    assert [leg["quantity"] for leg in legs] == [-4, 4]

    same = await client.post(
        "/movements/transfers",
        json={
            "product_id": product["id"],
            "from_location_id": backroom["id"],
            "to_location_id": backroom["id"],
            "quantity": 1,
        },
        headers=headers,
    )
    assert same.status_code == 400

    inventory = (await client.get(f"/warehouses/{backroom['id']}/inventory")).json()
    assert inventory["warehouse"]["name"] == "Backroom"
    assert inventory["total_units"] == 4
    assert inventory["items"][0]["stock"] == 4

    main = (await client.get(f"/warehouses/{main_store['id']}/inventory")).json()
    assert main["total_units"] == 6


async def test_initial_stock_and_return_endpoints(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    product = await _create_product(client, headers)

    loaded = await client.post(
        "/movements/initial-stock",
        json={"product_id": product["id"], "quantity": 5},
        headers=headers,
    )
    assert loaded.status_code == 201
    assert loaded.json()["movements"][0]["movement_type"] == "IN"

    returned = await client.post(
        "/movements/returns",
        json={"product_id": product["id"], "quantity": 2, "note": "unopened"},
        headers=headers,
    )
    assert returned.status_code == 201
    assert returned.json()["movements"][0]["movement_type"] == "RETURN"

    refreshed = (await client.get(f"/products/{product['id']}")).json()
    assert refreshed["stock"] == 7


async def test_inventory_snapshot(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    await _create_product(client, headers, stock=2, expiry_date="2031-05-01")

    snapshot = (await client.get("/inventory")).json()

    assert set(snapshot) == {"products", "categories", "warehouses", "batches", "movements"}
    assert snapshot["products"][0]["expiry_date"] == "2031-05-01"
    assert snapshot["batches"][0]["product_name"] == "Widget"
    assert snapshot["warehouses"][0]["name"] == "Main Store"
    assert len(snapshot["movements"]) == 1


async def test_product_update_and_delete(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    product = await _create_product(client, headers, stock=4)

    updated = await client.put(
        f"/products/{product['id']}", json={"name": "Gadget", "selling_price": "12.00"}
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Gadget"
    assert updated.json()["stock"] == 4

    unauthorised = await client.delete(f"/products/{product['id']}")
    assert unauthorised.status_code == 401

    deleted = await client.delete(f"/products/{product['id']}", headers=headers)
    assert deleted.status_code == 204

    missing = await client.get(f"/products/{product['id']}")
    assert missing.status_code == 404
    assert missing.json() == {
        "status": "error",
        "code": "not_found",
        "error": f"Product {product['id']} not found",
    }


async def test_category_crud(client: AsyncClient) -> None:
    created = await client.post("/categories", json={"name": "Dairy", "has_expiry": True})
    assert created.status_code == 201
    category = created.json()

    updated = await client.put(f"/categories/{category['id']}", json={"icon": "milk"})
    assert updated.json()["icon"] == "milk"
    assert updated.json()["has_expiry"] is True

    assert [c["name"] for c in (await client.get("/categories")).json()] == ["Dairy"]

    assert (await client.delete(f"/categories/{category['id']}")).status_code == 204
    assert (await client.get(f"/categories/{category['id']}")).status_code == 404


async def test_category_names_are_unique_ignoring_case(client: AsyncClient) -> None:
    drinks = (await client.post("/categories", json={"name": "Drinks"})).json()
    snacks = (await client.post("/categories", json={"name": "Snacks"})).json()

    duplicate = await client.post("/categories", json={"name": "drinks"})
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "validation_error"
    assert duplicate.json()["details"] == {"category_id": drinks["id"]}

    renamed = await client.put(f"/categories/{snacks['id']}", json={"name": " DRINKS "})
    assert renamed.status_code == 400

    recased = await client.put(f"/categories/{drinks['id']}", json={"name": "DRINKS"})
    assert recased.status_code == 200
    assert [c["name"] for c in (await client.get("/categories")).json()] == ["DRINKS", "Snacks"]

    headers = await _auth_headers(client)
    await _create_product(client, headers, name="Tea", sku="T-1", stock=5, category="Drinks")
    breakdown = (await client.get("/analytics/categories")).json()
    assert sum(summary["units"] for summary in breakdown) == 5


async def test_warehouse_crud(client: AsyncClient) -> None:
    created = await client.post("/warehouses", json={"name": "Depot"})
    assert created.status_code == 201
    warehouse = created.json()
    assert warehouse["type"] == "Warehouse"

    updated = await client.put(f"/warehouses/{warehouse['id']}", json={"is_active": False})
    assert updated.json()["is_active"] is False

    assert (await client.delete(f"/warehouses/{warehouse['id']}")).status_code == 204
    assert (await client.get(f"/warehouses/{warehouse['id']}")).status_code == 404


async def test_warehouse_with_movements_cannot_be_deleted(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    product = await _create_product(client, headers, stock=6)
    main_store = await _main_store(client)
    depot = (await client.post("/warehouses", json={"name": "Depot"})).json()
    await client.post(
        "/movements/transfers",
        json={
            "product_id": product["id"],
            "from_location_id": main_store["id"],
            "to_location_id": depot["id"],
            "quantity": 2,
        },
        headers=headers,
    )

    rejected = await client.delete(f"/warehouses/{depot['id']}")
    assert rejected.status_code == 400
    assert rejected.json()["details"] == {"warehouse_id": depot["id"], "movements": 1}

    assert (await client.get(f"/warehouses/{depot['id']}")).status_code == 200
    inventory = (await client.get(f"/warehouses/{depot['id']}/inventory")).json()
    assert inventory["total_units"] == 2

    deactivated = await client.put(f"/warehouses/{depot['id']}", json={"is_active": False})
    assert deactivated.json()["is_active"] is False


async def test_analytics_endpoints(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    await _create_product(client, headers, name="Tea", sku="T-1", stock=4, category="Drinks")
    await _create_product(client, headers, name="Salt", sku="S-1", category="Pantry")

    daily = (await client.get("/analytics/daily-sales")).json()
    assert len(daily) == 7
    assert daily[-1]["inflow_units"] == 4

    categories = (await client.get("/analytics/categories")).json()
    assert categories[0]["name"] == "Drinks"
    assert categories[0]["units"] == 4

    low = (await client.get("/analytics/low-stock")).json()
    assert [p["name"] for p in low] == ["Tea"]

    out = (await client.get("/analytics/out-of-stock", params={"category": "pantry"})).json()
    assert [p["name"] for p in out] == ["Salt"]

    assert (await client.get("/analytics/expiry-alerts")).json() == []

    dashboard = (await client.get("/analytics/dashboard")).json()
    assert dashboard["total_items"] == 4
    assert dashboard["status_counts"] == {"In Stock": 0, "Low Stock": 1, "Out of Stock": 1}


async def test_audit_log_filter_and_export(client: AsyncClient) -> None:
    headers = await _auth_headers(client)
    await _create_product(client, headers)

    recent = (await client.get("/audit-log", params={"range": "hour"})).json()
    assert [entry["action"] for entry in recent] == ["Product Created", "Login"]

    bad = await client.get("/audit-log", params={"range": "fortnight"})
    assert bad.status_code == 400
    assert bad.json()["code"] == "validation_error"

    export = await client.get("/audit-log/export")
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert "attachment" in export.headers["content-disposition"]
    rows = list(csv.reader(StringIO(export.text)))
    assert rows[0] == ["ID", "Time", "Type", "Action", "Target", "User", "Role", "Level", "Amount"]
    assert rows[1][3] == "Product Created"
