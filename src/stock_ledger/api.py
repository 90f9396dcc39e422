"""FastAPI router configuration."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from . import analytics, audit, crud, schemas
from .auth import VALID_ROLES, Actor, TokenAuthority, extract_bearer_token
from .config import Settings, get_settings
from .database import get_session
from .exceptions import LedgerError, StoreUnavailableError, ValidationError
from .ledger import utcnow
from .locks import StockLockRegistry
from .logging_config import configure_logging
from .snapshot import find_product, load_inventory, load_movements
from .writer import MovementWriter, SaleLine, WriteOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def provide_token_authority(settings: Settings = Depends(provide_settings)) -> TokenAuthority:
    return TokenAuthority(settings)


def provide_locks(
    request: Request, settings: Settings = Depends(provide_settings)
) -> Optional[StockLockRegistry]:
    if not settings.serialize_stock_writes:
        return None
    return request.app.state.stock_locks


async def require_actor(
    authorization: Optional[str] = Header(default=None),
    authority: TokenAuthority = Depends(provide_token_authority),
) -> Actor:
    token = extract_bearer_token(authorization)
    actor = authority.authenticate(token) if token else None
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def provide_writer(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
    actor: Actor = Depends(require_actor),
    locks: Optional[StockLockRegistry] = Depends(provide_locks),
) -> MovementWriter:
    return MovementWriter(session, actor=actor, settings=settings, locks=locks)


def _write_result(outcome: WriteOutcome) -> schemas.WriteResult:
    return schemas.WriteResult(
        operation_id=outcome.operation_id,
        movements=[schemas.MovementOut.model_validate(movement) for movement in outcome.movements],
    )


async def _product_out(
    session: AsyncSession, settings: Settings, product_id: int
) -> schemas.ProductOut:
    snapshot = await load_inventory(session, settings)
    return schemas.ProductOut.model_validate(find_product(snapshot, product_id))


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


@router.post("/auth/token", response_model=schemas.TokenOut, tags=["auth"])
async def issue_token(
    payload: schemas.TokenRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
    authority: TokenAuthority = Depends(provide_token_authority),
) -> schemas.TokenOut:
    if payload.role not in VALID_ROLES:
        raise ValidationError(f"Unknown role '{payload.role}'")
    actor = Actor(username=payload.username.strip(), role=payload.role)
    issued = authority.issue(actor, payload.expires_in)
    await audit.append_entry(
        session,
        type=audit.LogType.AUTH,
        action="Login",
        target=actor.username,
        actor=actor,
        level=audit.LogLevel.INFO,
        path="/login",
        capacity=settings.audit_log_capacity,
    )
    await session.commit()
    return schemas.TokenOut(
        token=issued.token,
        issued_at=issued.issued_at,
        expires_at=issued.expires_at,
        expires_in=issued.expires_in,
        username=actor.username,
        role=actor.role,
    )


@router.get("/inventory", response_model=schemas.InventorySnapshotOut, tags=["inventory"])
async def refresh_inventory(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.InventorySnapshotOut:
    snapshot = await load_inventory(session, settings)
    return schemas.InventorySnapshotOut.model_validate(snapshot)


@router.post(
    "/products",
    response_model=schemas.ProductOut,
    status_code=status.HTTP_201_CREATED,
    tags=["products"],
)
async def create_product(
    payload: schemas.ProductCreate,
    writer: MovementWriter = Depends(provide_writer),
) -> schemas.ProductOut:
    product = await writer.register_product(payload)
    return await _product_out(writer.session, writer.settings, product.id)


@router.get("/products", response_model=list[schemas.ProductOut], tags=["products"])
async def list_products(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.ProductOut]:
    snapshot = await load_inventory(session, settings)
    return [schemas.ProductOut.model_validate(product) for product in snapshot.products]


@router.get("/products/{product_id}", response_model=schemas.ProductOut, tags=["products"])
async def get_product(
    product_id: int,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.ProductOut:
    return await _product_out(session, settings, product_id)


@router.put("/products/{product_id}", response_model=schemas.ProductOut, tags=["products"])
async def update_product(
    product_id: int,
    payload: schemas.ProductUpdate,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.ProductOut:
    product = await crud.get_product(session, product_id)
    await crud.update_product(session, product, payload)
    await session.commit()
    return await _product_out(session, settings, product_id)


@router.delete(
    "/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["products"]
)
async def delete_product(
    product_id: int, writer: MovementWriter = Depends(provide_writer)
) -> None:
    await writer.delete_product(product_id)


@router.post(
    "/categories",
    response_model=schemas.CategoryOut,
    status_code=status.HTTP_201_CREATED,
    tags=["categories"],
)
async def create_category(
    payload: schemas.CategoryCreate, session: AsyncSession = Depends(get_session)
) -> schemas.CategoryOut:
    category = await crud.create_category(session, payload)
    await session.commit()
    return schemas.CategoryOut.model_validate(category)


@router.get("/categories", response_model=list[schemas.CategoryOut], tags=["categories"])
async def list_categories(
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.CategoryOut]:
    categories = await crud.list_categories(session)
    return [schemas.CategoryOut.model_validate(category) for category in categories]


@router.get("/categories/{category_id}", response_model=schemas.CategoryOut, tags=["categories"])
async def get_category(
    category_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.CategoryOut:
    category = await crud.get_category(session, category_id)
    return schemas.CategoryOut.model_validate(category)


@router.put("/categories/{category_id}", response_model=schemas.CategoryOut, tags=["categories"])
async def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.CategoryOut:
    category = await crud.get_category(session, category_id)
    category = await crud.update_category(session, category, payload)
    await session.commit()
    await session.refresh(category)
    return schemas.CategoryOut.model_validate(category)


@router.delete(
    "/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["categories"]
)
async def delete_category(category_id: int, session: AsyncSession = Depends(get_session)) -> None:
    category = await crud.get_category(session, category_id)
    await crud.delete_category(session, category)
    await session.commit()


@router.post(
    "/warehouses",
    response_model=schemas.WarehouseOut,
    status_code=status.HTTP_201_CREATED,
    tags=["warehouses"],
)
async def create_warehouse(
    payload: schemas.WarehouseCreate, session: AsyncSession = Depends(get_session)
) -> schemas.WarehouseOut:
    warehouse = await crud.create_warehouse(session, payload)
    await session.commit()
    return schemas.WarehouseOut.model_validate(warehouse)


@router.get("/warehouses", response_model=list[schemas.WarehouseOut], tags=["warehouses"])
async def list_warehouses(
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.WarehouseOut]:
    warehouses = await crud.list_warehouses(session)
    return [schemas.WarehouseOut.model_validate(warehouse) for warehouse in warehouses]


@router.get("/warehouses/{warehouse_id}", response_model=schemas.WarehouseOut, tags=["warehouses"])
async def get_warehouse(
    warehouse_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.WarehouseOut:
    warehouse = await crud.get_warehouse(session, warehouse_id)
    return schemas.WarehouseOut.model_validate(warehouse)


@router.put("/warehouses/{warehouse_id}", response_model=schemas.WarehouseOut, tags=["warehouses"])
async def update_warehouse(
    warehouse_id: int,
    payload: schemas.WarehouseUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.WarehouseOut:
    warehouse = await crud.get_warehouse(session, warehouse_id)
    warehouse = await crud.update_warehouse(session, warehouse, payload)
    await session.commit()
    await session.refresh(warehouse)
    return schemas.WarehouseOut.model_validate(warehouse)


@router.delete(
    "/warehouses/{warehouse_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["warehouses"]
)
async def delete_warehouse(
    warehouse_id: int, session: AsyncSession = Depends(get_session)
) -> None:
    warehouse = await crud.get_warehouse(session, warehouse_id)
    await crud.delete_warehouse(session, warehouse)
    await session.commit()


@router.get(
    "/warehouses/{warehouse_id}/inventory",
    response_model=schemas.LocationInventoryOut,
    tags=["warehouses"],
)
async def warehouse_inventory(
    warehouse_id: int,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.LocationInventoryOut:
    warehouse = await crud.get_warehouse(session, warehouse_id)
    snapshot = await load_inventory(session, settings)
    items = analytics.location_inventory(snapshot.movements, snapshot.products, warehouse.id)
    return schemas.LocationInventoryOut(
        warehouse=schemas.WarehouseOut.model_validate(warehouse),
        total_units=sum(item.stock for item in items),
        items=[schemas.LocationStockItemOut.model_validate(item) for item in items],
    )


@router.get("/movements", response_model=list[schemas.MovementOut], tags=["movements"])
async def list_movements(
    product_id: Optional[int] = None,
    location_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.MovementOut]:
    events = await load_movements(session, product_id=product_id, location_id=location_id)
    return [schemas.MovementOut.model_validate(event) for event in events]


@router.post(
    "/movements/initial-stock",
    response_model=schemas.WriteResult,
    status_code=status.HTTP_201_CREATED,
    tags=["movements"],
)
async def record_initial_stock(
    payload: schemas.InitialStockRequest,
    writer: MovementWriter = Depends(provide_writer),
) -> schemas.WriteResult:
    outcome = await writer.record_initial_stock(
        payload.product_id,
        payload.quantity,
        location_id=payload.location_id,
        note=payload.note,
    )
    return _write_result(outcome)


@router.post(
    "/movements/sales",
    response_model=schemas.WriteResult,
    status_code=status.HTTP_201_CREATED,
    tags=["movements"],
)
async def record_sale(
    payload: schemas.SaleRequest,
    writer: MovementWriter = Depends(provide_writer),
) -> schemas.WriteResult:
    outcome = await writer.record_sale(
        [
            SaleLine(product_id=item.product_id, quantity=item.quantity, serials=tuple(item.serials))
            for item in payload.items
        ],
        source_location_id=payload.source_location_id,
        note=payload.note,
        order_reference=payload.order_reference,
        payment_method=payload.payment_method,
        customer=payload.customer,
    )
    return _write_result(outcome)


@router.post(
    "/movements/transfers",
    response_model=schemas.WriteResult,
    status_code=status.HTTP_201_CREATED,
    tags=["movements"],
)
async def record_transfer(
    payload: schemas.TransferRequest,
    writer: MovementWriter = Depends(provide_writer),
) -> schemas.WriteResult:
    outcome = await writer.record_transfer(
        payload.product_id,
        payload.from_location_id,
        payload.to_location_id,
        payload.quantity,
        payload.note,
    )
    return _write_result(outcome)


@router.post(
    "/movements/returns",
    response_model=schemas.WriteResult,
    status_code=status.HTTP_201_CREATED,
    tags=["movements"],
)
async def record_return(
    payload: schemas.ReturnRequest,
    writer: MovementWriter = Depends(provide_writer),
) -> schemas.WriteResult:
    outcome = await writer.record_return(
        payload.product_id,
        payload.quantity,
        to_location_id=payload.to_location_id,
        note=payload.note,
        order_reference=payload.order_reference,
        serials=payload.serials,
    )
    return _write_result(outcome)


@router.get("/orders", response_model=list[schemas.OrderOut], tags=["analytics"])
async def list_orders(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.OrderOut]:
    snapshot = await load_inventory(session, settings)
    orders = analytics.derive_orders(snapshot.movements, snapshot.products)
    return [schemas.OrderOut.model_validate(order) for order in orders]


@router.get(
    "/analytics/daily-sales", response_model=list[schemas.DailySalesOut], tags=["analytics"]
)
async def daily_sales(
    days: int = Query(default=7, ge=1, le=366),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.DailySalesOut]:
    snapshot = await load_inventory(session, settings)
    series = analytics.daily_sales_series(
        snapshot.movements, snapshot.products, utcnow(), days=days, tz=settings.default_timezone
    )
    return [schemas.DailySalesOut.model_validate(day) for day in series]


@router.get(
    "/analytics/categories", response_model=list[schemas.CategorySummaryOut], tags=["analytics"]
)
async def category_summary(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.CategorySummaryOut]:
    snapshot = await load_inventory(session, settings)
    summaries = analytics.category_breakdown(snapshot.products, snapshot.categories)
    return [schemas.CategorySummaryOut.model_validate(summary) for summary in summaries]


@router.get(
    "/analytics/expiry-alerts", response_model=list[schemas.ExpiryAlertOut], tags=["analytics"]
)
async def expiry_alerts(
    window_days: Optional[int] = Query(default=None, ge=1),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.ExpiryAlertOut]:
    snapshot = await load_inventory(session, settings)
    alerts = analytics.expiry_alerts(
        snapshot.products,
        utcnow(),
        window_days=window_days or settings.expiry_window_days,
        tz=settings.default_timezone,
    )
    return [schemas.ExpiryAlertOut.model_validate(alert) for alert in alerts]


@router.get("/analytics/low-stock", response_model=list[schemas.ProductOut], tags=["analytics"])
async def low_stock(
    category: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.ProductOut]:
    snapshot = await load_inventory(session, settings)
    products = analytics.low_stock(
        snapshot.products, threshold=settings.low_stock_threshold, category=category
    )
    return [schemas.ProductOut.model_validate(product) for product in products]


@router.get(
    "/analytics/out-of-stock", response_model=list[schemas.ProductOut], tags=["analytics"]
)
async def out_of_stock(
    category: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.ProductOut]:
    snapshot = await load_inventory(session, settings)
    products = analytics.out_of_stock(snapshot.products, category=category)
    return [schemas.ProductOut.model_validate(product) for product in products]


@router.get("/analytics/dashboard", response_model=schemas.DashboardOut, tags=["analytics"])
async def dashboard(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.DashboardOut:
    snapshot = await load_inventory(session, settings)
    metrics = analytics.dashboard_metrics(
        snapshot.products,
        snapshot.movements,
        utcnow(),
        tz=settings.default_timezone,
        low_stock_threshold=settings.low_stock_threshold,
    )
    return schemas.DashboardOut.model_validate(metrics)


async def _filtered_audit_entries(
    session: AsyncSession,
    range_token: str,
    start: Optional[datetime],
    end: Optional[datetime],
) -> list:
    entries = await audit.list_entries(session)
    return analytics.filter_audit_entries(entries, range_token, utcnow(), start=start, end=end)


@router.get("/audit-log", response_model=list[schemas.AuditEntryOut], tags=["audit"])
async def audit_log(
    range_token: str = Query(default="all", alias="range"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.AuditEntryOut]:
    entries = await _filtered_audit_entries(session, range_token, start, end)
    return [schemas.AuditEntryOut.model_validate(entry) for entry in entries]


@router.get("/audit-log/export", tags=["audit"])
async def export_audit_log(
    range_token: str = Query(default="all", alias="range"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
) -> Response:
    entries = await _filtered_audit_entries(session, range_token, start, end)
    return Response(
        content=audit.entries_to_csv(entries),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-log.csv"'},
    )


async def handle_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
    if isinstance(exc, StoreUnavailableError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    app = FastAPI(title=settings.app_name)
    app.dependency_overrides[provide_settings] = lambda: settings
    app.state.stock_locks = StockLockRegistry()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.access_control_allow_origin.split(",")],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LedgerError, handle_ledger_error)
    app.include_router(router)
    return app


app = create_app()


__all__ = ["app", "create_app"]
