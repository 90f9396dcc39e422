"""Pydantic schemas used by the API."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .ledger import MovementType, StockStatus, WarehouseType


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class HealthStatus(BaseModel):
    status: str = "ok"
    environment: str


class TokenRequest(BaseModel):
    username: str = Field(..., min_length=1)
    role: str = "staff"
    expires_in: Optional[int] = None


class TokenOut(BaseModel):
    status: str = "success"
    token: str
    token_type: str = "Bearer"
    issued_at: int
    expires_at: int
    expires_in: int
    username: str
    role: str


class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None
    has_expiry: bool = False
    has_serials: bool = False


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None
    has_expiry: Optional[bool] = None
    has_serials: Optional[bool] = None


class CategoryOut(CategoryBase, ORMModel):
    id: int


class WarehouseBase(BaseModel):
    name: str = Field(..., min_length=1)
    type: WarehouseType = WarehouseType.WAREHOUSE
    is_active: bool = True


class WarehouseCreate(WarehouseBase):
    pass


class WarehouseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[WarehouseType] = None
    is_active: Optional[bool] = None


class WarehouseOut(WarehouseBase, ORMModel):
    id: int


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1)
    sku: str = Field(..., description="Stock keeping unit; uniqueness is not enforced.")
    category: Optional[str] = Field(default=None, description="Category name, matched case-insensitively.")
    buying_price: Decimal = Field(default=Decimal("0"), ge=0)
    selling_price: Decimal = Field(default=Decimal("0"), ge=0)
    model: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    colors: list[str] = Field(default_factory=list)
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None


class ProductCreate(ProductBase):
    stock: int = Field(default=0, ge=0, description="Starting stock loaded into the default location.")
    serials: list[str] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    sku: Optional[str] = None
    category: Optional[str] = None
    buying_price: Optional[Decimal] = Field(default=None, ge=0)
    selling_price: Optional[Decimal] = Field(default=None, ge=0)
    model: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    colors: Optional[list[str]] = None
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None


class ProductOut(ORMModel):
    id: int
    name: str
    sku: str
    category: str
    category_id: Optional[int] = None
    buying_price: Decimal
    selling_price: Decimal
    stock: int
    status: StockStatus
    model: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    serials: list[str] = Field(default_factory=list)
    colors: list[str] = Field(default_factory=list)
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None


class BatchOut(ORMModel):
    id: int
    product_id: int
    batch_number: str
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None
    product_name: Optional[str] = None


class MovementOut(ORMModel):
    id: int
    product_id: int
    product_name: Optional[str] = None
    from_location_id: Optional[int] = None
    from_location_name: Optional[str] = None
    to_location_id: Optional[int] = None
    to_location_name: Optional[str] = None
    quantity: int
    movement_type: MovementType
    reason: Optional[str] = None
    operation_id: Optional[str] = None
    created_at: datetime


class InventorySnapshotOut(ORMModel):
    products: list[ProductOut]
    categories: list[CategoryOut]
    warehouses: list[WarehouseOut]
    batches: list[BatchOut]
    movements: list[MovementOut]


class InitialStockRequest(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=0)
    location_id: Optional[int] = None
    note: Optional[str] = None


class SaleItem(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    serials: list[str] = Field(default_factory=list)


class SaleRequest(BaseModel):
    items: list[SaleItem] = Field(..., min_length=1)
    source_location_id: Optional[int] = None
    note: Optional[str] = None
    order_reference: Optional[str] = None
    payment_method: Optional[str] = None
    customer: Optional[str] = None


class TransferRequest(BaseModel):
    product_id: int
    from_location_id: int
    to_location_id: int
    quantity: int
    note: str = ""


class ReturnRequest(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    to_location_id: Optional[int] = None
    note: Optional[str] = None
    order_reference: Optional[str] = None
    serials: list[str] = Field(default_factory=list)


class WriteResult(BaseModel):
    status: str = "success"
    operation_id: Optional[str] = None
    movements: list[MovementOut]


class DailySalesOut(ORMModel):
    day: date
    sales_value: Decimal
    units_sold: int
    inflow_units: int


class CategorySummaryOut(ORMModel):
    category_id: Optional[int]
    name: str
    units: int
    value: Decimal
    product_count: int


class ExpiryAlertOut(ORMModel):
    product_id: int
    name: str
    stock: int
    expiry_date: date
    days_left: int
    urgency: str


class OrderLineOut(ORMModel):
    product_id: int
    name: str
    qty: int
    unit_price: Decimal


class OrderOut(ORMModel):
    id: str
    time: datetime
    customer: str
    status: str
    items: list[OrderLineOut]
    total: Decimal
    movement_ids: list[int]


class DashboardOut(ORMModel):
    total_value: Decimal
    total_inventory_cost: Decimal
    total_items: int
    orders_today: int
    revenue_today: Decimal
    cost_of_goods_sold_today: Decimal
    profit_today: Decimal
    low_stock_count: int
    status_counts: dict[str, int]


class LocationStockItemOut(ORMModel):
    product_id: int
    name: str
    sku: str
    stock: int


class LocationInventoryOut(BaseModel):
    warehouse: WarehouseOut
    total_units: int
    items: list[LocationStockItemOut]


class AuditEntryOut(ORMModel):
    id: int
    type: str
    action: str
    target: str
    actor: str
    role: str
    level: str
    amount: Optional[Decimal] = None
    path: Optional[str] = None
    created_at: datetime
