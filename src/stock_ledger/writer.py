"""Business operations that append movements to the ledger.

Each public method of :class:`MovementWriter` is one unit of work: it
validates the intent, checks derived stock, stages every movement row of the
operation together with its audit entry and commits once. A failure at any
step rolls the whole operation back, so a transfer never lands with only one
leg and a multi-item sale never lands partially.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import audit, crud, schemas
from .auth import Actor
from .config import Settings, get_settings
from .exceptions import (
    InsufficientStockError,
    LedgerError,
    StoreUnavailableError,
    ValidationError,
)
from .ledger import MovementType, SerialStatus
from .locks import StockLockRegistry, no_lock
from .models import InventoryMovement, Product, Warehouse
from .store import MovementStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ORDER_REFERENCE = re.compile(r"ORD-\d+")


@dataclass(frozen=True)
class SaleLine:
    product_id: int
    quantity: int
    serials: tuple[str, ...] = ()


@dataclass
class WriteOutcome:
    operation_id: Optional[str] = None
    movements: list[InventoryMovement] = field(default_factory=list)


def new_operation_id() -> str:
    return uuid.uuid4().hex


def generate_order_reference() -> str:
    return f"ORD-{int(time.time() * 1000)}"


def _require_positive(quantity: int, what: str) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"{what} quantity must be an integer")
    if quantity <= 0:
        raise ValidationError(f"{what} quantity must be greater than zero")


class MovementWriter:
    """Validates business intents and persists them as ledger movements."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        settings: Optional[Settings] = None,
        locks: Optional[StockLockRegistry] = None,
    ) -> None:
        self.session = session
        self.actor = actor
        self.settings = settings or get_settings()
        self.store = MovementStore(session)
        self._hold = locks.hold if locks is not None else no_lock

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------
    async def _run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        action: str,
        target: str,
        log_type: audit.LogType,
        path: str,
        product_ids: Iterable[int] = (),
    ) -> T:
        try:
            async with self._hold(product_ids):
                result = await operation()
                await self.session.commit()
        except StoreUnavailableError:
            await self.session.rollback()
            raise
        except LedgerError as exc:
            await self.session.rollback()
            logger.warning("%s rejected (%s): %s", action, target, exc.message)
            await self._record_rejection(action=action, target=target, log_type=log_type, path=path)
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("%s could not be persisted: %s", action, exc)
            raise StoreUnavailableError(f"{action} could not be persisted") from exc
        return result

    async def _audit_success(
        self,
        *,
        action: str,
        target: str,
        log_type: audit.LogType,
        path: str,
        level: audit.LogLevel = audit.LogLevel.SUCCESS,
        amount: Optional[Decimal] = None,
    ) -> None:
        await audit.append_entry(
            self.session,
            type=log_type,
            action=action,
            target=target,
            actor=self.actor,
            level=level,
            amount=amount,
            path=path,
            capacity=self.settings.audit_log_capacity,
        )

    async def _record_rejection(
        self, *, action: str, target: str, log_type: audit.LogType, path: str
    ) -> None:
        try:
            await audit.append_entry(
                self.session,
                type=log_type,
                action=f"{action} Rejected",
                target=target,
                actor=self.actor,
                level=audit.LogLevel.WARNING,
                path=path,
                capacity=self.settings.audit_log_capacity,
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Could not record rejected %s for %s", action, target)

    async def _resolve_location(self, location_id: Optional[int]) -> Warehouse:
        if location_id is None:
            return await crud.get_default_location(self.session, self.settings.default_location_name)
        return await crud.get_warehouse(self.session, location_id)

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------
    async def record_initial_stock(
        self,
        product_id: int,
        quantity: int,
        *,
        location_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> WriteOutcome:
        """Load ``quantity`` units of a product into a location as one IN row.

        A zero quantity is a no-op and writes nothing, not even an audit entry.
        """

        if quantity == 0:
            return WriteOutcome()

        async def operation() -> WriteOutcome:
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
                raise ValidationError("initial stock quantity must be a non-negative integer")
            product = await crud.get_product(self.session, product_id)
            location = await self._resolve_location(location_id)
            operation_id = new_operation_id()
            movement = self._initial_movement(product, location, quantity, note, operation_id)
            await self.store.insert(movement)
            await self._audit_success(
                action="Stock Received",
                target=product.name,
                log_type=audit.LogType.INVENTORY,
                path="/inventory",
            )
            logger.info(
                "Loaded %s x product %s into %s (%s)", quantity, product.id, location.name, operation_id
            )
            return WriteOutcome(operation_id=operation_id, movements=[movement])

        return await self._run(
            operation,
            action="Stock Received",
            target=f"Product {product_id}",
            log_type=audit.LogType.INVENTORY,
            path="/inventory",
            product_ids=[product_id],
        )

    @staticmethod
    def _initial_movement(
        product: Product,
        location: Warehouse,
        quantity: int,
        note: Optional[str],
        operation_id: str,
    ) -> InventoryMovement:
        return InventoryMovement(
            product_id=product.id,
            to_location_id=location.id,
            quantity=quantity,
            movement_type=MovementType.IN.value,
            reason=note or "Initial Inventory Load",
            operation_id=operation_id,
        )

    async def record_sale(
        self,
        items: Sequence[SaleLine],
        *,
        source_location_id: Optional[int] = None,
        note: Optional[str] = None,
        order_reference: Optional[str] = None,
        payment_method: Optional[str] = None,
        customer: Optional[str] = None,
    ) -> WriteOutcome:
        """Deduct every cart line from ``source_location_id`` as OUT rows.

        Stock for every product is checked before any row is staged; one
        shortfall rejects the whole sale.
        """

        customer_label = customer or "Walk-in Customer"
        product_ids = [item.product_id for item in items]

        async def operation() -> WriteOutcome:
            if not items:
                raise ValidationError("cart is empty")
            cart_serials: dict[int, set[str]] = defaultdict(set)
            for item in items:
                _require_positive(item.quantity, "sale")
                if len(item.serials) > item.quantity:
                    raise ValidationError(
                        f"{len(item.serials)} serials given for {item.quantity} units of product {item.product_id}"
                    )
                named = cart_serials[item.product_id]
                if len(set(item.serials)) != len(item.serials) or named.intersection(item.serials):
                    raise ValidationError(f"duplicate serial numbers for product {item.product_id}")
                named.update(item.serials)
            if order_reference is not None and not _ORDER_REFERENCE.fullmatch(order_reference):
                raise ValidationError(f"order reference {order_reference!r} must look like ORD-<digits>")

            location = await self._resolve_location(source_location_id)
            products = {
                product_id: await crud.get_product(self.session, product_id)
                for product_id in dict.fromkeys(product_ids)
            }

            requested: dict[int, int] = defaultdict(int)
            for item in items:
                requested[item.product_id] += item.quantity
            for product_id in sorted(requested):
                available = await self.store.product_stock(product_id)
                if requested[product_id] > available:
                    product = products[product_id]
                    raise InsufficientStockError(
                        f"insufficient stock for {product.name}, available: {available}, "
                        f"requested: {requested[product_id]}",
                        product_id=product_id,
                        available=available,
                        requested=requested[product_id],
                    )

            for item in items:
                if item.serials:
                    await self._transition_serials(
                        products[item.product_id],
                        item.serials,
                        expected=SerialStatus.AVAILABLE,
                        new_status=SerialStatus.SOLD,
                        location_id=None,
                    )

            reference = order_reference or generate_order_reference()
            reason = f"Sales Order: {reference}"
            if payment_method:
                reason += f" - Payment: {payment_method.upper()}"
            if note:
                reason += f" - {note}"
            operation_id = new_operation_id()
            movements = [
                InventoryMovement(
                    product_id=item.product_id,
                    from_location_id=location.id,
                    quantity=-item.quantity,
                    movement_type=MovementType.OUT.value,
                    reason=reason,
                    operation_id=operation_id,
                )
                for item in items
            ]
            await self.store.insert_many(movements)
            amount = sum(
                (Decimal(products[item.product_id].selling_price) * item.quantity for item in items),
                Decimal("0"),
            )
            await self._audit_success(
                action="Sale Completion",
                target=customer_label,
                log_type=audit.LogType.TRANSACTION,
                path="/checkout",
                amount=amount,
            )
            logger.info("Sale %s recorded from %s (%s lines)", reference, location.name, len(items))
            return WriteOutcome(operation_id=operation_id, movements=movements)

        return await self._run(
            operation,
            action="Sale Completion",
            target=customer_label,
            log_type=audit.LogType.TRANSACTION,
            path="/checkout",
            product_ids=product_ids,
        )

    async def record_transfer(
        self,
        product_id: int,
        from_location_id: int,
        to_location_id: int,
        quantity: int,
        note: str = "",
    ) -> WriteOutcome:
        """Move stock between locations as a balanced, correlated pair of rows."""

        async def operation() -> WriteOutcome:
            if from_location_id == to_location_id:
                raise ValidationError("source and target locations must be different")
            _require_positive(quantity, "transfer")
            product = await crud.get_product(self.session, product_id)
            source = await crud.get_warehouse(self.session, from_location_id)
            target = await crud.get_warehouse(self.session, to_location_id)
            available = await self.store.location_stock(product_id, source.id)
            if quantity > available:
                raise InsufficientStockError(
                    f"insufficient stock at source, available: {available}",
                    product_id=product_id,
                    available=available,
                    requested=quantity,
                    location_id=source.id,
                )
            operation_id = new_operation_id()
            movements = [
                InventoryMovement(
                    product_id=product_id,
                    from_location_id=source.id,
                    quantity=-quantity,
                    movement_type=MovementType.TRANSFER.value,
                    reason=f"Transfer OUT: {note}",
                    operation_id=operation_id,
                ),
                InventoryMovement(
                    product_id=product_id,
                    to_location_id=target.id,
                    quantity=quantity,
                    movement_type=MovementType.TRANSFER.value,
                    reason=f"Transfer IN: {note}",
                    operation_id=operation_id,
                ),
            ]
            await self.store.insert_many(movements)
            await self._audit_success(
                action="Stock Transfer",
                target=f"{product.name}: {source.name} -> {target.name}",
                log_type=audit.LogType.INVENTORY,
                path="/warehouses",
            )
            logger.info(
                "Transferred %s x product %s from %s to %s (%s)",
                quantity,
                product_id,
                source.name,
                target.name,
                operation_id,
            )
            return WriteOutcome(operation_id=operation_id, movements=movements)

        return await self._run(
            operation,
            action="Stock Transfer",
            target=f"Product {product_id}",
            log_type=audit.LogType.INVENTORY,
            path="/warehouses",
            product_ids=[product_id],
        )

    async def record_return(
        self,
        product_id: int,
        quantity: int,
        *,
        to_location_id: Optional[int] = None,
        note: Optional[str] = None,
        order_reference: Optional[str] = None,
        serials: Sequence[str] = (),
    ) -> WriteOutcome:
        async def operation() -> WriteOutcome:
            _require_positive(quantity, "return")
            if len(serials) > quantity:
                raise ValidationError(f"{len(serials)} serials given for {quantity} returned units")
            if len(set(serials)) != len(serials):
                raise ValidationError("duplicate serial numbers in return")
            product = await crud.get_product(self.session, product_id)
            location = await self._resolve_location(to_location_id)
            if serials:
                await self._transition_serials(
                    product,
                    serials,
                    expected=SerialStatus.SOLD,
                    new_status=SerialStatus.AVAILABLE,
                    location_id=location.id,
                )
            reason = "Return"
            if order_reference:
                reason += f": {order_reference}"
            if note:
                reason += f" - {note}"
            operation_id = new_operation_id()
            movement = InventoryMovement(
                product_id=product_id,
                to_location_id=location.id,
                quantity=quantity,
                movement_type=MovementType.RETURN.value,
                reason=reason,
                operation_id=operation_id,
            )
            await self.store.insert(movement)
            await self._audit_success(
                action="Return Processed",
                target=product.name,
                log_type=audit.LogType.TRANSACTION,
                path="/inventory",
                amount=Decimal(product.selling_price) * quantity,
            )
            logger.info("Return of %s x product %s into %s", quantity, product_id, location.name)
            return WriteOutcome(operation_id=operation_id, movements=[movement])

        return await self._run(
            operation,
            action="Return Processed",
            target=f"Product {product_id}",
            log_type=audit.LogType.TRANSACTION,
            path="/inventory",
            product_ids=[product_id],
        )

    async def _transition_serials(
        self,
        product: Product,
        serial_numbers: Sequence[str],
        *,
        expected: SerialStatus,
        new_status: SerialStatus,
        location_id: Optional[int],
    ) -> None:
        found = {serial.serial_number: serial for serial in await crud.find_serials(
            self.session, product.id, serial_numbers
        )}
        for number in serial_numbers:
            serial = found.get(number)
            if serial is None or serial.status != expected.value:
                raise ValidationError(
                    f"serial {number} is not {expected.value.lower()} for {product.name}"
                )
        for serial in found.values():
            serial.status = new_status.value
            serial.current_location_id = location_id

    # ------------------------------------------------------------------
    # Catalog operations that touch the ledger
    # ------------------------------------------------------------------
    async def register_product(self, data: schemas.ProductCreate) -> Product:
        """Create a product with its category, batch, serials and starting stock."""

        async def operation() -> Product:
            if data.stock < 0:
                raise ValidationError("starting stock cannot be negative")
            location: Optional[Warehouse] = None
            if data.stock > 0 or data.serials:
                location = await self._resolve_location(None)
            category = await crud.resolve_category(self.session, data.category)
            product = await crud.create_product(
                self.session, data, category_id=category.id if category is not None else None
            )
            if data.expiry_date or data.manufactured_date:
                await crud.create_batch(
                    self.session,
                    product.id,
                    expiry_date=data.expiry_date,
                    manufactured_date=data.manufactured_date,
                )
            if data.stock > 0 and location is not None:
                movement = self._initial_movement(
                    product, location, data.stock, None, new_operation_id()
                )
                await self.store.insert(movement)
            if data.serials:
                await crud.add_serials(
                    self.session,
                    product.id,
                    data.serials,
                    location_id=location.id if location is not None else None,
                )
            await self._audit_success(
                action="Product Created",
                target=product.name,
                log_type=audit.LogType.INVENTORY,
                path="/products",
            )
            logger.info("Registered product %s (%s) with %s units", product.id, product.sku, data.stock)
            return product

        return await self._run(
            operation,
            action="Product Created",
            target=data.name,
            log_type=audit.LogType.INVENTORY,
            path="/products",
        )

    async def delete_product(self, product_id: int) -> None:
        """Erase a product together with its movements, serials and batches.

        This is the one place where ledger rows are destroyed.
        """

        async def operation() -> None:
            product = await crud.get_product(self.session, product_id)
            name = product.name
            removed = await self.store.delete_for_product(product_id)
            await crud.delete_product_records(self.session, product)
            await self._audit_success(
                action="Product Deleted",
                target=name,
                log_type=audit.LogType.INVENTORY,
                path="/products",
                level=audit.LogLevel.WARNING,
            )
            logger.warning("Deleted product %s and %s movements", product_id, removed)

        await self._run(
            operation,
            action="Product Deleted",
            target=f"Product {product_id}",
            log_type=audit.LogType.INVENTORY,
            path="/products",
            product_ids=[product_id],
        )


__all__ = [
    "MovementWriter",
    "SaleLine",
    "WriteOutcome",
    "generate_order_reference",
    "new_operation_id",
]
