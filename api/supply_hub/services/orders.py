# supply_hub/services/orders.py
"""
Order lifecycle engine.

Handles:
- Order creation with the customer auto-merge rule
- Status transitions, including the one-time stock deduction pass
- Admin item add/edit/delete (locked orders spawn a follow-up order on add)
- Picking flags on single items
- Order reads and the per-trip picking list

Every compound write runs inside ``database.transaction`` so a failure
leaves orders, items, stock and change logs untouched.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from supply_hub.auth import CurrentUser
from supply_hub.database import transaction
from supply_hub.db_models import (
    Product, MovementType, OrderStatus, OrderItemStatus, ChangeLogType, WarehouseType,
)
from supply_hub.db_models_ext import Order, OrderItem
from supply_hub.exceptions import (
    ValidationError, NotFoundError, ConflictError, PermissionDeniedError,
    ProductUnavailableError, InsufficientStockError, OrderLockedError,
)
from supply_hub.services.change_log import ChangeLogService
from supply_hub.services.quantities import validate_quantity
from supply_hub.services.stock import StockLedger
from supply_hub.settings import Settings, settings as default_settings
from supply_hub.utils import normalize_calendar_date, round_money, decimal_out, to_decimal

logger = logging.getLogger(__name__)

OPEN_STATUSES = (OrderStatus.created, OrderStatus.confirmed)
LOCKED_STATUSES = frozenset({OrderStatus.shipped, OrderStatus.completed, OrderStatus.cancelled})
FULFILLMENT_STATUSES = frozenset({OrderStatus.shipped, OrderStatus.completed})

# Single allow-list of (from, to) pairs. Backward moves such as
# completed -> created are currently legal; tighten here if that changes.
ALLOWED_TRANSITIONS = frozenset((a, b) for a in OrderStatus for b in OrderStatus)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return (current, target) in ALLOWED_TRANSITIONS


@dataclass
class LineRequest:
    """One requested order line, as received from the caller."""
    product_id: Any
    qty_ordered: Any


# ============================================================================
# Serialization
# ============================================================================

def item_to_dict(item: OrderItem) -> Dict[str, Any]:
    p = item.product
    return {
        "id": item.id,
        "orderId": item.order_id,
        "productId": item.product_id,
        "productName": p.name if p else None,
        "productUnit": p.unit if p else None,
        "productWarehouseType": p.warehouse_type.value if p else None,
        "qtyOrdered": decimal_out(item.qty_ordered),
        "qtyPicked": decimal_out(item.qty_picked),
        "unitPrice": decimal_out(item.unit_price),
        "picked": item.picked,
        "outOfStock": item.out_of_stock,
        "status": item.status.value,
    }


def order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "customerId": order.customer_id,
        "deliveryDate": order.delivery_date.isoformat(),
        "status": order.status.value,
        "tripNumber": order.trip_number,
        "totalAmount": decimal_out(order.total_amount),
        "stockDeducted": order.stock_deducted,
        "pendingReview": order.pending_review,
        "lastModifiedAt": order.last_modified_at.isoformat() if order.last_modified_at else None,
        "lastReviewedAt": order.last_reviewed_at.isoformat() if order.last_reviewed_at else None,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "items": [item_to_dict(i) for i in order.items],
    }


def _line_detail(product: Product, qty: Decimal, unit_price: Decimal) -> Dict[str, Any]:
    # JSON-safe snapshot for change-log payloads
    return {
        "productId": product.id,
        "productName": product.name,
        "unit": product.unit,
        "qtyOrdered": float(qty),
        "unitPrice": float(unit_price),
    }


# ============================================================================
# Service
# ============================================================================

class OrderService:
    """Order aggregate operations."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.ledger = StockLedger(db)
        self.change_log = ChangeLogService(db)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _load_order(self, order_id: int, lock: bool = False) -> Order:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError.for_entity("Order", order_id)
        return order

    async def _load_item(self, item_id: int, lock: bool = True) -> tuple[Order, OrderItem]:
        order_id = (await self.db.execute(
            select(OrderItem.order_id).where(OrderItem.id == item_id)
        )).scalar_one_or_none()
        if order_id is None:
            raise NotFoundError.for_entity("Order item", item_id)
        order = await self._load_order(order_id, lock=lock)
        item = next(i for i in order.items if i.id == item_id)
        return order, item

    @staticmethod
    def _recalculate_total(order: Order) -> Decimal:
        total = sum((i.qty_ordered * i.unit_price for i in order.items), Decimal("0"))
        order.total_amount = round_money(total)
        return order.total_amount

    @staticmethod
    def _parse_status(status: Any) -> OrderStatus:
        try:
            return OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid order status: {status!r}")

    @staticmethod
    def _parse_price(value: Any) -> Decimal:
        price = to_decimal(value)
        if price is None or price < 0:
            raise ValidationError("unitPrice must be a non-negative number")
        # unit_price is stored to the cent; the cached total must use the stored value
        return round_money(price)

    def _effective_customer(self, user: CurrentUser, customer_id: Any) -> int:
        effective = user.customer_id
        if user.is_admin and customer_id is not None:
            try:
                effective = int(customer_id)
            except (TypeError, ValueError):
                effective = 0
            if effective <= 0:
                raise ValidationError("customerId must be a positive integer")
        if effective is None:
            raise ValidationError("No customerId available for order")
        return effective

    # -------------------------------------------------------------------------
    # Create / merge
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_lines(items: Sequence[LineRequest]) -> List[tuple[int, LineRequest]]:
        if not items:
            raise ValidationError("Order items are required")
        checked = []
        for n, line in enumerate(items, start=1):
            try:
                pid = int(line.product_id)
            except (TypeError, ValueError):
                pid = 0
            if pid <= 0 or str(pid) != str(line.product_id).strip():
                raise ValidationError(f"Item {n} requires a positive integer productId")
            if to_decimal(line.qty_ordered) is None:
                raise ValidationError(f"Item {n} requires numeric qtyOrdered")
            checked.append((pid, line))
        return checked

    async def _find_merge_target(self, customer_id: int, delivery_date) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(
                Order.customer_id == customer_id,
                Order.delivery_date == delivery_date,
                Order.status.in_(OPEN_STATUSES),
            )
            .order_by(Order.id.asc())
            .limit(1)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .execution_options(populate_existing=True)
            .with_for_update()
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def create_order(
        self,
        user: CurrentUser,
        delivery_date: Any,
        items: Sequence[LineRequest],
        customer_id: Any = None,
    ) -> Dict[str, Any]:
        """
        Create an order, or append to the customer's open order for the same day.

        Returns:
            {"orderId", "totalAmount", "merged"}
        """
        checked = self._check_lines(items)
        day = normalize_calendar_date(delivery_date)
        customer = self._effective_customer(user, customer_id)

        async with transaction(self.db):
            products = await self.ledger.lock_products(pid for pid, _ in checked)

            lines = []
            for n, (pid, line) in enumerate(checked, start=1):
                product = products.get(pid)
                if product is None:
                    raise NotFoundError(f"Item {n}: product {pid} not found", details={"line": n, "productId": pid})
                if not product.is_available:
                    raise ProductUnavailableError(
                        f"Item {n}: product '{product.name}' is currently unavailable",
                        details={"line": n, "productId": pid},
                    )
                qty = validate_quantity(product.unit, line.qty_ordered, label=f"Item {n} ({product.name})")
                lines.append((product, qty))

            order = None
            if not user.is_admin:
                order = await self._find_merge_target(customer, day)
            merged = order is not None

            if order is None:
                order = Order(
                    customer_id=customer,
                    delivery_date=day,
                    status=OrderStatus.created,
                    total_amount=Decimal("0"),
                    items=[],
                )
                self.db.add(order)
                await self.db.flush()

            for product, qty in lines:
                order.items.append(OrderItem(
                    product=product,
                    product_id=product.id,
                    qty_ordered=qty,
                    qty_picked=Decimal("0"),
                    unit_price=product.price,  # snapshot
                    status=OrderItemStatus.created,
                ))
            total = self._recalculate_total(order)

            self.change_log.record(
                order,
                ChangeLogType.merged_order_update if merged else ChangeLogType.order_created,
                {
                    "items": [_line_detail(p, q, p.price) for p, q in lines],
                    "merged": merged,
                },
            )

        logger.info(
            f"Order #{order.id} {'merged' if merged else 'created'} for customer {customer} "
            f"({len(lines)} lines, total {total})"
        )
        return {"orderId": order.id, "totalAmount": float(total), "merged": merged}

    # -------------------------------------------------------------------------
    # Status / trip
    # -------------------------------------------------------------------------

    async def _deduct_stock(self, order: Order, target: OrderStatus) -> None:
        required: Dict[int, Decimal] = {}
        for item in order.items:
            if item.qty_picked and item.qty_picked > 0:
                required[item.product_id] = required.get(item.product_id, Decimal("0")) + item.qty_picked

        products = await self.ledger.lock_products(required)
        shortages = []
        for pid, qty in required.items():
            product = products[pid]
            if product.stock < qty:
                shortages.append({"productId": pid, "name": product.name, "stock": product.stock, "required": qty})
        if shortages:
            logger.warning(f"Order #{order.id} -> {target.value} blocked, insufficient stock: {shortages}")
            raise InsufficientStockError(shortages)

        for item in order.items:
            if item.qty_picked and item.qty_picked > 0:
                self.ledger.debit(
                    products[item.product_id],
                    item.qty_picked,
                    MovementType.outbound,
                    remark=f"Order #{order.id} - {target.value}",
                    ref_order_id=order.id,
                )
        order.stock_deducted = True

    async def update_status(self, order_id: int, status: Any) -> Dict[str, Any]:
        target = self._parse_status(status)

        async with transaction(self.db):
            order = await self._load_order(order_id, lock=True)
            previous = order.status
            if not can_transition(previous, target):
                raise ConflictError(
                    f"Order #{order_id} cannot move from {previous.value} to {target.value}",
                    code="INVALID_TRANSITION",
                )
            deducted = False
            if target in FULFILLMENT_STATUSES and not order.stock_deducted:
                await self._deduct_stock(order, target)
                deducted = True
            order.status = target

        logger.info(
            f"Order #{order_id} status {previous.value} -> {target.value}"
            + (" (stock deducted)" if deducted else "")
        )
        return order_to_dict(order)

    async def update_trip(self, order_id: int, trip_number: Optional[str]) -> Dict[str, Any]:
        normalized = None if trip_number is None else str(trip_number).strip() or None
        if normalized and len(normalized) > 50:
            raise ValidationError("tripNumber must be at most 50 characters")

        async with transaction(self.db):
            order = await self._load_order(order_id, lock=True)
            order.trip_number = normalized
        return order_to_dict(order)

    # -------------------------------------------------------------------------
    # Admin item edits
    # -------------------------------------------------------------------------

    def _log_admin_edit(self, order: Order, change_type: ChangeLogType, detail: Dict[str, Any]) -> None:
        if self.settings.LOG_ADMIN_ITEM_EDITS:
            self.change_log.record(order, change_type, detail)

    async def add_item(
        self,
        order_id: int,
        product_id: int,
        qty_ordered: Any,
        unit_price: Any = None,
    ) -> Dict[str, Any]:
        """
        Add a line to an order.

        On a locked order the line goes to a new follow-up order for the
        same customer and delivery date; the original is returned unchanged
        and ``redirectedOrderId`` names the new order.
        """
        price_override = None if unit_price is None else self._parse_price(unit_price)

        async with transaction(self.db):
            product = await self.ledger.get_product(product_id)
            qty = validate_quantity(product.unit, qty_ordered, label=product.name)
            order = await self._load_order(order_id, lock=True)

            target = order
            redirected_id = None
            if order.status in LOCKED_STATUSES:
                target = Order(
                    customer_id=order.customer_id,
                    delivery_date=order.delivery_date,
                    status=OrderStatus.created,
                    total_amount=Decimal("0"),
                    items=[],
                )
                self.db.add(target)
                await self.db.flush()
                redirected_id = target.id

            price = price_override if price_override is not None else (product.price or Decimal("0"))
            target.items.append(OrderItem(
                product=product,
                product_id=product.id,
                qty_ordered=qty,
                qty_picked=Decimal("0"),
                unit_price=price,
                status=OrderItemStatus.created,
            ))
            self._recalculate_total(target)
            await self.db.flush()
            self._log_admin_edit(order, ChangeLogType.item_added, {
                "item": _line_detail(product, qty, price),
                "redirectedOrderId": redirected_id,
            })

        if redirected_id:
            logger.info(f"Order #{order_id} is {order.status.value}; item added to follow-up order #{redirected_id}")
        return {"order": order_to_dict(order), "redirectedOrderId": redirected_id}

    async def edit_item(self, item_id: int, qty_ordered: Any = None, unit_price: Any = None) -> Dict[str, Any]:
        if qty_ordered is None and unit_price is None:
            raise ValidationError("No fields to update")
        new_price = None if unit_price is None else self._parse_price(unit_price)

        async with transaction(self.db):
            order, item = await self._load_item(item_id)
            if order.status in LOCKED_STATUSES:
                logger.warning(f"Edit of item {item_id} rejected: order #{order.id} is {order.status.value}")
                raise OrderLockedError(order.id, order.status.value)

            before = {"qtyOrdered": float(item.qty_ordered), "unitPrice": float(item.unit_price)}
            if qty_ordered is not None:
                item.qty_ordered = validate_quantity(item.product.unit, qty_ordered, label=item.product.name)
            if new_price is not None:
                item.unit_price = new_price
            self._recalculate_total(order)
            self._log_admin_edit(order, ChangeLogType.item_updated, {
                "productId": item.product_id,
                "productName": item.product.name,
                "unit": item.product.unit,
                "before": before,
                "after": {"qtyOrdered": float(item.qty_ordered), "unitPrice": float(item.unit_price)},
            })
        return order_to_dict(order)

    async def delete_item(self, item_id: int) -> Dict[str, Any]:
        async with transaction(self.db):
            order, item = await self._load_item(item_id)
            if order.status in LOCKED_STATUSES:
                logger.warning(f"Delete of item {item_id} rejected: order #{order.id} is {order.status.value}")
                raise OrderLockedError(order.id, order.status.value)

            detail = _line_detail(item.product, item.qty_ordered, item.unit_price)
            order.items.remove(item)
            self._recalculate_total(order)
            self._log_admin_edit(order, ChangeLogType.item_removed, detail)
        return order_to_dict(order)

    # -------------------------------------------------------------------------
    # Picking
    # -------------------------------------------------------------------------

    async def update_item_picking(
        self,
        item_id: int,
        picked: Optional[bool] = None,
        out_of_stock: Optional[bool] = None,
        qty_picked: Any = None,
    ) -> Dict[str, Any]:
        if picked is None and out_of_stock is None and qty_picked is None:
            raise ValidationError("No valid fields provided")
        picked_qty = None
        if qty_picked is not None:
            picked_qty = to_decimal(qty_picked)
            if picked_qty is None or picked_qty < 0:
                raise ValidationError("qtyPicked must be a non-negative number")

        async with transaction(self.db):
            stmt = (
                select(OrderItem)
                .where(OrderItem.id == item_id)
                .options(selectinload(OrderItem.product))
                .execution_options(populate_existing=True)
                .with_for_update()
            )
            item = (await self.db.execute(stmt)).scalar_one_or_none()
            if item is None:
                raise NotFoundError.for_entity("Order item", item_id)

            if picked is not None:
                item.picked = bool(picked)
                if item.picked:
                    item.status = OrderItemStatus.picked
            # outOfStock is applied after picked, so {picked: true, outOfStock: false} ends as "created"
            if out_of_stock is not None:
                item.out_of_stock = bool(out_of_stock)
                item.status = OrderItemStatus.out_of_stock if item.out_of_stock else OrderItemStatus.created
            if picked_qty is not None:
                item.qty_picked = picked_qty
        return item_to_dict(item)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_orders(self, user: CurrentUser, customer_id: Optional[int] = None) -> List[Dict[str, Any]]:
        target = customer_id if user.is_admin else user.customer_id
        if not user.is_admin and target is None:
            raise ValidationError("User is missing customerId")

        stmt = (
            select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .order_by(Order.id.desc())
        )
        if target is not None:
            stmt = stmt.where(Order.customer_id == target)
        orders = (await self.db.execute(stmt)).scalars().all()
        return [order_to_dict(o) for o in orders]

    async def get_order(self, user: CurrentUser, order_id: int) -> Dict[str, Any]:
        order = await self._load_order(order_id)
        if not user.is_admin and order.customer_id != user.customer_id:
            raise PermissionDeniedError("Not allowed to view this order")
        return order_to_dict(order)

    async def picking_list(self, trip: Optional[str], warehouse_type: Optional[str] = None) -> List[Dict[str, Any]]:
        trip = (trip or "").strip()
        if not trip:
            raise ValidationError("trip query parameter is required")

        stmt = (
            select(OrderItem, Order, Product)
            .join(Order, Order.id == OrderItem.order_id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(Order.trip_number == trip)
            .order_by(Product.warehouse_type, Product.name, OrderItem.id)
        )
        if warehouse_type:
            try:
                stmt = stmt.where(Product.warehouse_type == WarehouseType(warehouse_type))
            except ValueError:
                raise ValidationError(f"Unknown warehouseType: {warehouse_type}")

        rows = (await self.db.execute(stmt)).all()
        return [
            {
                "itemId": item.id,
                "orderId": order.id,
                "customerId": order.customer_id,
                "tripNumber": order.trip_number,
                "productId": product.id,
                "productName": product.name,
                "productUnit": product.unit,
                "warehouseType": product.warehouse_type.value,
                "price": decimal_out(product.price),
                "qtyOrdered": decimal_out(item.qty_ordered),
                "qtyPicked": decimal_out(item.qty_picked),
                "picked": item.picked,
                "outOfStock": item.out_of_stock,
                "status": item.status.value,
            }
            for item, order, product in rows
        ]
