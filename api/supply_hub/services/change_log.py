# supply_hub/services/change_log.py
"""
Order change log and the admin review flag.

Log rows are append-only. Acknowledging a review only clears
``Order.pending_review``; the history stays queryable per order.
"""
from __future__ import annotations
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from supply_hub.database import transaction
from supply_hub.db_models import ChangeLogType, utcnow
from supply_hub.db_models_ext import Order, OrderChangeLog
from supply_hub.exceptions import NotFoundError

logger = logging.getLogger(__name__)

# events that raise the order's pendingReview flag
REVIEWABLE = {ChangeLogType.order_created, ChangeLogType.merged_order_update}


def _num(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format(Decimal(str(value)).normalize(), "f")
    return str(value)


def _item_label(detail: Dict[str, Any]) -> str:
    name = detail.get("productName")
    unit = detail.get("unit") or ""
    raw = detail.get("qtyOrdered")
    qty = f"{_num(raw)}{unit}" if raw is not None else ""
    head = name if isinstance(name, str) and name else (
        f"#{detail['productId']}" if detail.get("productId") is not None else ""
    )
    return f"{head} x {qty}".strip() if qty else head


def describe_change(change_type: str, detail: Optional[Dict[str, Any]]) -> str:
    """Human-readable one-liner for a change-log entry."""
    detail = detail if isinstance(detail, dict) else {}
    items = detail.get("items") if isinstance(detail.get("items"), list) else []
    labels = "; ".join(_item_label(i) for i in items if isinstance(i, dict))

    if change_type == ChangeLogType.order_created.value:
        return f"New order with {len(items)} product(s): {labels}" if items else "New order"

    if change_type == ChangeLogType.merged_order_update.value:
        return f"Customer added to existing order: {labels}" if items else "Customer added to existing order"

    if change_type == ChangeLogType.item_added.value:
        item = detail.get("item")
        if not isinstance(item, dict):
            return "Item added"
        text = f"Added {_item_label(item)}"
        if detail.get("redirectedOrderId"):
            text += f" (redirected to order #{detail['redirectedOrderId']})"
        return text

    if change_type == ChangeLogType.item_removed.value:
        return f"Removed {_item_label(detail)}"

    if change_type == ChangeLogType.item_updated.value:
        before = detail.get("before") or {}
        after = detail.get("after") or {}
        fields = []
        for key, label in (("qtyOrdered", "quantity"), ("unitPrice", "unit price")):
            if before.get(key) is not None and after.get(key) is not None and before[key] != after[key]:
                fields.append(f"{label} {_num(before[key])} -> {_num(after[key])}")
        text = f"{_item_label(detail)} changed"
        return f"{text}: {', '.join(fields)}" if fields else text

    return f"{change_type}: {json.dumps(detail, ensure_ascii=False)}" if detail else change_type


def change_to_dict(log: OrderChangeLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "orderId": log.order_id,
        "type": log.type.value,
        "detail": log.detail,
        "description": describe_change(log.type.value, log.detail),
        "createdAt": log.created_at.isoformat() if log.created_at else None,
        "readAt": log.read_at.isoformat() if log.read_at else None,
    }


class ChangeLogService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def record(self, order: Order, change_type: ChangeLogType, detail: Dict[str, Any]) -> OrderChangeLog:
        """Append a log row in the caller's transaction."""
        now = utcnow()
        entry = OrderChangeLog(order_id=order.id, type=change_type, detail=detail, created_at=now)
        self.db.add(entry)
        if change_type in REVIEWABLE:
            order.pending_review = True
            order.last_modified_at = now
        return entry

    async def acknowledge(self, order_id: int) -> Dict[str, Any]:
        async with transaction(self.db):
            order = await self.db.get(Order, order_id, with_for_update=True)
            if order is None:
                raise NotFoundError.for_entity("Order", order_id)
            order.pending_review = False
            order.last_reviewed_at = utcnow()
        logger.info(f"Order #{order_id} review acknowledged")
        return {"orderId": order_id}

    async def list_for_order(self, order_id: int) -> List[Dict[str, Any]]:
        stmt = (
            select(OrderChangeLog)
            .where(OrderChangeLog.order_id == order_id)
            .order_by(OrderChangeLog.id.asc())
        )
        logs = (await self.db.execute(stmt)).scalars().all()
        return [change_to_dict(log) for log in logs]

    async def list_pending(self) -> List[Dict[str, Any]]:
        stmt = (
            select(Order)
            .where(Order.pending_review.is_(True))
            .options(selectinload(Order.change_logs))
            .execution_options(populate_existing=True)
            .order_by(Order.last_modified_at.desc(), Order.id.desc())
        )
        orders = (await self.db.execute(stmt)).scalars().all()
        out = []
        for o in orders:
            changes = [change_to_dict(log) for log in o.change_logs]
            out.append({
                "id": o.id,
                "customerId": o.customer_id,
                "deliveryDate": o.delivery_date.isoformat(),
                "status": o.status.value,
                "tripNumber": o.trip_number,
                "totalAmount": float(o.total_amount),
                "lastModifiedAt": o.last_modified_at.isoformat() if o.last_modified_at else None,
                "lastReviewedAt": o.last_reviewed_at.isoformat() if o.last_reviewed_at else None,
                "changeCount": len(changes),
                "changes": changes,
            })
        return out
