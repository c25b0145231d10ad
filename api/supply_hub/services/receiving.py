# supply_hub/services/receiving.py
"""
Receiving batch ledger.

A batch records goods received from one supplier on one day. Creating it
credits stock for every line and writes one inbound movement per line,
all in a single transaction.

Batch numbers look like ``RB-20240501-0003``: prefix, received date and the
per-day sequence. ``batch_no`` is unique, so two concurrent creations for the
same day cannot both commit the same number; the loser is retried.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from supply_hub.database import transaction
from supply_hub.db_models import (
    Supplier, ReceivingBatch, ReceivingBatchItem, ReconcileStatus, MovementType,
)
from supply_hub.exceptions import ValidationError, NotFoundError, ConflictError
from supply_hub.services.stock import StockLedger
from supply_hub.settings import Settings, settings as default_settings
from supply_hub.utils import normalize_calendar_date, parse_optional_date, clip_text, decimal_out, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class BatchLine:
    product_id: Any
    quantity: Any


def batch_item_to_dict(item: ReceivingBatchItem) -> Dict[str, Any]:
    p = item.product
    return {
        "id": item.id,
        "batchId": item.batch_id,
        "productId": item.product_id,
        "productName": item.product_name,
        "quantity": decimal_out(item.quantity),
        "unit": p.unit if p else None,
        "warehouseType": p.warehouse_type.value if p else None,
    }


def batch_to_dict(batch: ReceivingBatch, with_items: bool = True) -> Dict[str, Any]:
    out = {
        "id": batch.id,
        "batchNo": batch.batch_no,
        "supplierId": batch.supplier_id,
        "supplierName": batch.supplier.name if batch.supplier else None,
        "receivedDate": batch.received_date.isoformat(),
        "notes": batch.notes,
        "reconcileStatus": batch.reconcile_status.value,
        "createdAt": batch.created_at.isoformat() if batch.created_at else None,
    }
    if with_items:
        out["items"] = [batch_item_to_dict(i) for i in batch.items]
    return out


class ReceivingService:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.ledger = StockLedger(db)

    @staticmethod
    def _check_lines(items: Sequence[BatchLine]) -> List[tuple[int, Decimal]]:
        if not items:
            raise ValidationError("items array is required and must not be empty")
        out = []
        for n, line in enumerate(items, start=1):
            try:
                pid = int(line.product_id)
            except (TypeError, ValueError):
                pid = 0
            if pid <= 0:
                raise ValidationError(f"Item {n} requires a positive integer productId")
            qty = to_decimal(line.quantity)
            if qty is None or qty <= 0:
                raise ValidationError(f"Item {n} requires a positive quantity")
            out.append((pid, qty))
        return out

    def _batch_prefix(self, received: date) -> str:
        return f"{self.settings.BATCH_NO_PREFIX}-{received.strftime('%Y%m%d')}-"

    async def next_batch_no(self, received: date) -> str:
        prefix = self._batch_prefix(received)
        count = (await self.db.execute(
            select(func.count(ReceivingBatch.id)).where(ReceivingBatch.batch_no.like(f"{prefix}%"))
        )).scalar_one()
        return f"{prefix}{count + 1:04d}"

    async def _create_once(
        self,
        supplier_id: int,
        received: date,
        notes: Optional[str],
        lines: List[tuple[int, Decimal]],
    ) -> ReceivingBatch:
        async with transaction(self.db):
            supplier = await self.db.get(Supplier, supplier_id)
            if supplier is None:
                raise NotFoundError.for_entity("Supplier", supplier_id)

            products = await self.ledger.lock_products(pid for pid, _ in lines)
            for pid, _ in lines:
                if pid not in products:
                    raise NotFoundError(f"Product id {pid} not found", details={"productId": pid})

            batch = ReceivingBatch(
                batch_no=await self.next_batch_no(received),
                supplier=supplier,
                supplier_id=supplier.id,
                received_date=received,
                notes=notes,
                reconcile_status=ReconcileStatus.pending,
                items=[],
            )
            self.db.add(batch)
            await self.db.flush()

            for pid, qty in lines:
                product = products[pid]
                batch.items.append(ReceivingBatchItem(
                    product=product,
                    product_id=pid,
                    product_name=product.name,
                    quantity=qty,
                ))
                self.ledger.credit(
                    product, qty, MovementType.inbound,
                    remark=f"Receiving batch {batch.batch_no}",
                    batch_id=batch.id,
                )
        return batch

    async def create_batch(
        self,
        supplier_id: Any,
        received_date: Any,
        notes: Optional[str],
        items: Sequence[BatchLine],
    ) -> Dict[str, Any]:
        try:
            sid = int(supplier_id)
        except (TypeError, ValueError):
            sid = 0
        if sid <= 0:
            raise ValidationError("supplierId must be a positive integer")
        received = normalize_calendar_date(received_date, "receivedDate")
        lines = self._check_lines(items)
        notes_text = clip_text(notes)

        attempts = max(1, self.settings.BATCH_NO_RETRIES)
        for attempt in range(1, attempts + 1):
            try:
                batch = await self._create_once(sid, received, notes_text, lines)
            except IntegrityError as e:
                # another batch took the same number first
                logger.warning(f"Batch number collision for {received} (attempt {attempt}/{attempts}): {e.orig}")
                if attempt == attempts:
                    raise ConflictError(
                        "Could not allocate a unique batch number, please retry",
                        code="BATCH_NO_CONFLICT",
                    ) from e
                continue
            logger.info(f"Receiving batch {batch.batch_no} created: {len(lines)} lines from supplier {sid}")
            return batch_to_dict(batch)

    async def list_batches(
        self,
        supplier_id: Optional[int] = None,
        start_date: Any = None,
        end_date: Any = None,
        reconcile_status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        if limit < 1 or limit > 500:
            raise ValidationError("limit must be between 1 and 500")
        if offset < 0:
            raise ValidationError("offset must be >= 0")

        filters = []
        if supplier_id is not None:
            filters.append(ReceivingBatch.supplier_id == supplier_id)
        start = parse_optional_date(start_date, "startDate")
        end = parse_optional_date(end_date, "endDate")
        if start:
            filters.append(ReceivingBatch.received_date >= start)
        if end:
            filters.append(ReceivingBatch.received_date <= end)
        if reconcile_status:
            try:
                filters.append(ReceivingBatch.reconcile_status == ReconcileStatus(reconcile_status))
            except ValueError:
                raise ValidationError(f"Unknown reconcileStatus: {reconcile_status}")

        total = (await self.db.execute(
            select(func.count(ReceivingBatch.id)).where(*filters)
        )).scalar_one()

        item_count = func.count(ReceivingBatchItem.id)
        total_qty = func.coalesce(func.sum(ReceivingBatchItem.quantity), 0)
        stmt = (
            select(ReceivingBatch, item_count, total_qty)
            .outerjoin(ReceivingBatchItem, ReceivingBatchItem.batch_id == ReceivingBatch.id)
            .where(*filters)
            .group_by(ReceivingBatch.id)
            .order_by(ReceivingBatch.id.desc())
            .limit(limit)
            .offset(offset)
            .options(selectinload(ReceivingBatch.supplier))
            .execution_options(populate_existing=True)
        )
        rows = (await self.db.execute(stmt)).all()
        items = []
        for batch, count, qty in rows:
            d = batch_to_dict(batch, with_items=False)
            d["itemCount"] = count
            d["totalQty"] = float(qty or 0)
            items.append(d)
        return {"total": total, "items": items}

    async def get_batch(self, batch_id: int) -> Dict[str, Any]:
        stmt = (
            select(ReceivingBatch)
            .where(ReceivingBatch.id == batch_id)
            .options(
                selectinload(ReceivingBatch.supplier),
                selectinload(ReceivingBatch.items).selectinload(ReceivingBatchItem.product),
            )
            .execution_options(populate_existing=True)
        )
        batch = (await self.db.execute(stmt)).scalar_one_or_none()
        if batch is None:
            raise NotFoundError.for_entity("Batch", batch_id)
        return batch_to_dict(batch)
