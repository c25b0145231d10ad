# supply_hub/services/reconciliation.py
"""
Supplier invoice reconciliation.

Import compares each invoice line against what was actually received from
the supplier in the invoice period (sum of receiving batch items per
product) and classifies the line:

    auto_confirmed  product resolved, received, quantities equal
    need_review     product resolved and received, quantities differ
    unmatched       product unresolved, or nothing received for it

Confirm promotes everything still auto_confirmed/need_review to
manual_confirmed and, once nothing is left open, marks the supplier's
batches in the period as reconciled. That cascade is period scoped, it does
not check individual batch items.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from supply_hub.database import transaction
from supply_hub.db_models import (
    Product, Supplier, ReceivingBatch, ReceivingBatchItem, ReconcileStatus,
    SupplierInvoice, SupplierInvoiceItem, InvoiceStatus, MatchStatus,
)
from supply_hub.exceptions import ValidationError, NotFoundError
from supply_hub.services.matching import ProductMatcher, CatalogNameMatcher
from supply_hub.settings import Settings, settings as default_settings
from supply_hub.utils import parse_optional_date, round_money, clip_text, decimal_out

logger = logging.getLogger(__name__)

PROMOTED = (MatchStatus.auto_confirmed, MatchStatus.need_review)
SETTLED = (MatchStatus.manual_confirmed, MatchStatus.ignored)


@dataclass
class InvoiceRow:
    """One line read from an uploaded invoice."""
    product_name: str
    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    amount: Optional[Decimal] = None


def classify_row(
    product_id: Optional[int],
    quantity: Decimal,
    received: Dict[int, Decimal],
    epsilon: Decimal,
) -> Tuple[MatchStatus, Optional[Decimal]]:
    """Return (match status, matched received quantity)."""
    if product_id is None or product_id not in received:
        return MatchStatus.unmatched, None
    matched = received[product_id]
    if quantity > 0 and abs(matched - quantity) < epsilon:
        return MatchStatus.auto_confirmed, matched
    return MatchStatus.need_review, matched


def invoice_item_to_dict(item: SupplierInvoiceItem, product: Optional[Product] = None) -> Dict[str, Any]:
    out = {
        "id": item.id,
        "invoiceId": item.invoice_id,
        "productName": item.product_name,
        "productId": item.product_id,
        "quantity": decimal_out(item.quantity),
        "unitPrice": decimal_out(item.unit_price),
        "amount": decimal_out(item.amount),
        "matchedQty": decimal_out(item.matched_qty),
        "matchStatus": item.match_status.value,
        "discrepancyNotes": item.discrepancy_notes,
    }
    if product is not None:
        out.update(unit=product.unit, warehouseType=product.warehouse_type.value)
    return out


def invoice_to_dict(invoice: SupplierInvoice, supplier_name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": invoice.id,
        "invoiceNo": invoice.invoice_no,
        "supplierId": invoice.supplier_id,
        "supplierName": supplier_name,
        "invoiceDate": invoice.invoice_date.isoformat() if invoice.invoice_date else None,
        "periodStart": invoice.period_start.isoformat() if invoice.period_start else None,
        "periodEnd": invoice.period_end.isoformat() if invoice.period_end else None,
        "totalAmount": decimal_out(invoice.total_amount),
        "status": invoice.status.value,
        "notes": invoice.notes,
    }


class ReconciliationService:
    def __init__(
        self,
        db: AsyncSession,
        matcher: Optional[ProductMatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.matcher = matcher or CatalogNameMatcher(db)
        self.settings = settings or default_settings

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    async def aggregate_receipts(
        self,
        supplier_id: int,
        period_start: Optional[date],
        period_end: Optional[date],
    ) -> Dict[int, Decimal]:
        """Received quantity per product for one supplier; missing bounds are open."""
        stmt = (
            select(ReceivingBatchItem.product_id, func.sum(ReceivingBatchItem.quantity))
            .join(ReceivingBatch, ReceivingBatch.id == ReceivingBatchItem.batch_id)
            .where(ReceivingBatch.supplier_id == supplier_id)
            .group_by(ReceivingBatchItem.product_id)
        )
        if period_start:
            stmt = stmt.where(ReceivingBatch.received_date >= period_start)
        if period_end:
            stmt = stmt.where(ReceivingBatch.received_date <= period_end)
        rows = (await self.db.execute(stmt)).all()
        return {pid: Decimal(str(total)) for pid, total in rows}

    async def import_invoice(
        self,
        supplier_id: Any,
        rows: Sequence[InvoiceRow],
        invoice_no: Optional[str] = None,
        period_start: Any = None,
        period_end: Any = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            sid = int(supplier_id)
        except (TypeError, ValueError):
            raise ValidationError("supplierId is required")
        start = parse_optional_date(period_start, "periodStart")
        end = parse_optional_date(period_end, "periodEnd")
        if start and end and start > end:
            raise ValidationError("periodStart must not be after periodEnd")
        rows = [r for r in rows if r.product_name and r.product_name.strip()]
        if not rows:
            raise ValidationError("Invoice has no data rows")

        epsilon = self.settings.MATCH_QTY_EPSILON
        async with transaction(self.db):
            supplier = await self.db.get(Supplier, sid)
            if supplier is None:
                raise NotFoundError.for_entity("Supplier", sid)

            received = await self.aggregate_receipts(sid, start, end)

            invoice = SupplierInvoice(
                invoice_no=(invoice_no or "").strip() or None,
                supplier_id=sid,
                period_start=start,
                period_end=end,
                status=InvoiceStatus.pending,
                notes=clip_text(notes),
                items=[],
            )
            total = Decimal("0")
            for row in rows:
                qty = row.quantity or Decimal("0")
                price = row.unit_price or Decimal("0")
                amount = round_money(row.amount if row.amount else qty * price)
                total += amount

                match = await self.matcher.resolve(row.product_name)
                product_id = match.product_id if match else None
                status, matched_qty = classify_row(product_id, qty, received, epsilon)

                invoice.items.append(SupplierInvoiceItem(
                    product_name=row.product_name.strip()[:255],
                    product_id=product_id,
                    quantity=qty,
                    unit_price=price,
                    amount=amount,
                    matched_qty=matched_qty,
                    match_status=status,
                ))
            invoice.total_amount = round_money(total)
            self.db.add(invoice)
            await self.db.flush()

        counts = {s: 0 for s in MatchStatus}
        for item in invoice.items:
            counts[item.match_status] += 1
        summary = {
            "total": len(invoice.items),
            "autoConfirmed": counts[MatchStatus.auto_confirmed],
            "needReview": counts[MatchStatus.need_review],
            "unmatched": counts[MatchStatus.unmatched],
        }
        logger.info(f"Invoice #{invoice.id} imported for supplier {sid}: {summary}")
        return {
            "invoice": invoice_to_dict(invoice, supplier.name),
            "items": [invoice_item_to_dict(i) for i in invoice.items],
            "summary": summary,
        }

    # -------------------------------------------------------------------------
    # Confirm / item review
    # -------------------------------------------------------------------------

    async def _load_invoice(self, invoice_id: int, lock: bool = False) -> SupplierInvoice:
        stmt = (
            select(SupplierInvoice)
            .where(SupplierInvoice.id == invoice_id)
            .options(selectinload(SupplierInvoice.items), selectinload(SupplierInvoice.supplier))
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        invoice = (await self.db.execute(stmt)).scalar_one_or_none()
        if invoice is None:
            raise NotFoundError.for_entity("Invoice", invoice_id)
        return invoice

    async def confirm_invoice(self, invoice_id: int) -> Dict[str, Any]:
        reconciled = 0
        async with transaction(self.db):
            invoice = await self._load_invoice(invoice_id, lock=True)
            for item in invoice.items:
                if item.match_status in PROMOTED:
                    item.match_status = MatchStatus.manual_confirmed

            open_items = [i for i in invoice.items if i.match_status not in SETTLED]
            invoice.status = InvoiceStatus.partial if open_items else InvoiceStatus.confirmed

            if invoice.status is InvoiceStatus.confirmed:
                stmt = (
                    update(ReceivingBatch)
                    .where(ReceivingBatch.supplier_id == invoice.supplier_id)
                    .values(reconcile_status=ReconcileStatus.reconciled)
                    .execution_options(synchronize_session=False)
                )
                if invoice.period_start:
                    stmt = stmt.where(ReceivingBatch.received_date >= invoice.period_start)
                if invoice.period_end:
                    stmt = stmt.where(ReceivingBatch.received_date <= invoice.period_end)
                reconciled = (await self.db.execute(stmt)).rowcount

        logger.info(f"Invoice #{invoice_id} -> {invoice.status.value}, {reconciled} batch(es) reconciled")
        out = invoice_to_dict(invoice, invoice.supplier.name if invoice.supplier else None)
        out["items"] = [invoice_item_to_dict(i) for i in invoice.items]
        return {"invoice": out}

    async def update_invoice_item(self, invoice_id: int, item_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Patch one invoice line. ``changes`` holds only the fields the caller
        sent: match_status, product_id (None clears it), discrepancy_notes.
        """
        fields = {k: v for k, v in changes.items() if k in ("match_status", "product_id", "discrepancy_notes")}
        if fields.get("match_status") is None:
            fields.pop("match_status", None)
        if not fields:
            raise ValidationError("No fields to update")

        status = None
        if "match_status" in fields:
            try:
                status = MatchStatus(fields["match_status"])
            except ValueError:
                raise ValidationError(f"Invalid matchStatus: {fields['match_status']!r}")

        async with transaction(self.db):
            item = (await self.db.execute(
                select(SupplierInvoiceItem)
                .where(SupplierInvoiceItem.id == item_id, SupplierInvoiceItem.invoice_id == invoice_id)
                .with_for_update()
            )).scalar_one_or_none()
            if item is None:
                raise NotFoundError.for_entity("Invoice item", item_id)

            if status is not None:
                item.match_status = status
            if "product_id" in fields:
                pid = fields["product_id"]
                if pid is not None and await self.db.get(Product, pid) is None:
                    raise NotFoundError.for_entity("Product", pid)
                item.product_id = pid
            if "discrepancy_notes" in fields:
                item.discrepancy_notes = fields["discrepancy_notes"]
        return {"item": invoice_item_to_dict(item)}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_invoices(
        self,
        supplier_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        limit = min(max(limit, 1), 100)
        offset = max(offset, 0)
        filters = []
        if supplier_id is not None:
            filters.append(SupplierInvoice.supplier_id == supplier_id)
        if status:
            try:
                filters.append(SupplierInvoice.status == InvoiceStatus(status))
            except ValueError:
                raise ValidationError(f"Unknown invoice status: {status}")

        total = (await self.db.execute(select(func.count(SupplierInvoice.id)).where(*filters))).scalar_one()
        invoices = (await self.db.execute(
            select(SupplierInvoice)
            .where(*filters)
            .options(selectinload(SupplierInvoice.supplier))
            .order_by(SupplierInvoice.id.desc())
            .limit(limit)
            .offset(offset)
        )).scalars().all()

        counts: Dict[int, Dict[MatchStatus, int]] = {}
        if invoices:
            rows = (await self.db.execute(
                select(SupplierInvoiceItem.invoice_id, SupplierInvoiceItem.match_status, func.count())
                .where(SupplierInvoiceItem.invoice_id.in_([i.id for i in invoices]))
                .group_by(SupplierInvoiceItem.invoice_id, SupplierInvoiceItem.match_status)
            )).all()
            for inv_id, match_status, n in rows:
                counts.setdefault(inv_id, {})[match_status] = n

        items = []
        for inv in invoices:
            c = counts.get(inv.id, {})
            d = invoice_to_dict(inv, inv.supplier.name if inv.supplier else None)
            d.update(
                itemCount=sum(c.values()),
                autoConfirmedCount=c.get(MatchStatus.auto_confirmed, 0),
                needReviewCount=c.get(MatchStatus.need_review, 0),
                unmatchedCount=c.get(MatchStatus.unmatched, 0),
            )
            items.append(d)
        return {"total": total, "items": items}

    async def get_invoice(self, invoice_id: int) -> Dict[str, Any]:
        invoice = await self._load_invoice(invoice_id)
        product_ids = {i.product_id for i in invoice.items if i.product_id}
        products = {}
        if product_ids:
            rows = (await self.db.execute(select(Product).where(Product.id.in_(product_ids)))).scalars().all()
            products = {p.id: p for p in rows}
        out = invoice_to_dict(invoice, invoice.supplier.name if invoice.supplier else None)
        out["items"] = [invoice_item_to_dict(i, products.get(i.product_id)) for i in invoice.items]
        return {"invoice": out}
