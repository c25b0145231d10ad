# supply_hub/routers/supplier_invoices.py
"""
Supplier Invoices Router - import, review and confirm supplier invoices.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.auth import require_admin
from supply_hub.database import get_session
from supply_hub.exceptions import ValidationError
from supply_hub.invoice_parser import parse_column_map, read_invoice_rows
from supply_hub.models import InvoiceItemPatchIn
from supply_hub.services.reconciliation import ReconciliationService
from supply_hub.settings import settings

router = APIRouter(prefix="/supplier-invoices", tags=["Supplier invoices"], dependencies=[Depends(require_admin)])


@router.post("/import", status_code=201)
async def import_invoice(
    file: Optional[UploadFile] = File(default=None),
    supplier_id: Optional[int] = Form(default=None, alias="supplierId"),
    invoice_no: Optional[str] = Form(default=None, alias="invoiceNo"),
    period_start: Optional[str] = Form(default=None, alias="periodStart"),
    period_end: Optional[str] = Form(default=None, alias="periodEnd"),
    column_map: Optional[str] = Form(default=None, alias="columnMap"),
    db: AsyncSession = Depends(get_session),
):
    """
    Multipart upload: ``file`` (.csv/.xlsx/.xls), ``supplierId``, optional
    ``invoiceNo``, ``periodStart``, ``periodEnd`` and ``columnMap`` JSON
    such as {"productName": "Item", "quantity": "Qty", "unitPrice": "Price"}.
    """
    if file is None:
        raise ValidationError("Please upload an invoice file")
    if not supplier_id:
        raise ValidationError("supplierId is required")
    mapping = parse_column_map(column_map)

    content = await file.read()
    if len(content) > settings.UPLOAD_MAX_BYTES:
        raise ValidationError(f"File exceeds {settings.UPLOAD_MAX_BYTES} bytes")
    rows = read_invoice_rows(content, file.filename or "", mapping)

    return await ReconciliationService(db).import_invoice(
        supplier_id, rows,
        invoice_no=invoice_no,
        period_start=period_start,
        period_end=period_end,
    )


@router.get("")
async def list_invoices(
    supplier_id: Optional[int] = Query(default=None, alias="supplierId"),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    db: AsyncSession = Depends(get_session),
):
    return await ReconciliationService(db).list_invoices(supplier_id, status, limit, offset)


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: int, db: AsyncSession = Depends(get_session)):
    return await ReconciliationService(db).get_invoice(invoice_id)


@router.post("/{invoice_id}/confirm")
async def confirm_invoice(invoice_id: int, db: AsyncSession = Depends(get_session)):
    return await ReconciliationService(db).confirm_invoice(invoice_id)


@router.patch("/{invoice_id}/items/{item_id}")
async def update_invoice_item(
    invoice_id: int,
    item_id: int,
    payload: InvoiceItemPatchIn,
    db: AsyncSession = Depends(get_session),
):
    return await ReconciliationService(db).update_invoice_item(
        invoice_id, item_id, payload.model_dump(exclude_unset=True)
    )
