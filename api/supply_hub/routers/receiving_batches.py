# supply_hub/routers/receiving_batches.py
"""
Receiving Batches Router - goods received from suppliers.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.auth import require_admin
from supply_hub.database import get_session
from supply_hub.models import BatchCreateIn
from supply_hub.services.receiving import ReceivingService, BatchLine

router = APIRouter(prefix="/receiving-batches", tags=["Receiving"], dependencies=[Depends(require_admin)])


@router.post("", status_code=201)
async def create_batch(payload: BatchCreateIn, db: AsyncSession = Depends(get_session)):
    batch = await ReceivingService(db).create_batch(
        payload.supplier_id,
        payload.received_date,
        payload.notes,
        [BatchLine(product_id=i.product_id, quantity=i.quantity) for i in payload.items],
    )
    return {"batch": batch}


@router.get("")
async def list_batches(
    supplier_id: Optional[int] = Query(default=None, alias="supplierId", gt=0),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    reconcile_status: Optional[str] = Query(default=None, alias="reconcileStatus"),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    db: AsyncSession = Depends(get_session),
):
    return await ReceivingService(db).list_batches(
        supplier_id, start_date, end_date, reconcile_status, limit, offset
    )


@router.get("/{batch_id}")
async def get_batch(batch_id: int, db: AsyncSession = Depends(get_session)):
    return {"batch": await ReceivingService(db).get_batch(batch_id)}
