# supply_hub/routers/inventory.py
"""
Inventory Router - manual stock ledger entries and stock overview.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.auth import require_admin
from supply_hub.database import get_session
from supply_hub.models import InboundIn, ReturnIn, DamageIn
from supply_hub.services.stock import InventoryService, product_to_dict

router = APIRouter(prefix="/inventory", tags=["Inventory"], dependencies=[Depends(require_admin)])


@router.get("/summary")
async def summary(
    q: Optional[str] = None,
    warehouse_type: Optional[str] = Query(default=None, alias="warehouseType"),
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_session),
):
    return await InventoryService(db).summary(q, warehouse_type, limit, offset)


@router.post("/inbound", status_code=201)
async def inbound(payload: InboundIn, db: AsyncSession = Depends(get_session)):
    product = await InventoryService(db).inbound(payload.product_id, payload.quantity, payload.log_date, payload.remark)
    return {"item": product_to_dict(product)}


@router.post("/returns", status_code=201)
async def record_return(payload: ReturnIn, db: AsyncSession = Depends(get_session)):
    product = await InventoryService(db).record_return(
        payload.product_id, payload.quantity, payload.partner_name, payload.reason, payload.log_date
    )
    return {"item": product_to_dict(product)}


@router.post("/damages", status_code=201)
async def record_damage(payload: DamageIn, db: AsyncSession = Depends(get_session)):
    product = await InventoryService(db).record_damage(
        payload.product_id, payload.quantity, payload.reason, payload.log_date
    )
    return {"item": product_to_dict(product)}


@router.get("/logs")
async def logs(
    type: Optional[str] = None,
    limit: int = 20,
    db: AsyncSession = Depends(get_session),
):
    return {"items": await InventoryService(db).list_logs(type, limit)}
