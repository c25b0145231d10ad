# supply_hub/routers/suppliers.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.auth import require_admin
from supply_hub.database import get_session
from supply_hub.models import SupplierIn, SupplierPatch
from supply_hub.services.catalog import CatalogService

router = APIRouter(prefix="/suppliers", tags=["Suppliers"], dependencies=[Depends(require_admin)])


@router.get("")
async def list_suppliers(db: AsyncSession = Depends(get_session)):
    return {"items": await CatalogService(db).list_suppliers()}


@router.post("", status_code=201)
async def create_supplier(payload: SupplierIn, db: AsyncSession = Depends(get_session)):
    return await CatalogService(db).create_supplier(payload.model_dump())


@router.patch("/{supplier_id}")
async def update_supplier(supplier_id: int, payload: SupplierPatch, db: AsyncSession = Depends(get_session)):
    return await CatalogService(db).update_supplier(supplier_id, payload.model_dump(exclude_unset=True))


@router.delete("/{supplier_id}", status_code=204)
async def delete_supplier(supplier_id: int, db: AsyncSession = Depends(get_session)):
    await CatalogService(db).delete_supplier(supplier_id)
    return Response(status_code=204)
