# supply_hub/routers/products.py
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.auth import get_current_user, require_admin
from supply_hub.database import get_session
from supply_hub.models import ProductIn, ProductPatch
from supply_hub.services.catalog import CatalogService

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("", dependencies=[Depends(get_current_user)])
async def list_products(
    q: Optional[str] = None,
    available: Optional[bool] = None,
    limit: int = Query(default=50),
    offset: int = Query(default=0),
    db: AsyncSession = Depends(get_session),
):
    return await CatalogService(db).list_products(q, available, limit, offset)


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
async def create_product(payload: ProductIn, db: AsyncSession = Depends(get_session)):
    return await CatalogService(db).create_product(payload.model_dump())


@router.patch("/{product_id}", dependencies=[Depends(require_admin)])
async def update_product(product_id: int, payload: ProductPatch, db: AsyncSession = Depends(get_session)):
    return await CatalogService(db).update_product(product_id, payload.model_dump(exclude_unset=True))
