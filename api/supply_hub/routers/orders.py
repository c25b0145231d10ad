# supply_hub/routers/orders.py
"""
Orders Router - order lifecycle, picking and review endpoints.

Static paths (/picking, /pending/changes, /items/...) are declared before
/{order_id} so they are not captured by it.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.auth import CurrentUser, get_current_user, require_admin
from supply_hub.database import get_session
from supply_hub.models import (
    OrderCreateIn, OrderCreateOut, StatusIn, TripIn, AddItemIn, EditItemIn, PickingIn,
)
from supply_hub.services.change_log import ChangeLogService
from supply_hub.services.orders import OrderService, LineRequest

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("")
async def list_orders(
    customer_id: Optional[int] = Query(default=None, alias="customerId", ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).list_orders(user, customer_id)


@router.post("", status_code=201, response_model=OrderCreateOut, response_model_by_alias=True)
async def create_order(
    payload: OrderCreateIn,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Create an order. Customers are merged into their open order for the same
    delivery date (200, merged=true); otherwise a new order is created (201).
    """
    result = await OrderService(db).create_order(
        user,
        payload.delivery_date,
        [LineRequest(product_id=i.product_id, qty_ordered=i.qty_ordered) for i in payload.items],
        customer_id=payload.customer_id,
    )
    if result["merged"]:
        response.status_code = 200
    return result


@router.get("/picking")
async def picking_list(
    trip: Optional[str] = Query(default=None),
    warehouse_type: Optional[str] = Query(default=None, alias="warehouseType"),
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).picking_list(trip, warehouse_type)


@router.get("/pending/changes")
async def pending_changes(
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return {"items": await ChangeLogService(db).list_pending()}


@router.patch("/items/{item_id}/status")
async def update_item_picking(
    item_id: int,
    payload: PickingIn,
    _: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).update_item_picking(
        item_id,
        picked=payload.picked,
        out_of_stock=payload.out_of_stock,
        qty_picked=payload.qty_picked,
    )


@router.patch("/items/{item_id}")
async def edit_item(
    item_id: int,
    payload: EditItemIn,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).edit_item(item_id, payload.qty_ordered, payload.unit_price)


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: int,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).delete_item(item_id)


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).get_order(user, order_id)


@router.patch("/{order_id}/status")
async def update_status(
    order_id: int,
    payload: StatusIn,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).update_status(order_id, payload.status)


@router.patch("/{order_id}/trip")
async def update_trip(
    order_id: int,
    payload: TripIn,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).update_trip(order_id, payload.trip_number)


@router.post("/{order_id}/items", status_code=201)
async def add_item(
    order_id: int,
    payload: AddItemIn,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await OrderService(db).add_item(order_id, payload.product_id, payload.qty_ordered, payload.unit_price)


@router.patch("/{order_id}/review")
async def acknowledge_review(
    order_id: int,
    _: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await ChangeLogService(db).acknowledge(order_id)


@router.get("/{order_id}/change-logs")
async def change_logs(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    # ownership check; raises 404/403
    await OrderService(db).get_order(user, order_id)
    return await ChangeLogService(db).list_for_order(order_id)
