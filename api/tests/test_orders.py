from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from supply_hub.db_models import ChangeLogType, MovementType, StockMovement, OrderStatus
from supply_hub.database import get_session_context
from supply_hub.db_models_ext import Order, OrderItem, OrderChangeLog
from supply_hub.exceptions import (
    InsufficientStockError, InvalidQuantityError, NotFoundError, OrderLockedError,
    PermissionDeniedError, ProductUnavailableError, ValidationError,
)
from supply_hub.services.orders import OrderService, LineRequest, can_transition
from supply_hub.settings import Settings

from conftest import ADMIN, CUSTOMER, OTHER_CUSTOMER, stock_of

pytestmark = pytest.mark.anyio


def lines(*pairs):
    return [LineRequest(product_id=pid, qty_ordered=qty) for pid, qty in pairs]


async def order_count(db):
    return (await db.execute(select(func.count(Order.id)))).scalar_one()


# ---------------------------------------------------------------------------
# create / merge
# ---------------------------------------------------------------------------

async def test_create_order_snapshots_price_and_rounds_total(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)

    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Beef brisket"], "1.37"), (p["Apples"], 3)))

    assert result["merged"] is False
    # 1.37 * 12.50 = 17.125 -> 17.13, + 3 * 8.00
    assert result["totalAmount"] == 41.13
    order = await svc.get_order(CUSTOMER, result["orderId"])
    assert order["status"] == "created"
    assert order["deliveryDate"] == "2024-05-01"
    assert order["pendingReview"] is True
    assert [i["unitPrice"] for i in order["items"]] == [12.5, 8.0]


async def test_price_change_does_not_touch_existing_lines(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 2)))

    from supply_hub.services.catalog import CatalogService
    await CatalogService(session).update_product(p["Apples"], {"price": Decimal("9.99")})

    order = await svc.get_order(ADMIN, result["orderId"])
    assert order["items"][0]["unitPrice"] == 8.0
    assert order["totalAmount"] == 16.0


async def test_customer_orders_for_same_day_merge(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)

    first = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 2)))
    second = await svc.create_order(CUSTOMER, "2024-05-01T09:30:00Z", lines((p["Rice"], 1), (p["Apples"], 1)))

    assert second["merged"] is True
    assert second["orderId"] == first["orderId"]
    assert await order_count(session) == 1
    order = await svc.get_order(CUSTOMER, first["orderId"])
    assert len(order["items"]) == 3
    assert order["totalAmount"] == 2 * 8 + 20 + 8

    logs = (await session.execute(
        select(OrderChangeLog.type).where(OrderChangeLog.order_id == first["orderId"]).order_by(OrderChangeLog.id)
    )).scalars().all()
    assert logs == [ChangeLogType.order_created, ChangeLogType.merged_order_update]


async def test_merge_only_targets_open_orders(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    first = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 2)))
    await svc.update_status(first["orderId"], "cancelled")

    second = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))

    assert second["merged"] is False
    assert second["orderId"] != first["orderId"]


async def test_different_customer_or_day_does_not_merge(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    a = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))
    b = await svc.create_order(CUSTOMER, "2024-05-02", lines((p["Apples"], 1)))
    c = await svc.create_order(OTHER_CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))
    assert len({a["orderId"], b["orderId"], c["orderId"]}) == 3


async def test_admin_orders_never_merge(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)

    a = await svc.create_order(ADMIN, "2024-05-01", lines((p["Apples"], 1)), customer_id=7)
    b = await svc.create_order(ADMIN, "2024-05-01", lines((p["Apples"], 1)), customer_id=7)

    assert a["merged"] is b["merged"] is False
    assert await order_count(session) == 2
    order = await svc.get_order(CUSTOMER, b["orderId"])
    assert order["customerId"] == 7


async def test_admin_needs_customer_id(session, seeded):
    with pytest.raises(ValidationError):
        await OrderService(session).create_order(ADMIN, "2024-05-01", lines((seeded["products"]["Apples"], 1)))


async def test_delivery_date_truncated_to_utc_day(session, seeded):
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01T23:30:00-02:00", lines((seeded["products"]["Apples"], 1)))
    order = (await session.execute(select(Order).where(Order.id == result["orderId"]))).scalar_one()
    assert order.delivery_date == date(2024, 5, 2)


@pytest.mark.parametrize("bad_date", ["", "not-a-date", "2024-13-45"])
async def test_bad_delivery_date_rejected(session, seeded, bad_date):
    with pytest.raises(ValidationError):
        await OrderService(session).create_order(CUSTOMER, bad_date, lines((seeded["products"]["Apples"], 1)))


async def test_invalid_quantity_rejects_whole_order(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)

    with pytest.raises(InvalidQuantityError) as exc:
        await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Beef brisket"], "0.55"), (p["Apples"], "1.5")))

    assert "Item 2" in exc.value.message
    assert await order_count(session) == 0
    assert (await session.execute(select(func.count(OrderItem.id)))).scalar_one() == 0


async def test_unknown_and_unavailable_products_rejected(session, seeded):
    svc = OrderService(session)
    with pytest.raises(NotFoundError):
        await svc.create_order(CUSTOMER, "2024-05-01", lines((999, 1)))
    with pytest.raises(ProductUnavailableError):
        await svc.create_order(CUSTOMER, "2024-05-01", lines((seeded["products"]["Truffle"], 1)))
    with pytest.raises(ValidationError):
        await svc.create_order(CUSTOMER, "2024-05-01", [])
    assert await order_count(session) == 0


# ---------------------------------------------------------------------------
# status transitions / stock deduction
# ---------------------------------------------------------------------------

async def _picked_order(svc, p, beef="2.5", apples=4):
    result = await svc.create_order(ADMIN, "2024-05-01", lines((p["Beef brisket"], beef), (p["Apples"], apples)), customer_id=7)
    order = await svc.get_order(ADMIN, result["orderId"])
    for item, qty in zip(order["items"], (beef, apples)):
        await svc.update_item_picking(item["id"], picked=True, qty_picked=qty)
    return result["orderId"]


async def test_stock_deducted_exactly_once(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    order_id = await _picked_order(svc, p)

    shipped = await svc.update_status(order_id, "shipped")
    assert shipped["status"] == "shipped"
    assert shipped["stockDeducted"] is True
    completed = await svc.update_status(order_id, "completed")
    assert completed["status"] == "completed"

    assert await stock_of(session, p["Beef brisket"]) == Decimal("97.5")
    assert await stock_of(session, p["Apples"]) == Decimal("46")
    movements = (await session.execute(
        select(StockMovement).where(StockMovement.ref_order_id == order_id).order_by(StockMovement.id)
    )).scalars().all()
    assert len(movements) == 2
    assert {m.movement_type for m in movements} == {MovementType.outbound}
    assert movements[0].remark == f"Order #{order_id} - shipped"


async def test_unpicked_lines_are_not_deducted(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    result = await svc.create_order(ADMIN, "2024-05-01", lines((p["Apples"], 4)), customer_id=7)

    await svc.update_status(result["orderId"], "shipped")

    assert await stock_of(session, p["Apples"]) == Decimal("50")


async def test_insufficient_stock_blocks_transition_and_lists_every_product(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    order_id = await _picked_order(svc, p, beef="150", apples=60)

    with pytest.raises(InsufficientStockError) as exc:
        await svc.update_status(order_id, "shipped")

    short = {s["productId"]: s for s in exc.value.shortages}
    assert set(short) == {p["Beef brisket"], p["Apples"]}
    assert short[p["Apples"]]["stock"] == Decimal("50")
    assert short[p["Apples"]]["required"] == Decimal("60")
    assert exc.value.code == "STOCK_INSUFFICIENT"

    order = await svc.get_order(ADMIN, order_id)
    assert order["status"] == "created"
    assert order["stockDeducted"] is False
    assert await stock_of(session, p["Beef brisket"]) == Decimal("100")
    assert await stock_of(session, p["Apples"]) == Decimal("50")


async def test_shortage_is_checked_per_product_across_lines(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    result = await svc.create_order(ADMIN, "2024-05-01", lines((p["Rice"], 20), (p["Rice"], 20)), customer_id=7)
    order = await svc.get_order(ADMIN, result["orderId"])
    for item in order["items"]:
        await svc.update_item_picking(item["id"], qty_picked=20)

    with pytest.raises(InsufficientStockError) as exc:
        await svc.update_status(result["orderId"], "completed")
    assert exc.value.shortages[0]["required"] == Decimal("40")


async def test_invalid_status_rejected(session, seeded):
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((seeded["products"]["Apples"], 1)))
    with pytest.raises(ValidationError):
        await svc.update_status(result["orderId"], "teleported")
    with pytest.raises(NotFoundError):
        await svc.update_status(12345, "shipped")


def test_backward_transitions_are_allowed():
    assert can_transition(OrderStatus.completed, OrderStatus.created)
    assert can_transition(OrderStatus.created, OrderStatus.shipped)


async def test_trip_assignment(session, seeded):
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((seeded["products"]["Apples"], 1)))
    assert (await svc.update_trip(result["orderId"], " T-1 "))["tripNumber"] == "T-1"
    assert (await svc.update_trip(result["orderId"], "   "))["tripNumber"] is None


# ---------------------------------------------------------------------------
# admin item edits
# ---------------------------------------------------------------------------

async def test_add_item_to_cancelled_order_creates_follow_up(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))
    await svc.update_status(result["orderId"], "cancelled")

    out = await svc.add_item(result["orderId"], p["Rice"], 2)

    assert out["redirectedOrderId"] is not None
    assert out["order"]["id"] == result["orderId"]
    assert len(out["order"]["items"]) == 1
    assert out["order"]["totalAmount"] == 8.0

    follow_up = await svc.get_order(ADMIN, out["redirectedOrderId"])
    assert follow_up["status"] == "created"
    assert follow_up["customerId"] == 7
    assert follow_up["deliveryDate"] == "2024-05-01"
    assert [i["productId"] for i in follow_up["items"]] == [p["Rice"]]
    assert follow_up["totalAmount"] == 40.0


async def test_add_item_to_open_order(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))

    out = await svc.add_item(result["orderId"], p["Beef brisket"], "0.5", unit_price="10")

    assert out["redirectedOrderId"] is None
    assert out["order"]["totalAmount"] == 13.0
    with pytest.raises(InvalidQuantityError):
        await svc.add_item(result["orderId"], p["Apples"], "0.5")


async def test_edit_and_delete_recalculate_total_without_logging(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 1), (p["Rice"], 1)))
    order = await svc.get_order(ADMIN, result["orderId"])
    apples, rice = order["items"]

    edited = await svc.edit_item(apples["id"], qty_ordered=3, unit_price="7.5")
    assert edited["totalAmount"] == 3 * 7.5 + 20

    after_delete = await svc.delete_item(rice["id"])
    assert after_delete["totalAmount"] == 22.5
    assert len(after_delete["items"]) == 1

    logs = (await session.execute(
        select(func.count(OrderChangeLog.id)).where(OrderChangeLog.order_id == result["orderId"])
    )).scalar_one()
    assert logs == 1  # only order_created


async def test_item_prices_are_stored_to_the_cent(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 3)))
    item_id = (await svc.get_order(ADMIN, result["orderId"]))["items"][0]["id"]

    edited = await svc.edit_item(item_id, unit_price=Decimal("3.333"))
    assert edited["items"][0]["unitPrice"] == 3.33
    assert edited["totalAmount"] == 9.99

    added = await svc.add_item(result["orderId"], p["Rice"], 1, unit_price="2.005")
    rice = next(i for i in added["order"]["items"] if i["productId"] == p["Rice"])
    assert rice["unitPrice"] == 2.01
    assert added["order"]["totalAmount"] == 12.0

    async with get_session_context() as fresh:
        stored = await OrderService(fresh).get_order(ADMIN, result["orderId"])
    assert sorted(i["unitPrice"] for i in stored["items"]) == [2.01, 3.33]
    assert stored["totalAmount"] == 12.0


async def test_edit_item_requires_a_field_and_valid_quantity(session, seeded):
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((seeded["products"]["Apples"], 1)))
    item_id = (await svc.get_order(ADMIN, result["orderId"]))["items"][0]["id"]
    with pytest.raises(ValidationError):
        await svc.edit_item(item_id)
    with pytest.raises(InvalidQuantityError):
        await svc.edit_item(item_id, qty_ordered="2.5")
    with pytest.raises(NotFoundError):
        await svc.edit_item(99999, qty_ordered=1)


@pytest.mark.parametrize("status", ["shipped", "completed", "cancelled"])
async def test_locked_orders_reject_edit_and_delete(session, seeded, status):
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((seeded["products"]["Apples"], 1)))
    item_id = (await svc.get_order(ADMIN, result["orderId"]))["items"][0]["id"]
    await svc.update_status(result["orderId"], status)

    with pytest.raises(OrderLockedError) as exc:
        await svc.edit_item(item_id, qty_ordered=2)
    assert exc.value.code == "ORDER_LOCKED"
    with pytest.raises(OrderLockedError):
        await svc.delete_item(item_id)

    order = await svc.get_order(ADMIN, result["orderId"])
    assert order["items"][0]["qtyOrdered"] == 1.0


async def test_admin_item_edits_logged_when_enabled(session, seeded):
    p = seeded["products"]
    svc = OrderService(session, Settings(LOG_ADMIN_ITEM_EDITS=True))
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))
    await svc.add_item(result["orderId"], p["Rice"], 1)
    item_id = (await svc.get_order(ADMIN, result["orderId"]))["items"][0]["id"]
    await svc.edit_item(item_id, qty_ordered=2)

    types = (await session.execute(
        select(OrderChangeLog.type).where(OrderChangeLog.order_id == result["orderId"]).order_by(OrderChangeLog.id)
    )).scalars().all()
    assert types == [ChangeLogType.order_created, ChangeLogType.item_added, ChangeLogType.item_updated]


# ---------------------------------------------------------------------------
# picking / reads
# ---------------------------------------------------------------------------

async def test_picking_flags(session, seeded):
    svc = OrderService(session)
    result = await svc.create_order(CUSTOMER, "2024-05-01", lines((seeded["products"]["Apples"], 2)))
    item_id = (await svc.get_order(ADMIN, result["orderId"]))["items"][0]["id"]

    row = await svc.update_item_picking(item_id, picked=True)
    assert (row["picked"], row["status"]) == (True, "picked")

    row = await svc.update_item_picking(item_id, picked=True, out_of_stock=True)
    assert (row["picked"], row["outOfStock"], row["status"]) == (True, True, "out_of_stock")

    row = await svc.update_item_picking(item_id, out_of_stock=False, qty_picked=2)
    assert (row["status"], row["qtyPicked"]) == ("created", 2.0)

    # outOfStock=false wins over picked=true in the same call
    row = await svc.update_item_picking(item_id, picked=True, out_of_stock=False)
    assert (row["picked"], row["outOfStock"], row["status"]) == (True, False, "created")

    with pytest.raises(ValidationError):
        await svc.update_item_picking(item_id)
    with pytest.raises(ValidationError):
        await svc.update_item_picking(item_id, qty_picked=-1)


async def test_customers_only_see_their_orders(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    mine = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))
    await svc.create_order(OTHER_CUSTOMER, "2024-05-01", lines((p["Apples"], 1)))

    assert [o["id"] for o in await svc.list_orders(CUSTOMER)] == [mine["orderId"]]
    assert len(await svc.list_orders(ADMIN)) == 2
    assert len(await svc.list_orders(ADMIN, customer_id=8)) == 1
    with pytest.raises(PermissionDeniedError):
        await svc.get_order(OTHER_CUSTOMER, mine["orderId"])


async def test_picking_list_groups_by_warehouse_then_name(session, seeded):
    p = seeded["products"]
    svc = OrderService(session)
    a = await svc.create_order(CUSTOMER, "2024-05-01", lines((p["Beef brisket"], 1), (p["Apples"], 1)))
    b = await svc.create_order(OTHER_CUSTOMER, "2024-05-01", lines((p["Rice"], 1)))
    c = await svc.create_order(OTHER_CUSTOMER, "2024-05-02", lines((p["Rice"], 5)))
    for oid in (a["orderId"], b["orderId"]):
        await svc.update_trip(oid, "T-1")
    await svc.update_trip(c["orderId"], "T-2")

    rows = await svc.picking_list("T-1")
    assert [(r["warehouseType"], r["productName"]) for r in rows] == [
        ("dry", "Rice"), ("fresh", "Apples"), ("frozen", "Beef brisket"),
    ]
    frozen = await svc.picking_list("T-1", "frozen")
    assert [r["productName"] for r in frozen] == ["Beef brisket"]
    with pytest.raises(ValidationError):
        await svc.picking_list("")
