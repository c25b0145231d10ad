from decimal import Decimal

import pytest

from supply_hub.exceptions import (
    DuplicateError, InsufficientStockError, NotFoundError, ReferencedError, ValidationError,
)
from supply_hub.services.catalog import CatalogService
from supply_hub.services.receiving import ReceivingService, BatchLine
from supply_hub.services.stock import InventoryService, StockLedger

from conftest import stock_of

pytestmark = pytest.mark.anyio


async def test_inbound_return_and_damage_move_stock(session, seeded):
    rice = seeded["products"]["Rice"]
    svc = InventoryService(session)

    await svc.inbound(rice, "5", remark="top-up")
    await svc.record_return(rice, 2, partner_name=" Bistro 9 ", reason="wrong size")
    product = await svc.record_damage(rice, "1,5", reason="torn bag")

    assert product.stock == Decimal("35.5")
    assert await stock_of(session, rice) == Decimal("35.5")

    logs = await svc.list_logs()
    assert [l["type"] for l in logs] == ["damage", "return", "in"]
    assert logs[1]["partnerName"] == "Bistro 9"
    assert logs[0]["productName"] == "Rice"
    assert [l["type"] for l in await svc.list_logs("return")] == ["return"]


async def test_damage_cannot_exceed_stock(session, seeded):
    truffle = seeded["products"]["Truffle"]
    svc = InventoryService(session)

    with pytest.raises(InsufficientStockError) as exc:
        await svc.record_damage(truffle, 2)

    assert exc.value.shortages[0]["stock"] == Decimal("1")
    assert await stock_of(session, truffle) == Decimal("1")
    assert await svc.list_logs() == []


async def test_ledger_rejects_non_positive_quantities(session, seeded):
    ledger = StockLedger(session)
    product = await ledger.get_product(seeded["products"]["Rice"])
    with pytest.raises(ValidationError):
        ledger.credit(product, Decimal("0"))
    with pytest.raises(ValidationError):
        ledger.debit(product, Decimal("-1"))


async def test_manual_movement_validation(session, seeded):
    rice = seeded["products"]["Rice"]
    svc = InventoryService(session)
    with pytest.raises(ValidationError):
        await svc.inbound(rice, 0)
    with pytest.raises(ValidationError):
        await svc.record_return(rice, 1, partner_name="  ")
    with pytest.raises(ValidationError):
        await svc.inbound(rice, 1, log_date="yesterday")
    with pytest.raises(NotFoundError):
        await svc.inbound(404, 1)
    with pytest.raises(ValidationError):
        await svc.list_logs("lost")
    with pytest.raises(ValidationError):
        await svc.list_logs(limit=101)


async def test_inventory_summary(session, seeded):
    svc = InventoryService(session)

    everything = await svc.summary()
    assert everything["total"] == 4
    assert [p["name"] for p in everything["items"]] == ["Apples", "Beef brisket", "Rice", "Truffle"]

    fresh = await svc.summary(warehouse_type="fresh")
    assert [p["name"] for p in fresh["items"]] == ["Apples", "Truffle"]
    assert (await svc.summary(q="Ric"))["items"][0]["stock"] == 30.0
    with pytest.raises(ValidationError):
        await svc.summary(warehouse_type="attic")


# ---------------------------------------------------------------------------
# catalog
# ---------------------------------------------------------------------------

async def test_product_crud(session, seeded):
    svc = CatalogService(session)

    created = await svc.create_product({"name": " Milk ", "unit": "box", "warehouse_type": "fresh", "price": Decimal("3.2")})
    assert (created["name"], created["stock"], created["warehouseType"]) == ("Milk", 0.0, "fresh")

    updated = await svc.update_product(created["id"], {"is_available": False, "stock": Decimal("999")})
    assert updated["isAvailable"] is False
    assert updated["stock"] == 0.0

    with pytest.raises(DuplicateError):
        await svc.create_product({"name": "Rice", "unit": "bag"})
    with pytest.raises(DuplicateError):
        await svc.update_product(created["id"], {"name": "Apples"})
    with pytest.raises(ValidationError):
        await svc.create_product({"name": "Oil"})
    with pytest.raises(ValidationError):
        await svc.update_product(created["id"], {"price": Decimal("-1")})
    with pytest.raises(NotFoundError):
        await svc.update_product(9999, {"unit": "kg"})

    page = await svc.list_products(available=True)
    assert page["total"] == 3
    assert [p["name"] for p in (await svc.list_products(q="Mil"))["items"]] == ["Milk"]


async def test_supplier_crud_and_reference_guard(session, seeded):
    svc = CatalogService(session)

    created = (await svc.create_supplier({"name": "Hill Dairy", "contact": " 555-0100 "}))["item"]
    assert created["contact"] == "555-0100"
    assert [s["name"] for s in await svc.list_suppliers()] == ["Green Farm", "Hill Dairy", "Ocean Foods"]

    with pytest.raises(DuplicateError):
        await svc.create_supplier({"name": "Green Farm"})
    with pytest.raises(DuplicateError):
        await svc.update_supplier(created["id"], {"name": "Ocean Foods"})
    renamed = (await svc.update_supplier(created["id"], {"notes": "cheese too"}))["item"]
    assert renamed["notes"] == "cheese too"

    await ReceivingService(session).create_batch(
        seeded["supplier_id"], "2024-05-01", None, [BatchLine(seeded["products"]["Rice"], 1)],
    )
    with pytest.raises(ReferencedError):
        await svc.delete_supplier(seeded["supplier_id"])

    await svc.delete_supplier(created["id"])
    assert [s["name"] for s in await svc.list_suppliers()] == ["Green Farm", "Ocean Foods"]
    with pytest.raises(NotFoundError):
        await svc.delete_supplier(created["id"])
