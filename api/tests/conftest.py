# api/tests/conftest.py
import os
import tempfile

# settings are read at import time
os.environ.setdefault("DATA_ROOT", tempfile.mkdtemp(prefix="supply-hub-test-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import anyio
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from supply_hub.auth import CurrentUser, issue_token
from supply_hub.database import init_db, close_db, get_session_context
from supply_hub.db_models import Product, Supplier, WarehouseType

ADMIN = CurrentUser(user_id=1, role="admin", customer_id=None)
CUSTOMER = CurrentUser(user_id=2, role="customer", customer_id=7)
OTHER_CUSTOMER = CurrentUser(user_id=3, role="customer", customer_id=8)

PRODUCTS = [
    # name, unit, warehouse, price, stock, available
    ("Beef brisket", "kg", WarehouseType.frozen, "12.50", "100", True),
    ("Apples", "box", WarehouseType.fresh, "8.00", "50", True),
    ("Rice", "bag", WarehouseType.dry, "20.00", "30", True),
    ("Truffle", "kg", WarehouseType.fresh, "900.00", "1", False),
]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'supply_hub_test.db'}"


async def seed_catalog(db):
    products = {}
    for name, unit, wh, price, stock, available in PRODUCTS:
        p = Product(
            name=name, unit=unit, warehouse_type=wh,
            price=Decimal(price), stock=Decimal(stock), is_available=available,
        )
        db.add(p)
        products[name] = p
    supplier = Supplier(name="Green Farm", contact="farm@example.com")
    other = Supplier(name="Ocean Foods")
    db.add_all([supplier, other])
    await db.flush()
    return {
        "products": {name: p.id for name, p in products.items()},
        "supplier_id": supplier.id,
        "other_supplier_id": other.id,
    }


@pytest.fixture
async def session(db_url):
    await init_db(db_url)
    async with get_session_context() as db:
        yield db
    await close_db()


@pytest.fixture
async def seeded(session):
    ids = await seed_catalog(session)
    await session.commit()
    return ids


async def stock_of(db, product_id):
    return (await db.execute(select(Product.stock).where(Product.id == product_id))).scalar_one()


# ---------------------------------------------------------------------------
# HTTP fixtures (sync, TestClient)
# ---------------------------------------------------------------------------

def _bearer(user: CurrentUser) -> dict:
    return {"Authorization": f"Bearer {issue_token(user.user_id, user.role, user.customer_id)}"}


@pytest.fixture
def admin_headers():
    return _bearer(ADMIN)


@pytest.fixture
def customer_headers():
    return _bearer(CUSTOMER)


@pytest.fixture
def other_customer_headers():
    return _bearer(OTHER_CUSTOMER)


@pytest.fixture
def api(db_url):
    """TestClient on a fresh SQLite file with the demo catalog; yields (client, ids)."""
    async def _setup():
        await init_db(db_url)
        async with get_session_context() as db:
            return await seed_catalog(db)

    ids = anyio.run(_setup)
    from supply_hub.main import app

    with TestClient(app) as client:
        yield client, ids
    anyio.run(close_db)
