"""
Test Configuration — Fixtures for async DB, test client, and mock data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db, get_tenant_db
from api.main import app
from core.context import RequestContext
from db.models import (
    GoodsReceipt,
    Item,
    Location,
    LocationInventory,
    Practice,
    Supplier,
)
from db.session import Base

# Use in-memory SQLite for tests. aiosqlite keeps a single shared
# connection for :memory: so the session-scoped schema stays visible.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PRACTICE_ID = "00000000-0000-0000-0000-000000000001"
OTHER_PRACTICE_ID = "00000000-0000-0000-0000-000000000002"

VALID_GTIN = "4006381333931"


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        await conn.begin_nested()  # SAVEPOINT

        # Commits and rollbacks in app code only touch a nested SAVEPOINT
        session = AsyncSession(bind=conn, expire_on_commit=False, join_transaction_mode="create_savepoint")

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture(autouse=True)
def published_events(monkeypatch):
    """Capture Redis notifications instead of publishing them."""
    events = []

    async def fake_publish(practice_id, batch):
        events.extend({"practice_id": practice_id, **event} for event in batch)
        return len(batch)

    monkeypatch.setattr("alerts.engine.publish_events", fake_publish)
    return events


@pytest.fixture
def ctx():
    return RequestContext(practice_id=uuid.UUID(PRACTICE_ID), user_id="staff-user", role="STAFF")


@pytest.fixture
def admin_ctx():
    return RequestContext(practice_id=uuid.UUID(PRACTICE_ID), user_id="admin-user", role="ADMIN")


@pytest.fixture
def viewer_ctx():
    return RequestContext(practice_id=uuid.UUID(PRACTICE_ID), user_id="viewer-user", role="VIEWER")


@pytest.fixture
def other_ctx():
    return RequestContext(practice_id=uuid.UUID(OTHER_PRACTICE_ID), user_id="other-user", role="ADMIN")


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "auth0|test-user-id",
        "email": "test@practiceops.app",
        "practice_id": PRACTICE_ID,
        "role": "STAFF",
    }


@pytest.fixture
async def client(test_db, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    async def override_get_tenant_db():
        """Skip set_config (SQLite doesn't support it), return session directly."""
        return test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_tenant_db] = override_get_tenant_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """
    Seed the test DB with basic entities for integration tests.

    Returns plain ids so tests never touch expired ORM instances after a
    rollback.
    """
    practice_id = uuid.UUID(PRACTICE_ID)
    other_practice_id = uuid.UUID(OTHER_PRACTICE_ID)

    test_db.add_all(
        [
            Practice(practice_id=practice_id, name="Riverside Dental"),
            Practice(practice_id=other_practice_id, name="Hilltop Vets"),
        ]
    )
    await test_db.flush()

    location = Location(practice_id=practice_id, name="Main Storage", code="MAIN")
    other_location = Location(practice_id=other_practice_id, name="Back Room")
    supplier = Supplier(practice_id=practice_id, name="Dental Supply Co", contact_email="orders@dentalsupply.test")
    blocked_supplier = Supplier(practice_id=practice_id, name="Blocked Supplies", status="blocked")
    other_supplier = Supplier(practice_id=other_practice_id, name="Vet Wholesale")
    gloves = Item(practice_id=practice_id, name="Nitrile Gloves", sku="GLV-M", unit="box", gtin=VALID_GTIN)
    masks = Item(practice_id=practice_id, name="Surgical Masks", sku="MSK-50", unit="box")
    syringes = Item(practice_id=practice_id, name="Syringes 5ml", sku="SYR-5", unit="pack")
    other_item = Item(practice_id=other_practice_id, name="Bandage", sku="BND-1", unit="roll")
    test_db.add_all([location, other_location, supplier, blocked_supplier, other_supplier])
    test_db.add_all([gloves, masks, syringes, other_item])
    await test_db.flush()
    gloves.default_supplier_id = supplier.supplier_id
    masks.default_supplier_id = supplier.supplier_id

    test_db.add_all(
        [
            LocationInventory(
                practice_id=practice_id,
                location_id=location.location_id,
                item_id=gloves.item_id,
                quantity=2,
                reorder_point=20,
            ),
            LocationInventory(
                practice_id=practice_id,
                location_id=location.location_id,
                item_id=masks.item_id,
                quantity=50,
                reorder_point=10,
            ),
        ]
    )
    await test_db.flush()
    await test_db.commit()

    return {
        "practice_id": practice_id,
        "other_practice_id": other_practice_id,
        "location_id": location.location_id,
        "other_location_id": other_location.location_id,
        "supplier_id": supplier.supplier_id,
        "blocked_supplier_id": blocked_supplier.supplier_id,
        "other_supplier_id": other_supplier.supplier_id,
        "gloves_id": gloves.item_id,
        "masks_id": masks.item_id,
        "syringes_id": syringes.item_id,
        "other_item_id": other_item.item_id,
    }


@pytest.fixture
def stock_of(test_db):
    """Current on-hand quantity for (location, item), 0 when no row exists."""

    async def _stock_of(location_id, item_id) -> int:
        quantity = (
            await test_db.execute(
                select(LocationInventory.quantity).where(
                    LocationInventory.location_id == location_id,
                    LocationInventory.item_id == item_id,
                )
            )
        ).scalar_one_or_none()
        return quantity or 0

    return _stock_of


@pytest.fixture
def receipt_status(test_db):
    async def _receipt_status(receipt_id) -> str:
        return (
            await test_db.execute(select(GoodsReceipt.status).where(GoodsReceipt.receipt_id == receipt_id))
        ).scalar_one()

    return _receipt_status


@pytest.fixture
def sent_order(test_db, ctx, seeded_db):
    """Factory: create and send an order for ``{item_key: quantity}``, returning its id."""
    from supply_chain import orders
    from supply_chain.orders import OrderLineInput

    async def _sent_order(quantities: dict[str, int], unit_price: float | None = None):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[
                OrderLineInput(item_id=seeded_db[key], quantity=qty, unit_price=unit_price)
                for key, qty in quantities.items()
            ],
            reference="PO-TEST",
        )
        await orders.send_order(test_db, ctx, order.order_id)
        await test_db.commit()
        return order.order_id

    return _sent_order


@pytest.fixture
def draft_receipt(test_db, ctx, seeded_db):
    """Factory: open a draft receipt (optionally against an order) with ``{item_key: quantity}`` lines."""
    from supply_chain import receiving

    async def _draft_receipt(quantities: dict[str, int], order_id=None):
        receipt = await receiving.create_receipt(
            test_db,
            ctx,
            location_id=seeded_db["location_id"],
            order_id=order_id,
            supplier_id=None if order_id else seeded_db["supplier_id"],
        )
        for key, qty in quantities.items():
            await receiving.add_line(test_db, ctx, receipt.receipt_id, seeded_db[key], qty)
        await test_db.commit()
        return receipt.receipt_id

    return _draft_receipt
