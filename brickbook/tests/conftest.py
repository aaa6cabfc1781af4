"""
Centralized Test Configuration.
"""

import uuid
import pytest
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from brickbook.app.main import app
from brickbook.app.db.session import get_db, Base
from brickbook.app.core.jwt import create_access_token
from brickbook.app.models.customer import Customer
from brickbook.app.models.sale import Sale
from brickbook.app.models.ledger_entry import utcnow
from brickbook.app.models.ledger_enums import SaleStatus

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

OWNER_ID = "owner-1"
OTHER_OWNER_ID = "owner-2"


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Route the app's sessions to the test database for the whole run."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


def bearer(owner_id: str) -> dict:
    token = create_access_token(data={"sub": f"{owner_id}@brickbook.test", "user_id": owner_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return bearer(OWNER_ID)


@pytest.fixture
def other_auth_headers():
    return bearer(OTHER_OWNER_ID)


async def create_customer(db, name="Ravi Traders", owner_id=OWNER_ID, phone="9876543210") -> Customer:
    customer = Customer(owner_id=owner_id, name=name, phone=phone, advance_balance=Decimal("0.00"))
    db.add(customer)
    await db.commit()
    await db.refresh(customer)
    return customer


async def create_sale(db, customer: Customer, total="1000.00", due=None) -> Sale:
    total = Decimal(total)
    due = total if due is None else Decimal(due)
    sale = Sale(
        owner_id=customer.owner_id,
        customer_id=customer.id,
        invoice_no=f"INV-TEST-{uuid.uuid4().hex[:8].upper()}",
        total_amount=total,
        paid_amount=total - due,
        due_amount=due,
        status=SaleStatus.PAID if due == 0 else SaleStatus.PENDING,
        sale_date=utcnow(),
    )
    db.add(sale)
    await db.commit()
    await db.refresh(sale)
    return sale


@pytest.fixture
async def customer(db_session):
    return await create_customer(db_session)


@pytest.fixture
async def sale(db_session, customer):
    return await create_sale(db_session, customer, total="2500.00")


@pytest.fixture
def customer_factory(db_session):
    async def factory(name="Ravi Traders", owner_id=OWNER_ID, phone="9876543210"):
        return await create_customer(db_session, name=name, owner_id=owner_id, phone=phone)
    return factory


@pytest.fixture
def sale_factory(db_session):
    async def factory(customer, total="1000.00", due=None):
        return await create_sale(db_session, customer, total=total, due=due)
    return factory
