"""
Test Configuration — Fixtures for async DB, seeded dealership data, a fake
LLM client and the API test client.

Each test gets its own file-backed SQLite database under ``tmp_path``. Every
DealerGPT component opens its own sessions from the factory, so the file
database lets concurrent sessions see each other's commits.
"""

from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_chat_client, get_current_user, get_session_factory
from api.main import app
from core.config import Settings, get_settings
from core.security import hash_password
from db.session import create_tables

# Wednesday; the week started on Sunday 11 October.
NOW = datetime(2026, 10, 14, 12, 0, 0)

ADMIN_PASSWORD = "admin-pass"
SALES_PASSWORD = "sales-pass"


class FakeLLM:
    """Records every call and returns a canned reply, or raises ``error``."""

    def __init__(self, reply: str = "Here is your dealership summary.", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    async def complete(self, messages, *, max_tokens=None):
        self.calls.append({"messages": messages, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        debug=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'dealerdesk.db'}",
        openai_api_key=None,
        dealergpt_mode="full",
    )


@pytest.fixture
async def test_engine(test_settings):
    """Create a test database engine and build all tables."""
    engine = create_async_engine(test_settings.database_url, echo=False)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def broken_session_factory(tmp_path):
    """Sessions against a database with no tables; every query fails."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", echo=False)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def failing_llm():
    """Factory for an LLM client that raises the given error."""
    return lambda error: FakeLLM(error=error)


@pytest.fixture
async def seeded_db(test_db):
    """Seed a small dealership: stock, sales, customers, leads and operations."""
    from db.models import (
        Appointment,
        Customer,
        Interaction,
        Job,
        Lead,
        PurchaseInvoice,
        Task,
        User,
        Vehicle,
    )

    admin = User(
        id=1,
        username="admin",
        password=hash_password(ADMIN_PASSWORD),
        email="admin@dealerdesk.local",
        first_name="Morgan",
        last_name="Admin",
        role="admin",
    )
    seller = User(
        id=2,
        username="sam",
        password=hash_password(SALES_PASSWORD),
        email="sam@dealerdesk.local",
        first_name="Sam",
        last_name="Seller",
        role="salesperson",
    )
    test_db.add_all([admin, seller])
    await test_db.flush()

    old_stock = Vehicle(
        stock_number="STK001",
        department="Sales",
        sales_status="Stock",
        make="Ford",
        model="Fiesta",
        registration="AB12 CDE",
        purchase_invoice_date=NOW - timedelta(days=120),
        purchase_price_total=8000.0,
    )
    new_stock = Vehicle(
        stock_number="STK002",
        department="Sales",
        sales_status="Stock",
        make="BMW",
        model="320d",
        purchase_invoice_date=NOW - timedelta(days=10),
        purchase_price_total=15000.0,
    )
    mid_stock = Vehicle(
        stock_number="STK003",
        department="Sales",
        sales_status="Stock",
        make="Audi",
        model="A3",
        purchase_invoice_date=NOW - timedelta(days=45),
        purchase_price_total=12000.0,
    )
    sold_this_week = Vehicle(
        stock_number="STK004",
        department="Sales",
        sales_status="Sold",
        make="Ford",
        model="Focus",
        purchase_invoice_date=NOW - timedelta(days=40),
        purchase_price_total=9000.0,
        sale_date=NOW - timedelta(days=1),
        salesperson="Sam Seller",
        cash_payment=11000.0,
        total_sale_price=11000.0,
        total_gp=2000.0,
        adj_gp=1500.0,
        customer_first_name="Jane",
        customer_surname="Smith",
    )
    sold_last_week = Vehicle(
        stock_number="STK005",
        department="Sales",
        sales_status="Sold",
        collection_status="AWD",
        make="BMW",
        model="X1",
        purchase_invoice_date=NOW - timedelta(days=60),
        purchase_price_total=17000.0,
        sale_date=NOW - timedelta(days=8),
        salesperson="Alex Agent",
        bank_payment=5000.0,
        finance_payment=15000.0,
        total_sale_price=20000.0,
        total_gp=3000.0,
        adj_gp=2500.0,
        customer_first_name="John",
        customer_surname="Doe",
    )
    test_db.add_all([old_stock, new_stock, mid_stock, sold_this_week, sold_last_week])
    await test_db.flush()

    jane = Customer(
        first_name="Jane",
        last_name="Smith",
        city="Leeds",
        customer_type="active",
        created_at=NOW - timedelta(days=100),
    )
    john = Customer(
        first_name="John",
        last_name="Doe",
        city="York",
        customer_type="active",
        created_at=NOW - timedelta(days=90),
    )
    prospect = Customer(
        first_name="Pat",
        last_name="Prospect",
        city="Leeds",
        customer_type="prospect",
        created_at=NOW - timedelta(days=5),
    )
    test_db.add_all([jane, john, prospect])
    await test_db.flush()

    hot_lead = Lead(
        first_name="Harriet",
        last_name="Hot",
        lead_source="website",
        pipeline_stage="new",
        lead_quality="hot",
        assigned_salesperson_id=2,
        next_follow_up_date=NOW - timedelta(days=2),
    )
    warm_lead = Lead(
        first_name="Walter",
        last_name="Warm",
        lead_source="phone",
        pipeline_stage="contacted",
        lead_quality="warm",
        assigned_salesperson_id=2,
        next_follow_up_date=NOW + timedelta(days=3),
    )
    converted_lead = Lead(
        first_name="Jane",
        last_name="Smith",
        lead_source="website",
        pipeline_stage="converted",
        lead_quality="hot",
        converted_customer_id=jane.id,
    )
    lost_lead = Lead(
        first_name="Larry",
        last_name="Lost",
        lead_source="walk_in",
        pipeline_stage="lost",
        lost_reason="price",
    )
    test_db.add_all([hot_lead, warm_lead, converted_lead, lost_lead])
    await test_db.flush()

    test_db.add_all(
        [
            Interaction(
                lead_id=hot_lead.id,
                user_id=2,
                interaction_type="phone_call",
                interaction_direction="outbound",
                interaction_outcome="callback_requested",
                interaction_notes="Asked for finance quote",
                created_at=NOW - timedelta(days=3),
            ),
            Appointment(
                lead_id=warm_lead.id,
                vehicle_id=new_stock.id,
                assigned_to_id=2,
                appointment_date=NOW + timedelta(hours=2),
                appointment_type="viewing",
            ),
            Task(title="Chase V5 for STK005", assigned_to_id=1, due_date=NOW + timedelta(days=1)),
            Job(
                job_number="JOB-001",
                job_type="service",
                status="pending",
                vehicle_id=old_stock.id,
                scheduled_date=NOW - timedelta(days=3),
            ),
            Job(
                job_number="JOB-002",
                job_type="delivery",
                status="completed",
                vehicle_id=sold_last_week.id,
                scheduled_date=NOW - timedelta(days=7),
            ),
            PurchaseInvoice(
                vehicle_id=old_stock.id,
                file_name="stk001-invoice.pdf",
                amount=8000.0,
                uploaded_by=1,
                created_at=NOW - timedelta(days=120),
            ),
        ]
    )
    await test_db.commit()

    return {
        "admin": admin,
        "seller": seller,
        "vehicles": [old_stock, new_stock, mid_stock, sold_this_week, sold_last_week],
        "customers": [jane, john, prospect],
        "leads": [hot_lead, warm_lead, converted_lead, lost_lead],
    }


@pytest.fixture
def admin_user():
    return {
        "id": 1,
        "username": "admin",
        "email": "admin@dealerdesk.local",
        "first_name": "Morgan",
        "last_name": "Admin",
        "role": "admin",
    }


@pytest.fixture
def seller_user():
    return {
        "id": 2,
        "username": "sam",
        "email": "sam@dealerdesk.local",
        "first_name": "Sam",
        "last_name": "Seller",
        "role": "salesperson",
    }


@pytest.fixture
async def anon_client(session_factory, test_settings, fake_llm):
    """Test client with the real auth dependency."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_chat_client] = lambda: fake_llm

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def client(anon_client, admin_user):
    """Test client authenticated as the admin user."""
    app.dependency_overrides[get_current_user] = lambda: admin_user
    return anon_client


@pytest.fixture
def now():
    """Fixed reference time the seeded data is laid out around."""
    return NOW


@pytest.fixture
def admin_credentials():
    return {"username": "admin", "password": ADMIN_PASSWORD}
