"""
Test configuration and fixtures for the donations backend tests.
"""
import json
import os
import time
from datetime import timedelta
from typing import AsyncGenerator

# must be set before the app reads its configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["GATEWAY_BACKEND"] = "mock"
os.environ["ADMIN_CACHE_BACKEND"] = "memory"
os.environ.pop("CLEANUP_TOKEN", None)

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from sqlalchemy.pool import NullPool

from templegiving.server import (
    app, get_db, get_gateway, get_admin_cache, get_session_factory,
)
from templegiving.gateway import MockPay, sign_webhook
from templegiving.helpers import utcnow
from templegiving.model.admincache._memory import AdminCache
from templegiving.model.orm import Base, User, Donation, Admin

WEBHOOK_SECRET = "test-webhook-secret"
ADMIN_EMAIL = "admin@example.com"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
    # Clean up test database file
    try:
        os.remove("./test.db")
    except OSError:
        pass


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gateway() -> MockPay:
    return MockPay(WEBHOOK_SECRET)


@pytest.fixture
def admin_cache() -> AdminCache:
    return AdminCache(ttl_seconds=300, max_entries=1024)


@pytest_asyncio.fixture(scope="function")
async def client(
    db_engine, db_session: AsyncSession, gateway: MockPay,
    admin_cache: AdminCache,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database, gateway and cache overrides."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_admin_cache] = lambda: admin_cache
    app.dependency_overrides[get_session_factory] = lambda: (
        async_sessionmaker(db_engine, class_=AsyncSession,
                           expire_on_commit=False)
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a donor."""
    user = User(
        email="donor@example.com",
        name="Test Donor",
        mobile="+919876543210",
        city="Pune",
        pan_no="ABCDE1234F",
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def pending_donation(db_session: AsyncSession, test_user: User
                           ) -> Donation:
    donation = Donation(
        user_id=test_user.id,
        amount=501.0,
        donation_type="construction",
        payment_status="pending",
        receipt_number="RCP-20260101-AAAAAA",
    )
    db_session.add(donation)
    await db_session.commit()
    return donation


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> Admin:
    admin = Admin(email=ADMIN_EMAIL, name="Trust Admin", is_active=True)
    db_session.add(admin)
    await db_session.commit()
    return admin


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return {"x-admin-email": ADMIN_EMAIL}


def webhook_event(kind: str, order_id: str, cf_payment_id=123456789,
                  amount: float = 501.0) -> dict:
    status = {
        "PAYMENT_SUCCESS_WEBHOOK": "SUCCESS",
        "PAYMENT_FAILED_WEBHOOK": "FAILED",
        "PAYMENT_USER_DROPPED_WEBHOOK": "USER_DROPPED",
    }.get(kind, "UNKNOWN")
    return {
        "type": kind,
        "event_time": "2026-01-01T10:00:00+05:30",
        "data": {
            "order": {"order_id": order_id, "order_amount": amount,
                      "order_currency": "INR"},
            "payment": {"cf_payment_id": cf_payment_id,
                        "payment_status": status,
                        "payment_amount": amount},
            "customer_details": {"customer_email": "donor@example.com"},
        },
    }


def signed(event: dict, secret: str = WEBHOOK_SECRET):
    body = json.dumps(event).encode()
    ts = str(int(time.time()))
    return body, {
        "content-type": "application/json",
        "x-webhook-timestamp": ts,
        "x-webhook-signature": sign_webhook(secret, ts, body),
    }


def hours_ago(h: float):
    return utcnow() - timedelta(hours=h)
