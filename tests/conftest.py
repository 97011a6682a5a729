"""
Pytest configuration and shared test fixtures.

Service tests run against an in-memory SQLite database built from the ORM
metadata. Stripe is replaced by an AsyncMock double returning
SimpleNamespace objects shaped like Stripe resources, and a frozen clock
drives numbering and the delivery window.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("APP_STRIPE_SECRET_KEY", "sk_test_dummy")

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from evdealer.core.config import get_settings
from evdealer.database.base import Base
from evdealer.database.models import User, UserRole, Vehicle
from evdealer.services.payments.stripe_client import StripeClient
from factories import FrozenClock, create_user, create_vehicle, make_intent


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def customer(db_session) -> User:
    return await create_user(db_session, UserRole.CUSTOMER, full_name="Casey Customer")


@pytest.fixture
async def other_customer(db_session) -> User:
    return await create_user(db_session, UserRole.CUSTOMER, full_name="Olive Other")


@pytest.fixture
async def staff(db_session) -> User:
    return await create_user(db_session, UserRole.DEALER_STAFF, full_name="Sam Staff")


@pytest.fixture
async def manager(db_session) -> User:
    return await create_user(db_session, UserRole.DEALER_MANAGER, full_name="Morgan Manager")


@pytest.fixture
async def vehicle(db_session) -> Vehicle:
    return await create_vehicle(db_session, stock=3)


@pytest.fixture
def stripe_client() -> MagicMock:
    """Stripe client double; tests set return values per call."""
    client = MagicMock(spec=StripeClient)
    client.create_checkout_session = AsyncMock(
        return_value=SimpleNamespace(
            id="cs_test_123",
            url="https://checkout.stripe.com/c/pay/cs_test_123",
            metadata={},
        )
    )
    client.retrieve_checkout_session = AsyncMock()
    client.retrieve_payment_intent = AsyncMock(return_value=make_intent())
    return client


@pytest.fixture
async def async_client(
    session_factory, clock, stripe_client
) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client over the ASGI app with the database, clock and Stripe
    dependencies pointed at the test doubles.
    """
    from evdealer.core.clock import get_clock
    from evdealer.database.connection import get_db
    from evdealer.main import app
    from evdealer.services.payments.stripe_client import get_stripe_client

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_stripe_client] = lambda: stripe_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
