"""
Pytest configuration and shared test fixtures.

This module provides the in-memory database, a recording event emitter, and
an HTTP client wired to the FastAPI application with its database session
and event emitter dependencies overridden.
"""

import os

# Settings are cached on first use; test values must be in place before any
# application module is imported.
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_PIN_VERIFY_RATE_LIMIT", "5/minute")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from orders_service.api.deps import get_event_emitter, limiter
from orders_service.database.base import Base
from orders_service.database.connection import get_db
from orders_service.database.models import Order, OrderItem, OrderReceipt  # noqa: F401


class RecordingEmitter:
    """Event emitter that keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> list[dict[str, Any]]:
        return [payload for event, payload in self.events if event == name]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Create an in-memory SQLite engine with the order schema.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
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
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session bound to the test engine."""
    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def order_payload() -> dict[str, Any]:
    """Order creation arguments: two items worth 25.00 with delivery fee."""
    return {
        "customer_id": "cust-1",
        "restaurant_id": "rest-1",
        "restaurant_name": "Trattoria Roma",
        "items": [
            {"dish_id": "dish-1", "name": "Margherita", "quantity": 2, "price": Decimal("10")},
            {"dish_id": "dish-2", "name": "Tiramisu", "quantity": 1, "price": Decimal("5")},
        ],
        "delivery_fee": Decimal("3"),
        "use_loyalty_points": False,
    }


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Reset rate limiter storage between tests."""
    limiter.reset()
    yield


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    emitter: RecordingEmitter,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an asynchronous test client for the FastAPI application.

    The application lifespan is not run; the database session and event
    emitter are provided through dependency overrides.
    """
    from orders_service.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_emitter] = lambda: emitter

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
