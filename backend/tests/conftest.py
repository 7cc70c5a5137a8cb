"""
Test fixtures for the stock engine.

Provides:
- In-memory SQLite database per test (aiosqlite + StaticPool)
- In-memory Redis stand-in for the sequence allocator
- Recording event channel and a controllable clock
- Async HTTP client with dependency overrides
- Product factories
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

# DB settings required by Settings validation (tests use SQLite in-memory, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("NOTIFICATION_WEBHOOK_URL", "")

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from backend.app.core.base import Base
from backend.app.core.constants import PRODUCT_AVAILABLE
from backend.app.core.events import Event, EventChannel
from backend.app.main import app
from backend.app.api.deps import get_clock, get_event_channel, get_sequence_allocator, get_session
from backend.app.models.hold import Hold
from backend.app.models.product import Product
from backend.app.models.reservation import Reservation
from backend.app.services.sequence import SequenceAllocator


# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

T0 = datetime(2026, 3, 1, 12, 0, 0)


class MockRedis:
    """In-memory Redis for testing without an actual server."""

    def __init__(self):
        self._store = {}

    async def incr(self, key: str) -> int:
        self._store[key] = self._store.get(key, 0) + 1
        return self._store[key]

    async def ping(self) -> bool:
        return True


class UnreachableRedis:
    async def incr(self, key: str) -> int:
        raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        raise RedisConnectionError("Connection refused")


class RecordingChannel(EventChannel):
    """Event channel that keeps every published event, then delivers it."""

    def __init__(self):
        super().__init__()
        self.published: List[Event] = []

    async def publish(self, event: Event) -> int:
        self.published.append(event)
        return await super().publish(event)

    def names(self) -> List[str]:
        return [e.name for e in self.published]

    def of(self, name: str) -> List[Event]:
        return [e for e in self.published if e.name == name]

    def clear(self):
        self.published.clear()


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
async def test_engine():
    """Fresh in-memory database with all tables for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis() -> MockRedis:
    return MockRedis()


@pytest.fixture
def allocator(mock_redis: MockRedis) -> SequenceAllocator:
    return SequenceAllocator(mock_redis)


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
async def client(
    session_factory: async_sessionmaker,
    allocator: SequenceAllocator,
    channel: RecordingChannel,
    clock: FrozenClock,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database, Redis, event channel and clock dependencies.
    """
    async def override_get_session():
        # Fresh session per request, separate from the one fixtures use
        async with session_factory() as session:
            yield session

    async def override_get_sequence_allocator():
        yield allocator

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_sequence_allocator] = override_get_sequence_allocator
    app.dependency_overrides[get_event_channel] = lambda: channel
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Test Data Factories ---

@pytest.fixture
def make_product(test_session: AsyncSession):
    async def _make(
        quantity: int = 10,
        name: str = "Test Product",
        price: str = "25.00",
        status: str = PRODUCT_AVAILABLE,
        timer_enabled: bool = True,
        timer_duration: int = 10,
        stream_key: Optional[str] = "live-1",
    ) -> Product:
        product = Product(
            name=name,
            price=Decimal(price),
            shipping_fee=Decimal("0"),
            quantity=quantity,
            status=status,
            timer_enabled=timer_enabled,
            timer_duration=timer_duration,
            stream_key=stream_key,
            created_at=T0,
        )
        test_session.add(product)
        await test_session.commit()
        await test_session.refresh(product)
        return product
    return _make


@pytest.fixture
async def test_product(make_product) -> Product:
    """Catalog quantity 10, 10 minute hold timer."""
    return await make_product()


# --- Fresh reads (bypass the identity map of the fixture session) ---

@pytest.fixture
def restock(session_factory):
    """Set a product's catalog quantity from outside the session under test."""
    async def _restock(product_id: int, quantity: int):
        async with session_factory() as session:
            await session.execute(update(Product).where(Product.id == product_id).values(quantity=quantity))
            await session.commit()
    return _restock


@pytest.fixture
def fetch_holds(session_factory):
    async def _fetch(user_id: Optional[str] = None, product_id: Optional[int] = None) -> List[Hold]:
        async with session_factory() as session:
            query = select(Hold).order_by(Hold.id)
            if user_id is not None:
                query = query.where(Hold.user_id == user_id)
            if product_id is not None:
                query = query.where(Hold.product_id == product_id)
            return list((await session.execute(query)).scalars().all())
    return _fetch


@pytest.fixture
def fetch_reservations(session_factory):
    async def _fetch(product_id: Optional[int] = None) -> List[Reservation]:
        async with session_factory() as session:
            query = select(Reservation).order_by(Reservation.id)
            if product_id is not None:
                query = query.where(Reservation.product_id == product_id)
            return list((await session.execute(query)).scalars().all())
    return _fetch
