"""
Shared pytest fixtures for testing the wallet service.

Uses an in-memory SQLite database for fast, isolated tests.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from wallet.database import Base, get_session
from wallet.dependencies import get_price_feed
from wallet.main import app
from wallet.services import portfolio as portfolio_service


# Use in-memory SQLite for tests (fast, isolated)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakePriceFeed:
    """Price feed with fixed prices, keyed by (symbol, category).

    Unknown symbols are "unavailable" (price 0), like a failing real feed.
    """

    def __init__(self, prices=None):
        self.prices = {}
        self.calls = []
        for (symbol, category), price in (prices or {}).items():
            self.set(symbol, category, price)

    def set(self, symbol: str, category: str, price) -> None:
        self.prices[(symbol.lower(), category.lower())] = Decimal(str(price))

    async def get_current_price(self, symbol: str, category: str) -> Decimal:
        self.calls.append((symbol, category))
        return self.prices.get((symbol.lower(), category.lower()), Decimal("0"))


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio backend for pytest-asyncio."""
    return "asyncio"


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine.

    Creates tables at the start, drops them at the end.
    Each test gets a fresh database.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine):
    """Provide a database session for a test.

    Rolls back the session after each test for isolation.
    """
    async_session = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def price_feed():
    """A price feed knowing a few crypto and stock prices."""
    return FakePriceFeed({
        ("btc", "cryptocurrency"): "30000",
        ("eth", "cryptocurrency"): "2000",
        ("aapl", "stock"): "150",
    })


@pytest_asyncio.fixture
async def test_client(test_engine, price_feed):
    """Provide a FastAPI test client with test database and fake price feed.

    Overrides the get_session and get_price_feed dependencies.
    """
    async_session = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_session():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_price_feed] = lambda: price_feed

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """Engine on a SQLite file, for tests that need several connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wallet.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


# --- Helper fixtures for creating test data ---

@pytest_asyncio.fixture
async def sample_portfolio(test_session):
    """Create an empty portfolio."""
    return await portfolio_service.create_portfolio(test_session, "Main", "Test portfolio")


@pytest.fixture
def portfolio_id(sample_portfolio):
    """ID of the sample portfolio.

    A failed operation rolls the session back and expires loaded objects,
    so tests hold on to plain ids rather than ORM instances.
    """
    return sample_portfolio.id
