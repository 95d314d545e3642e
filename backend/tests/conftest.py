"""
Pytest configuration and shared test fixtures.

Every test gets its own SQLite database file (aiosqlite) with the schema
created from the ORM metadata, plus seeded users and a listed bicycle.
Environment variables are set before the application is imported so the
cached settings see the test configuration.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///./ridecycle_test.db")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("APP_SWEEPER_ENABLED", "false")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ridecycle.core.config import Settings, get_settings
from ridecycle.database.base import utcnow
from ridecycle.database.connection import build_session_factory, create_engine
from ridecycle.database.models import Base
from ridecycle.database.models.bicycle import Bicycle, BicycleStatus
from ridecycle.database.models.user import User, UserRole
from ridecycle.services.payments.storage import ProofStorage

get_settings.cache_clear()


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


# ============================================================================
# Settings and storage
# ============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """
    Settings for a single test with proof files under ``tmp_path``.

    Returns:
        Settings: Test settings instance
    """
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ridecycle.db'}",
        proof_storage_dir=str(tmp_path / "proofs"),
        proof_max_bytes=1024 * 1024,
        rate_limit_enabled=False,
        sweeper_enabled=False,
    )


@pytest.fixture
def proof_storage(settings: Settings) -> ProofStorage:
    return ProofStorage(settings.proof_storage_dir)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(utcnow().replace(microsecond=0))


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a fresh database file with all tables.

    Yields:
        AsyncEngine: Engine bound to the per-test database
    """
    test_engine = create_engine(settings.database_url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def serialized_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Sessions whose transactions take the SQLite write lock at BEGIN.

    SQLite ignores FOR UPDATE, so tests racing two transactions use this to
    get the blocking a row lock gives on PostgreSQL.
    """
    return build_session_factory(engine.execution_options(sqlite_begin="IMMEDIATE"))


@pytest.fixture
def fetch(session_factory: async_sessionmaker[AsyncSession]) -> Callable:
    """
    Load a fresh copy of a row in its own short-lived session.

    Example:
        order = await fetch(Order, order_id)
    """

    async def _fetch(model, ident):
        async with session_factory() as session:
            return await session.get(model, ident)

    return _fetch


async def _persist(session_factory: async_sessionmaker[AsyncSession], instance):
    async with session_factory() as session:
        session.add(instance)
        await session.commit()
    return instance


# ============================================================================
# Seed data
# ============================================================================


@pytest_asyncio.fixture
async def seller(session_factory) -> User:
    """Seller with a complete payout bank account."""
    return await _persist(
        session_factory,
        User(
            email="seller@example.com",
            name="Seller",
            role=UserRole.USER,
            bank_account_name="王小明",
            bank_account_number="00123456789",
            bank_code="808",
            bank_branch="信義分行",
        ),
    )


@pytest_asyncio.fixture
async def buyer(session_factory) -> User:
    return await _persist(
        session_factory,
        User(email="buyer@example.com", name="Buyer", role=UserRole.USER),
    )


@pytest_asyncio.fixture
async def other_buyer(session_factory) -> User:
    return await _persist(
        session_factory,
        User(email="other@example.com", name="Other Buyer", role=UserRole.USER),
    )


@pytest_asyncio.fixture
async def admin(session_factory) -> User:
    return await _persist(
        session_factory,
        User(email="admin@example.com", name="Admin", role=UserRole.ADMIN),
    )


@pytest.fixture
def make_bicycle(session_factory, seller) -> Callable:
    """
    Factory persisting an available bicycle owned by ``seller``.

    Example:
        bike = await make_bicycle(price=Decimal("8000"))
    """

    async def _make(**overrides) -> Bicycle:
        values = {
            "seller_id": seller.id,
            "title": "Giant TCR Advanced 2",
            "price": Decimal("15000"),
            "condition": "like_new",
            "brand": "Giant",
            "status": BicycleStatus.AVAILABLE,
        }
        values.update(overrides)
        return await _persist(session_factory, Bicycle(**values))

    return _make


@pytest_asyncio.fixture
async def bicycle(make_bicycle) -> Bicycle:
    return await make_bicycle()
