"""
Shared fixtures: an in-memory SQLite database per test, a session on it,
and an httpx client talking to the app with get_db pointed at that database.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rentshare import models  # noqa: F401
from rentshare.core.permissions import DISCOUNTS_MANAGE
from rentshare.core.security import create_access_token
from rentshare.database import Base, get_db
from rentshare.main import app
from rentshare.schemas.discount import DiscountCreate


NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user_id: uuid.UUID, permissions=None) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, permissions)}"}


def admin_headers(user_id: uuid.UUID) -> dict:
    return auth_headers(user_id, [DISCOUNTS_MANAGE])


def make_create(**overrides) -> DiscountCreate:
    """A public 10% code valid around NOW unless overridden."""
    data = {
        "kind": "PERCENT",
        "value": Decimal("10"),
        "start_at": NOW - timedelta(days=1),
        "end_at": NOW + timedelta(days=30),
        "code_prefix": "RENT",
    }
    data.update(overrides)
    return DiscountCreate(**data)
