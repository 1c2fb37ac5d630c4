"""Shared fixtures: a throwaway SQLite database and seeded users.

Environment variables must be set before any backend.reelgen module reads
settings. ``setdefault`` keeps real values (CI) intact.
"""
from __future__ import annotations

import os
import uuid
from datetime import datetime
from typing import Optional

os.environ.setdefault("POSTGRES_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("PROVIDER_BACKEND", "fake")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.reelgen.models import Base, User
from backend.reelgen.providers import FakeProviderGateway

pytest_plugins = ("pytest_asyncio",)



@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reelgen.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def make_user(session_factory):
    """Insert a user and return it."""

    async def _make_user(
        plan: str = "free",
        plan_expires_at: Optional[datetime] = None,
    ) -> User:
        user_id = uuid.uuid4()
        user = User(
            id=user_id,
            email=f"{user_id.hex[:8]}@example.com",
            plan=plan,
            plan_expires_at=plan_expires_at,
        )
        async with session_factory.begin() as session:
            session.add(user)
        return user

    return _make_user


@pytest.fixture
def gateway():
    return FakeProviderGateway()
