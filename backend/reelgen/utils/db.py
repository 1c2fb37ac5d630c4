from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from sqlalchemy import exc as sa_exc, make_url, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.reelgen.config import Settings, get_settings
from backend.reelgen.errors import StorageError


logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create an AsyncEngine for the configured DSN.

    Engine creation itself is lazy; no connection is made until first use.
    """
    url = make_url(settings.POSTGRES_DSN)
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if url.get_backend_name() != "sqlite":
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
    return create_async_engine(url, **kwargs)


async def _connect_with_retries(engine: AsyncEngine, *, attempts: int = 3) -> None:
    """Attempt to connect to the database with simple exponential backoff."""
    delay = 1.0
    max_delay = 10.0

    for idx in range(attempts):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return
        except sa_exc.SQLAlchemyError:
            logger.exception("db_connect_attempt_failed", extra={"attempt": idx + 1})
            if idx == attempts - 1:
                raise
            await asyncio.sleep(min(delay, max_delay))
            delay *= 2.0


class DatabaseHandle:
    """Process-scoped holder for the engine and session factory.

    The engine is created on first use and reused afterwards. The first
    ``connect()`` probes the database; a failed probe disposes the engine
    and leaves the holder empty so the next call starts from scratch.
    """

    def __init__(self, settings_provider: Callable[[], Settings] = get_settings) -> None:
        self._settings_provider = settings_provider
        self._lock = threading.Lock()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def has_engine(self) -> bool:
        return self._engine is not None

    def get_engine(self) -> AsyncEngine:
        """Return the engine, creating it on first use."""
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    engine = create_engine_from_settings(self._settings_provider())
                    self._session_factory = async_sessionmaker(
                        bind=engine,
                        expire_on_commit=False,
                        autoflush=False,
                    )
                    self._engine = engine
        return self._engine

    def get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Return the session factory bound to the engine."""
        self.get_engine()
        assert self._session_factory is not None
        return self._session_factory

    async def connect(self) -> None:
        """Probe the database once; failures are not remembered."""
        if self._connected:
            return
        settings = self._settings_provider()
        try:
            engine = self.get_engine()
            await _connect_with_retries(
                engine, attempts=max(1, settings.DB_CONNECT_ATTEMPTS)
            )
        except sa_exc.SQLAlchemyError as exc:
            await self.dispose()
            raise StorageError(
                "Database is unavailable.",
                detail={"error": exc.__class__.__name__},
            ) from exc
        self._connected = True
        logger.info("db_connected")

    async def dispose(self) -> None:
        """Close pooled connections and forget the engine."""
        with self._lock:
            engine = self._engine
            self._engine = None
            self._session_factory = None
            self._connected = False
        if engine is not None:
            await engine.dispose()


_DATABASE = DatabaseHandle()


def get_database() -> DatabaseHandle:
    """Return the process-wide database handle."""
    return _DATABASE


async def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI-style dependency returning a connected session factory."""
    database = get_database()
    await database.connect()
    return database.get_session_factory()
