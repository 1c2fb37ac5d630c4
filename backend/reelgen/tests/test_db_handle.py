from __future__ import annotations

import pytest

from backend.reelgen.config import Settings
from backend.reelgen.errors import StorageError
from backend.reelgen.utils.db import DatabaseHandle


class MutableSettings:
    def __init__(self, dsn: str) -> None:
        self.dsn = dsn

    def __call__(self) -> Settings:
        return Settings(POSTGRES_DSN=self.dsn, DB_CONNECT_ATTEMPTS=1)


@pytest.mark.asyncio
async def test_failed_connect_is_not_cached(tmp_path) -> None:
    provider = MutableSettings(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'db.sqlite'}")
    handle = DatabaseHandle(settings_provider=provider)

    with pytest.raises(StorageError):
        await handle.connect()

    assert not handle.is_connected
    assert not handle.has_engine

    provider.dsn = f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}"
    await handle.connect()

    assert handle.is_connected
    assert handle.has_engine
    await handle.dispose()


@pytest.mark.asyncio
async def test_engine_is_reused_across_calls(tmp_path) -> None:
    handle = DatabaseHandle(
        settings_provider=lambda: Settings(POSTGRES_DSN=f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}")
    )

    await handle.connect()
    first = handle.get_engine()
    await handle.connect()

    assert handle.get_engine() is first
    assert handle.get_session_factory() is handle.get_session_factory()
    await handle.dispose()
    assert not handle.has_engine
