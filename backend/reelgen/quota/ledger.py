"""Usage ledger - atomic per-user, per-day generation counters.

The counter increment doubles as a *reservation*: it is taken before the
provider is called and handed back with :meth:`UsageLedger.release` when
the provider call fails. Every operation runs in its own short transaction
so no row stays locked while the provider is being called.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.reelgen.errors import QuotaExceeded, StorageError
from backend.reelgen.models import GenerationKind, UsageRecord


logger = logging.getLogger(__name__)

_usage = UsageRecord.__table__

_COUNTER_COLUMNS = {
    GenerationKind.VIDEO: "video_count",
    GenerationKind.AUDIO: "audio_count",
}

_DIALECT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class UsageSnapshot:
    """Counters for one (user, day) right after a ledger operation."""
    user_id: uuid.UUID
    day: date
    video_count: int = 0
    audio_count: int = 0

    def count_for(self, kind: GenerationKind | str) -> int:
        return getattr(self, _COUNTER_COLUMNS[GenerationKind(kind)])


def _dialect_insert(session: AsyncSession):
    name = session.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[name]
    except KeyError:
        raise StorageError(
            "Usage ledger does not support this database.",
            detail={"dialect": name},
        )


class UsageLedger:
    """Repository for UsageRecord rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def try_consume(
        self,
        user_id: uuid.UUID,
        day: date,
        kind: GenerationKind | str,
        limit: Optional[int],
    ) -> UsageSnapshot:
        """Reserve one generation of ``kind`` for ``user_id`` on ``day``.

        The record is created if absent and the counter incremented only
        while it is below ``limit``, in a single upsert statement. ``None``
        means unlimited.

        Raises:
            QuotaExceeded: the counter already reached ``limit``
            StorageError: the database operation failed
        """
        kind = GenerationKind(kind)
        column = _COUNTER_COLUMNS[kind]
        counter = _usage.c[column]
        exceeded = False

        try:
            async with self._session_factory.begin() as session:
                insert = _dialect_insert(session)
                if limit is not None and limit <= 0:
                    await session.execute(
                        insert(_usage)
                        .values(user_id=user_id, day=day, video_count=0, audio_count=0)
                        .on_conflict_do_nothing(index_elements=[_usage.c.user_id, _usage.c.day])
                    )
                    snapshot = await self._read(session, user_id, day)
                    exceeded = True
                else:
                    values = {"user_id": user_id, "day": day, "video_count": 0, "audio_count": 0}
                    values[column] = 1
                    stmt = (
                        insert(_usage)
                        .values(**values)
                        .on_conflict_do_update(
                            index_elements=[_usage.c.user_id, _usage.c.day],
                            set_={column: counter + 1, "updated_at": func.now()},
                            where=(counter < limit) if limit is not None else None,
                        )
                        .returning(_usage.c.video_count, _usage.c.audio_count)
                    )
                    row = (await session.execute(stmt)).first()
                    if row is None:
                        snapshot = await self._read(session, user_id, day)
                        exceeded = True
                    else:
                        snapshot = UsageSnapshot(
                            user_id=user_id,
                            day=day,
                            video_count=row.video_count,
                            audio_count=row.audio_count,
                        )
        except SQLAlchemyError as exc:
            logger.exception(
                "usage_reserve_failed",
                extra={"user_id": str(user_id), "day": day.isoformat(), "kind": kind.value},
            )
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

        used = snapshot.count_for(kind)
        if exceeded:
            logger.info(
                "quota_exceeded",
                extra={"user_id": str(user_id), "kind": kind.value, "limit": limit, "used": used},
            )
            raise QuotaExceeded(limit=limit, used=used, kind=kind.value)

        logger.info(
            "quota_reserved",
            extra={"user_id": str(user_id), "kind": kind.value, "limit": limit, "used": used},
        )
        return snapshot

    async def release(
        self,
        user_id: uuid.UUID,
        day: date,
        kind: GenerationKind | str,
    ) -> UsageSnapshot:
        """Hand back one reservation of ``kind``; the counter never drops below 0."""
        kind = GenerationKind(kind)
        column = _COUNTER_COLUMNS[kind]
        counter = _usage.c[column]

        try:
            async with self._session_factory.begin() as session:
                stmt = (
                    update(_usage)
                    .where(
                        _usage.c.user_id == user_id,
                        _usage.c.day == day,
                        counter > 0,
                    )
                    .values({column: counter - 1, "updated_at": func.now()})
                    .returning(_usage.c.video_count, _usage.c.audio_count)
                )
                row = (await session.execute(stmt)).first()
                if row is None:
                    snapshot = await self._read(session, user_id, day)
                else:
                    snapshot = UsageSnapshot(
                        user_id=user_id,
                        day=day,
                        video_count=row.video_count,
                        audio_count=row.audio_count,
                    )
        except SQLAlchemyError as exc:
            logger.exception(
                "usage_release_failed",
                extra={"user_id": str(user_id), "day": day.isoformat(), "kind": kind.value},
            )
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

        logger.info(
            "quota_released",
            extra={"user_id": str(user_id), "kind": kind.value, "used": snapshot.count_for(kind)},
        )
        return snapshot

    async def commit(
        self,
        user_id: uuid.UUID,
        day: date,
        kind: GenerationKind | str,
    ) -> None:
        """Mark a reservation as final. The increment already is; this only logs."""
        logger.info(
            "quota_committed",
            extra={"user_id": str(user_id), "day": day.isoformat(), "kind": GenerationKind(kind).value},
        )

    async def snapshot(self, user_id: uuid.UUID, day: date) -> UsageSnapshot:
        """Return the counters for (user_id, day), zeros when no record exists."""
        try:
            async with self._session_factory() as session:
                return await self._read(session, user_id, day)
        except SQLAlchemyError as exc:
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

    async def count_records(self, user_id: uuid.UUID, day: date) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.count())
                    .select_from(_usage)
                    .where(_usage.c.user_id == user_id, _usage.c.day == day)
                )
                return int(result.scalar_one())
        except SQLAlchemyError as exc:
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

    @staticmethod
    async def _read(session: AsyncSession, user_id: uuid.UUID, day: date) -> UsageSnapshot:
        result = await session.execute(
            select(_usage.c.video_count, _usage.c.audio_count).where(
                _usage.c.user_id == user_id,
                _usage.c.day == day,
            )
        )
        row = result.first()
        if row is None:
            return UsageSnapshot(user_id=user_id, day=day)
        return UsageSnapshot(
            user_id=user_id,
            day=day,
            video_count=row.video_count,
            audio_count=row.audio_count,
        )
