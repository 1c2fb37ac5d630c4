"""Read-only access to externally owned user records."""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.reelgen.errors import StorageError
from backend.reelgen.models import User


logger = logging.getLogger(__name__)


class UserDirectory:
    """Looks up the plan-bearing user record for an authenticated identity."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        try:
            async with self._session_factory() as session:
                return await session.get(User, user_id)
        except SQLAlchemyError as exc:
            logger.exception("user_lookup_failed", extra={"user_id": str(user_id)})
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc
