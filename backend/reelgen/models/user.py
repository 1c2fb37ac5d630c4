"""User model - read-only view of the externally owned account record.

Only the identity and the subscription tier are consumed here; billing
and credential flows live elsewhere.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """Application user record.

    Attributes:
        id: UUID from Supabase auth.uid()
        email: User's email address
        plan: Subscription tier (free, pro, pro-plus)
        plan_expires_at: When a paid tier lapses (NULL for never)
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
        unique=True,
    )
    plan: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="free",
        server_default="free",
    )
    plan_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, plan={self.plan})>"
