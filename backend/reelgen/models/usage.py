"""Usage model - per-user, per-day generation counters.

One row per (user_id, day). Rows are created lazily by the usage ledger
on the first generation attempt of a UTC day and are never deleted here.
"""
from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class UsageRecord(Base, TimestampMixin):
    """Daily usage counters for one user.

    Attributes:
        user_id: Owner of the counters
        day: UTC calendar date the counters apply to
        video_count: Video generations reserved today
        audio_count: Audio generations reserved today
    """
    __tablename__ = "usage_records"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    day: Mapped[date] = mapped_column(
        Date(),
        primary_key=True,
    )
    video_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    audio_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    __table_args__ = (
        CheckConstraint("video_count >= 0", name="usage_records_video_count_non_negative"),
        CheckConstraint("audio_count >= 0", name="usage_records_audio_count_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(user_id={self.user_id}, day={self.day}, "
            f"video={self.video_count}, audio={self.audio_count})>"
        )
