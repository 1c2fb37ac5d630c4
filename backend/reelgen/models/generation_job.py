"""Generation job model - one provider-side generation request.

Jobs are created right after the provider accepted a prompt and move
through queued -> ready | failed. Terminal jobs are immutable.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class GenerationKind(str, Enum):
    """Kind of media a job produces."""
    VIDEO = "video"
    AUDIO = "audio"


class JobStatus(str, Enum):
    """Generation job status."""
    QUEUED = "queued"
    READY = "ready"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.READY.value, JobStatus.FAILED.value})


class GenerationJob(Base):
    """Generation job entity.

    Attributes:
        id: Internal job identifier
        user_id: User who submitted the prompt
        kind: video or audio
        prompt: Prompt text as submitted
        model_used: Model name requested by the user
        duration_seconds: Requested media length
        resolution_or_format: Resolution (video) or container format (audio)
        provider_job_id: Identifier assigned by the provider
        media_url: Location of the finished media, set only when ready
        status: queued, ready or failed
        last_error: Error kind recorded when the job failed
    """
    __tablename__ = "generation_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    prompt: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
    )
    model_used: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    duration_seconds: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    resolution_or_format: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    provider_job_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    media_url: Mapped[Optional[str]] = mapped_column(
        Text(),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.QUEUED.value,
    )
    last_error: Mapped[Optional[str]] = mapped_column(
        Text(),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<GenerationJob(id={self.id}, kind={self.kind}, status={self.status})>"

    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in TERMINAL_STATUSES


# Indexes
Index(
    "generation_jobs_user_created_at_idx",
    GenerationJob.user_id,
    GenerationJob.created_at.desc(),
)
Index(
    "generation_jobs_status_created_at_idx",
    GenerationJob.status,
    GenerationJob.created_at.desc(),
)
