"""Job store - persistence and state transitions for generation jobs.

State machine::

    queued -> ready    (media_url required)
    queued -> failed
    ready, failed      terminal, no further transitions

Transitions are applied with a conditional UPDATE on ``status = 'queued'``
so two concurrent refreshers cannot both move the same job.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.reelgen.errors import InvalidTransition, JobNotFound, StorageError
from backend.reelgen.models import GenerationJob, JobStatus
from backend.reelgen.telemetry.metrics import observe_job_transition


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_media_url(status: JobStatus, media_url: Optional[str], current: str) -> None:
    if status is JobStatus.READY and not media_url:
        raise InvalidTransition(current, status.value, reason="ready_requires_media_url")
    if status is not JobStatus.READY and media_url:
        raise InvalidTransition(current, status.value, reason="media_url_requires_ready")


class JobStore:
    """Repository for GenerationJob rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, job: GenerationJob) -> GenerationJob:
        """Persist a new job and return it with its identifier assigned."""
        status = JobStatus(job.status or JobStatus.QUEUED.value)
        _check_media_url(status, job.media_url, current="new")
        now = _utcnow()
        if job.id is None:
            job.id = uuid.uuid4()
        job.status = status.value
        if job.created_at is None:
            job.created_at = now
        if job.updated_at is None:
            job.updated_at = job.created_at

        try:
            async with self._session_factory.begin() as session:
                session.add(job)
        except SQLAlchemyError as exc:
            logger.exception("job_create_failed", extra={"provider_job_id": job.provider_job_id})
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

        logger.info(
            "job_created",
            extra={"job_id": str(job.id), "kind": job.kind, "status": job.status},
        )
        return job

    async def get(self, job_id: uuid.UUID) -> Optional[GenerationJob]:
        try:
            async with self._session_factory() as session:
                return await session.get(GenerationJob, job_id)
        except SQLAlchemyError as exc:
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

    async def list_by_user(
        self,
        user_id: uuid.UUID,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> Sequence[GenerationJob]:
        """Return a page of the user's jobs, newest first."""
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))
        stmt = (
            select(GenerationJob)
            .where(GenerationJob.user_id == user_id)
            .order_by(GenerationJob.created_at.desc(), GenerationJob.id.desc())
            .limit(limit)
            .offset(offset)
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

    async def list_pending(self, *, limit: int = 50) -> Sequence[GenerationJob]:
        """Return queued jobs, oldest first."""
        stmt = (
            select(GenerationJob)
            .where(GenerationJob.status == JobStatus.QUEUED.value)
            .order_by(GenerationJob.created_at.asc())
            .limit(max(1, int(limit)))
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

    async def update_status(
        self,
        job_id: uuid.UUID,
        new_status: JobStatus | str,
        media_url: Optional[str] = None,
        *,
        error: Optional[str] = None,
    ) -> GenerationJob:
        """Move a job to ``new_status``.

        Re-applying the current status is a no-op. Any other change to a
        terminal job raises InvalidTransition, as does ``ready`` without a
        media URL.

        Raises:
            JobNotFound: no job with ``job_id``
            InvalidTransition: the change is not allowed
        """
        new_status = JobStatus(new_status)

        try:
            async with self._session_factory.begin() as session:
                current = await session.get(GenerationJob, job_id)
                if current is None:
                    raise JobNotFound(detail={"job_id": str(job_id)})
                previous = current.status
                _check_media_url(new_status, media_url, current=previous)

                if new_status is JobStatus.QUEUED or current.is_terminal():
                    if previous == new_status.value:
                        return current
                    raise InvalidTransition(previous, new_status.value, reason="terminal")

                stmt = (
                    update(GenerationJob)
                    .where(
                        GenerationJob.id == job_id,
                        GenerationJob.status == JobStatus.QUEUED.value,
                    )
                    .values(
                        status=new_status.value,
                        media_url=media_url if new_status is JobStatus.READY else None,
                        last_error=error if new_status is JobStatus.FAILED else None,
                        updated_at=_utcnow(),
                    )
                    .returning(GenerationJob)
                    .execution_options(populate_existing=True)
                )
                updated = (await session.execute(stmt)).scalars().first()
                if updated is None:
                    # Another writer moved the job between the read and the update.
                    await session.refresh(current)
                    if current.status == new_status.value:
                        return current
                    raise InvalidTransition(current.status, new_status.value, reason="terminal")
        except SQLAlchemyError as exc:
            logger.exception("job_update_failed", extra={"job_id": str(job_id)})
            raise StorageError(detail={"error": exc.__class__.__name__}) from exc

        observe_job_transition(previous, updated.status)
        logger.info(
            "job_status_updated",
            extra={"job_id": str(job_id), "from_status": previous, "to_status": updated.status},
        )
        return updated
