from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..auth import UserPrincipal, get_current_user
from ..deps import get_job_store
from ..errors import JobNotFound
from ..jobs import JobStore
from ..models import GenerationJob


router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
)


class JobView(BaseModel):
    """Client projection of a generation job."""
    id: uuid.UUID = Field(alias="jobId")
    user_id: uuid.UUID = Field(alias="userId")
    kind: str
    prompt: str
    model_used: str = Field(alias="modelUsed")
    duration_seconds: float = Field(alias="durationSeconds")
    resolution_or_format: str = Field(alias="resolutionOrFormat")
    provider_job_id: str = Field(alias="providerJobId")
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    status: str
    error: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobView":
        return cls(
            id=job.id,
            user_id=job.user_id,
            kind=job.kind,
            prompt=job.prompt,
            model_used=job.model_used,
            duration_seconds=job.duration_seconds,
            resolution_or_format=job.resolution_or_format,
            provider_job_id=job.provider_job_id,
            media_url=job.media_url,
            status=job.status,
            error=job.last_error,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobPage(BaseModel):
    items: list[JobView]
    limit: int
    offset: int


@router.get(
    "/{job_id}",
    response_model=JobView,
    summary="Get a generation job",
)
async def get_job(
    job_id: uuid.UUID,
    user: UserPrincipal = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
) -> JobView:
    job = await store.get(job_id)
    # Other users' jobs are reported as missing.
    if job is None or job.user_id != user.id:
        raise JobNotFound()
    return JobView.from_job(job)


@router.get(
    "",
    response_model=JobPage,
    summary="List the caller's generation jobs, newest first",
)
async def list_jobs(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: UserPrincipal = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
) -> JobPage:
    jobs = await store.list_by_user(user.id, limit=limit, offset=offset)
    return JobPage(
        items=[JobView.from_job(job) for job in jobs],
        limit=limit,
        offset=offset,
    )
