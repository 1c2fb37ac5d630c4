from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..auth import UserPrincipal, get_current_user
from ..deps import get_orchestrator
from ..generation import GenerationOrchestrator, GenerationRequest
from ..models import JobStatus


_logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["generation"],
)

_MESSAGES = {
    JobStatus.QUEUED.value: "{kind} generation started successfully. Check back for updates.",
    JobStatus.READY.value: "{kind} generation finished.",
    JobStatus.FAILED.value: "{kind} generation was accepted but the provider reported a failure.",
}


class GenerationBody(BaseModel):
    """Generation request payload.

    Every field is optional at the schema level so that missing values are
    reported as invalid requests by the orchestrator.
    """
    prompt: Optional[str] = None
    model: Optional[str] = None
    duration_seconds: Optional[float] = Field(default=None, alias="durationSeconds")
    resolution_or_format: Optional[str] = Field(default=None, alias="resolutionOrFormat")

    class Config:
        populate_by_name = True


class GenerationAccepted(BaseModel):
    job_id: uuid.UUID = Field(alias="jobId")
    provider_job_id: str = Field(alias="providerJobId")
    status: str
    message: str

    class Config:
        populate_by_name = True


@router.post(
    "/generate/{kind}",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=GenerationAccepted,
    summary="Submit a generation request",
    description="Validates the prompt against the caller's plan, reserves daily quota and dispatches it to the provider.",
)
async def submit_generation(
    kind: str,
    body: GenerationBody,
    user: UserPrincipal = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationAccepted:
    job = await orchestrator.request(
        user.id,
        kind,
        body.prompt,
        GenerationRequest(
            model=body.model,
            duration_seconds=body.duration_seconds,
            resolution_or_format=body.resolution_or_format,
        ),
    )
    message = _MESSAGES[job.status].format(kind=job.kind.capitalize())
    return GenerationAccepted(
        job_id=job.id,
        provider_job_id=job.provider_job_id,
        status=job.status,
        message=message,
    )
