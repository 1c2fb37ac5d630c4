"""In-process provider used for local development and tests."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from backend.reelgen.errors import ProviderError
from backend.reelgen.models import GenerationKind, JobStatus

from .base import GenerationParams, ProviderGateway, RemoteJob


class FakeProviderGateway(ProviderGateway):
    """Accepts every prompt and completes jobs on the first status poll.

    Set ``fail_with`` to make the next submissions raise, or
    ``submit_status`` to control the status returned at submission.
    """

    name = "fake"

    def __init__(
        self,
        *,
        fail_with: Optional[BaseException] = None,
        submit_status: JobStatus = JobStatus.QUEUED,
        auto_complete: bool = True,
        media_base_url: str = "https://media.invalid",
    ) -> None:
        self.fail_with = fail_with
        self.submit_status = submit_status
        self.auto_complete = auto_complete
        self.media_base_url = media_base_url.rstrip("/")
        self.submissions: list[tuple[GenerationKind, str, GenerationParams]] = []
        self.status_errors: dict[str, ProviderError] = {}
        self._jobs: dict[str, RemoteJob] = {}

    def _media_url(self, kind: GenerationKind, provider_job_id: str) -> str:
        extension = "mp4" if kind is GenerationKind.VIDEO else "mp3"
        return f"{self.media_base_url}/{provider_job_id}.{extension}"

    async def submit(
        self,
        kind: GenerationKind,
        prompt: str,
        params: GenerationParams,
    ) -> RemoteJob:
        kind = GenerationKind(kind)
        self.submissions.append((kind, prompt, params))
        if self.fail_with is not None:
            raise self.fail_with

        provider_job_id = f"fake-{uuid.uuid4().hex[:12]}"
        media_url = None
        if self.submit_status is JobStatus.READY:
            media_url = self._media_url(kind, provider_job_id)
        job = RemoteJob(
            provider_job_id=provider_job_id,
            status=self.submit_status,
            media_url=media_url,
            created_at=datetime.now(timezone.utc),
            raw_status=self.submit_status.value,
        )
        self._jobs[provider_job_id] = job
        return job

    def set_status(
        self,
        provider_job_id: str,
        status: JobStatus,
        media_url: Optional[str] = None,
    ) -> None:
        self._jobs[provider_job_id] = RemoteJob(
            provider_job_id=provider_job_id,
            status=status,
            media_url=media_url,
            raw_status=status.value,
        )

    async def fetch_status(self, kind: GenerationKind, provider_job_id: str) -> RemoteJob:
        kind = GenerationKind(kind)
        if provider_job_id in self.status_errors:
            raise self.status_errors[provider_job_id]
        job = self._jobs.get(provider_job_id)
        if job is None:
            job = RemoteJob(provider_job_id=provider_job_id, status=JobStatus.QUEUED)
        if job.status is JobStatus.QUEUED and self.auto_complete:
            job = RemoteJob(
                provider_job_id=provider_job_id,
                status=JobStatus.READY,
                media_url=self._media_url(kind, provider_job_id),
                created_at=job.created_at,
                raw_status="completed",
            )
            self._jobs[provider_job_id] = job
        return job
