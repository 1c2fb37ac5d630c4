"""Status refresh - poll the provider for queued jobs and apply outcomes.

Each queued job is looked up with ``fetch_status`` and moved to ``ready``
or ``failed`` through :meth:`JobStore.update_status`. Transient provider
failures (unavailable, malformed_response) leave the job queued for the
next cycle; a rejected lookup marks the job failed.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from backend.reelgen.errors import (
    InvalidTransition,
    JobNotFound,
    ProviderError,
    ProviderErrorKind,
)
from backend.reelgen.jobs import JobStore
from backend.reelgen.models import GenerationJob, GenerationKind, JobStatus
from backend.reelgen.providers import ProviderGateway
from backend.reelgen.telemetry.metrics import (
    observe_job_result,
    set_pending_jobs,
    set_status_refresh_success,
)


logger = logging.getLogger(__name__)

RESULT_READY = "ready"
RESULT_FAILED = "failed"
RESULT_UNCHANGED = "unchanged"
RESULT_ERROR = "error"


@dataclass
class RefreshReport:
    checked: int = 0
    ready: int = 0
    failed: int = 0
    unchanged: int = 0
    errors: list[str] = field(default_factory=list)

    def record(self, result: str) -> None:
        self.checked += 1
        if result == RESULT_READY:
            self.ready += 1
        elif result == RESULT_FAILED:
            self.failed += 1
        elif result == RESULT_UNCHANGED:
            self.unchanged += 1


class StatusRefresher:
    def __init__(self, *, jobs: JobStore, gateway: ProviderGateway) -> None:
        self._jobs = jobs
        self._gateway = gateway

    async def run_once(self, limit: int = 50, *, dry_run: bool = False) -> RefreshReport:
        """Refresh up to ``limit`` queued jobs, oldest first.

        With ``dry_run`` the provider is still asked for each job but no
        status is written.
        """
        pending = await self._jobs.list_pending(limit=limit)
        set_pending_jobs(len(pending))
        logger.info(
            "status_refresh_started",
            extra={"pending": len(pending), "limit": limit, "dry_run": dry_run},
        )

        report = RefreshReport()
        for job in pending:
            result = await self._refresh_one(job, dry_run=dry_run)
            report.record(result)
            if result == RESULT_ERROR:
                report.errors.append(str(job.id))

        if not dry_run:
            set_status_refresh_success()
        logger.info(
            "status_refresh_completed",
            extra={
                "checked": report.checked,
                "ready": report.ready,
                "failed": report.failed,
                "unchanged": report.unchanged,
                "errors": len(report.errors),
            },
        )
        return report

    async def _refresh_one(self, job: GenerationJob, *, dry_run: bool) -> str:
        job_type = f"status_refresh:{job.kind}"
        start = time.perf_counter()
        error_type = None

        try:
            remote = await self._gateway.fetch_status(
                GenerationKind(job.kind), job.provider_job_id
            )
        except ProviderError as exc:
            if exc.error_kind is not ProviderErrorKind.REJECTED:
                observe_job_result(
                    job_type=job_type,
                    result=RESULT_ERROR,
                    duration_seconds=time.perf_counter() - start,
                    error_type=exc.error_kind.value,
                )
                logger.warning(
                    "status_refresh_provider_failed",
                    extra={
                        "job_id": str(job.id),
                        "provider_job_id": job.provider_job_id,
                        "error_kind": exc.error_kind.value,
                        "provider_status": exc.provider_status,
                    },
                )
                return RESULT_ERROR
            new_status, media_url, error_type = JobStatus.FAILED, None, exc.error_kind.value
        else:
            if remote.status is JobStatus.QUEUED:
                observe_job_result(
                    job_type=job_type,
                    result=RESULT_UNCHANGED,
                    duration_seconds=time.perf_counter() - start,
                )
                return RESULT_UNCHANGED
            new_status = remote.status
            media_url = remote.media_url if remote.status is JobStatus.READY else None
            if remote.status is JobStatus.FAILED:
                error_type = "provider_failed"

        result = RESULT_READY if new_status is JobStatus.READY else RESULT_FAILED
        if dry_run:
            logger.info(
                "status_refresh_dry_run",
                extra={"job_id": str(job.id), "to_status": new_status.value},
            )
            return result

        try:
            await self._jobs.update_status(job.id, new_status, media_url, error=error_type)
        except (InvalidTransition, JobNotFound) as exc:
            # Someone else finished the job first.
            logger.info(
                "status_refresh_skipped",
                extra={"job_id": str(job.id), "reason": exc.kind},
            )
            result = RESULT_UNCHANGED

        observe_job_result(
            job_type=job_type,
            result=result,
            duration_seconds=time.perf_counter() - start,
            error_type=error_type,
        )
        return result


async def create_status_refresher() -> StatusRefresher:
    """Build a refresher on the process-wide database handle and gateway."""
    from backend.reelgen.providers import get_provider_gateway
    from backend.reelgen.utils.db import get_session_factory

    session_factory = await get_session_factory()
    return StatusRefresher(jobs=JobStore(session_factory), gateway=get_provider_gateway())
