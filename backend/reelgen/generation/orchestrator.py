"""Generation orchestrator - validate, reserve quota, dispatch, persist.

Flow for one request::

    validate prompt/model -> load user -> plan limits
        -> ledger.try_consume (reservation)
        -> gateway.submit      (no database lock held)
        -> jobs.create         -> ledger.commit

A failed provider call always hands the reservation back before the error
is raised, so users are never charged for generations that never started.
"""
from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

from backend.reelgen.accounts import UserDirectory
from backend.reelgen.errors import (
    GenerationFailed,
    InvalidRequest,
    ProviderError,
    QuotaExceeded,
    ReelgenError,
    StorageError,
    Unauthenticated,
)
from backend.reelgen.jobs import JobStore
from backend.reelgen.models import GenerationJob, GenerationKind, JobStatus
from backend.reelgen.providers import GenerationParams, ProviderGateway
from backend.reelgen.quota import (
    Limits,
    Plan,
    UsageLedger,
    UsageSnapshot,
    count_words,
    effective_plan,
    limits_for_plan,
)
from backend.reelgen.telemetry.metrics import (
    observe_generation_request,
    observe_quota_rejection,
    observe_quota_release,
)


logger = logging.getLogger(__name__)

# (duration seconds, resolution or format) used when the caller sends none.
MEDIA_DEFAULTS = {
    GenerationKind.VIDEO: (10.0, "720p"),
    GenerationKind.AUDIO: (30.0, "mp3"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GenerationRequest:
    """Caller-supplied generation parameters."""
    model: Optional[str]
    duration_seconds: Optional[float] = None
    resolution_or_format: Optional[str] = None


@dataclass(frozen=True)
class UsageSummary:
    plan: Plan
    limits: Limits
    usage: UsageSnapshot


class GenerationOrchestrator:
    def __init__(
        self,
        *,
        users: UserDirectory,
        ledger: UsageLedger,
        gateway: ProviderGateway,
        jobs: JobStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._users = users
        self._ledger = ledger
        self._gateway = gateway
        self._jobs = jobs
        self._clock = clock

    async def request(
        self,
        user_id: uuid.UUID,
        kind: GenerationKind | str,
        prompt: Optional[str],
        params: GenerationRequest,
    ) -> GenerationJob:
        """Validate, authorize, dispatch and persist one generation request.

        Raises:
            InvalidRequest: empty prompt, missing model, prompt or duration over the plan limit
            Unauthenticated: the user record does not exist
            QuotaExceeded: today's limit for ``kind`` is already used
            GenerationFailed: the provider call failed (reservation released)
            StorageError: the database failed
        """
        kind_label = str(getattr(kind, "value", kind))
        outcome = "accepted"
        try:
            return await self._request(user_id, kind, prompt, params)
        except ReelgenError as exc:
            outcome = exc.kind
            raise
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except Exception:
            outcome = "error"
            logger.exception("generation_request_failed", extra={"user_id": str(user_id)})
            raise
        finally:
            observe_generation_request(kind_label, outcome)

    async def usage_today(self, user_id: uuid.UUID) -> UsageSummary:
        now = self._clock()
        user = await self._users.get(user_id)
        if user is None:
            raise Unauthenticated()
        plan = effective_plan(user, now)
        usage = await self._ledger.snapshot(user_id, self._day(now))
        return UsageSummary(plan=plan, limits=limits_for_plan(plan), usage=usage)

    async def _request(
        self,
        user_id: uuid.UUID,
        kind: GenerationKind | str,
        prompt: Optional[str],
        params: GenerationRequest,
    ) -> GenerationJob:
        try:
            kind = GenerationKind(kind)
        except ValueError:
            raise InvalidRequest("Unsupported generation kind.", detail={"kind": str(kind)})

        prompt = (prompt or "").strip()
        model = (params.model or "").strip()
        if not prompt or not model:
            raise InvalidRequest("Missing required parameters. Prompt and model are required.")

        now = self._clock()
        day = self._day(now)

        user = await self._users.get(user_id)
        if user is None:
            raise Unauthenticated()
        plan = effective_plan(user, now)
        limits = limits_for_plan(plan)

        words = count_words(prompt)
        if words > limits.max_prompt_words:
            raise InvalidRequest(
                f"Prompt exceeds the {limits.max_prompt_words}-word limit for your plan.",
                detail={"words": words, "limit": limits.max_prompt_words},
            )
        resolved = self._resolve_params(kind, model, params, limits)

        logger.info(
            "generation_requested",
            extra={
                "user_id": str(user_id),
                "kind": kind.value,
                "plan": plan.value,
                "model": model,
                "prompt_words": words,
            },
        )

        try:
            await self._ledger.try_consume(user_id, day, kind, limits.max_generations_per_day)
        except QuotaExceeded:
            observe_quota_rejection(kind.value, plan.value)
            raise

        try:
            remote = await self._gateway.submit(kind, prompt, resolved)
        except ProviderError as exc:
            logger.warning(
                "provider_submit_failed",
                extra={
                    "user_id": str(user_id),
                    "kind": kind.value,
                    "error_kind": exc.error_kind.value,
                    "provider_status": exc.provider_status,
                },
            )
            await self._release(user_id, day, kind)
            raise GenerationFailed(exc) from exc
        except asyncio.CancelledError:
            # The caller's timeout fired mid-call; the reservation must not leak.
            await self._release(user_id, day, kind)
            raise
        except Exception:
            logger.exception(
                "provider_submit_crashed",
                extra={"user_id": str(user_id), "kind": kind.value},
            )
            await self._release(user_id, day, kind)
            raise

        job = GenerationJob(
            id=uuid.uuid4(),
            user_id=user_id,
            kind=kind.value,
            prompt=prompt,
            model_used=model,
            duration_seconds=resolved.duration_seconds,
            resolution_or_format=resolved.resolution_or_format,
            provider_job_id=remote.provider_job_id,
            media_url=remote.media_url if remote.status is JobStatus.READY else None,
            status=remote.status.value,
            last_error="provider_failed" if remote.status is JobStatus.FAILED else None,
            created_at=now,
            updated_at=now,
        )
        try:
            job = await self._jobs.create(job)
        except StorageError:
            # The provider already accepted the job, so the reservation stays charged.
            logger.error(
                "generation_job_orphaned",
                extra={
                    "user_id": str(user_id),
                    "kind": kind.value,
                    "provider_job_id": remote.provider_job_id,
                },
            )
            raise
        await self._ledger.commit(user_id, day, kind)

        logger.info(
            "generation_accepted",
            extra={
                "user_id": str(user_id),
                "job_id": str(job.id),
                "provider_job_id": job.provider_job_id,
                "status": job.status,
            },
        )
        return job

    async def _release(self, user_id: uuid.UUID, day: date, kind: GenerationKind) -> None:
        try:
            await self._ledger.release(user_id, day, kind)
        except StorageError:
            logger.exception(
                "quota_release_failed",
                extra={"user_id": str(user_id), "day": day.isoformat(), "kind": kind.value},
            )
            return
        observe_quota_release(kind.value)

    @staticmethod
    def _resolve_params(
        kind: GenerationKind,
        model: str,
        params: GenerationRequest,
        limits: Limits,
    ) -> GenerationParams:
        default_duration, default_format = MEDIA_DEFAULTS[kind]
        duration = params.duration_seconds
        if duration is None:
            duration = min(default_duration, float(limits.max_media_length_seconds))
        elif not math.isfinite(duration):
            raise InvalidRequest("Duration must be a finite number.", detail={"duration_seconds": str(duration)})
        elif duration <= 0:
            raise InvalidRequest("Duration must be positive.", detail={"duration_seconds": duration})
        elif duration > limits.max_media_length_seconds:
            raise InvalidRequest(
                f"Duration exceeds the {limits.max_media_length_seconds}-second limit for your plan.",
                detail={"duration_seconds": duration, "limit": limits.max_media_length_seconds},
            )
        resolution_or_format = (params.resolution_or_format or "").strip() or default_format
        return GenerationParams(
            model=model,
            duration_seconds=float(duration),
            resolution_or_format=resolution_or_format,
        )

    @staticmethod
    def _day(now: datetime) -> date:
        if now.tzinfo is None:
            return now.date()
        return now.astimezone(timezone.utc).date()
