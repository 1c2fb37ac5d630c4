from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from backend.reelgen.config import Settings
from backend.reelgen.cron import run as cron_run
from backend.reelgen.errors import ProviderError, ProviderErrorKind
from backend.reelgen.jobs import JobStore
from backend.reelgen.models import GenerationJob, JobStatus
from backend.reelgen.workers import run as worker_run
from backend.reelgen.workers.status_refresh import StatusRefresher


BASE_TIME = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def jobs(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def refresher(jobs, gateway):
    return StatusRefresher(jobs=jobs, gateway=gateway)


async def _queued_job(jobs: JobStore, user_id: uuid.UUID, provider_job_id: str, *, minutes: int = 0) -> GenerationJob:
    created_at = BASE_TIME + timedelta(minutes=minutes)
    return await jobs.create(
        GenerationJob(
            user_id=user_id,
            kind="video",
            prompt="a cat",
            model_used="phoenix-3",
            duration_seconds=10.0,
            resolution_or_format="720p",
            provider_job_id=provider_job_id,
            status="queued",
            created_at=created_at,
            updated_at=created_at,
        )
    )


@pytest.mark.asyncio
async def test_finished_jobs_become_ready(refresher, jobs, make_user) -> None:
    user = await make_user()
    job = await _queued_job(jobs, user.id, "prov-1")

    report = await refresher.run_once(limit=10)

    stored = await jobs.get(job.id)
    assert report.checked == 1
    assert report.ready == 1
    assert stored.status == "ready"
    assert stored.media_url == "https://media.invalid/prov-1.mp4"


@pytest.mark.asyncio
async def test_still_processing_jobs_stay_queued(refresher, jobs, gateway, make_user) -> None:
    user = await make_user()
    job = await _queued_job(jobs, user.id, "prov-1")
    gateway.auto_complete = False

    report = await refresher.run_once(limit=10)

    assert report.unchanged == 1
    assert (await jobs.get(job.id)).status == "queued"


@pytest.mark.asyncio
async def test_provider_failure_marks_job_failed(refresher, jobs, gateway, make_user) -> None:
    user = await make_user()
    job = await _queued_job(jobs, user.id, "prov-1")
    gateway.set_status("prov-1", JobStatus.FAILED)

    report = await refresher.run_once(limit=10)

    stored = await jobs.get(job.id)
    assert report.failed == 1
    assert stored.status == "failed"
    assert stored.last_error == "provider_failed"


@pytest.mark.asyncio
async def test_transient_lookup_errors_leave_job_queued(refresher, jobs, gateway, make_user) -> None:
    user = await make_user()
    flaky = await _queued_job(jobs, user.id, "prov-flaky", minutes=0)
    garbled = await _queued_job(jobs, user.id, "prov-garbled", minutes=1)
    healthy = await _queued_job(jobs, user.id, "prov-ok", minutes=2)
    gateway.status_errors["prov-flaky"] = ProviderError(ProviderErrorKind.UNAVAILABLE)
    gateway.status_errors["prov-garbled"] = ProviderError(ProviderErrorKind.MALFORMED_RESPONSE)

    report = await refresher.run_once(limit=10)

    assert report.errors == [str(flaky.id), str(garbled.id)]
    assert (await jobs.get(flaky.id)).status == "queued"
    assert (await jobs.get(garbled.id)).status == "queued"
    assert (await jobs.get(healthy.id)).status == "ready"


@pytest.mark.asyncio
async def test_rejected_lookup_marks_job_failed(refresher, jobs, gateway, make_user) -> None:
    user = await make_user()
    job = await _queued_job(jobs, user.id, "prov-gone")
    gateway.status_errors["prov-gone"] = ProviderError(ProviderErrorKind.REJECTED, provider_status=404)

    await refresher.run_once(limit=10)

    stored = await jobs.get(job.id)
    assert stored.status == "failed"
    assert stored.last_error == "rejected"


@pytest.mark.asyncio
async def test_limit_takes_oldest_first(refresher, jobs, make_user) -> None:
    user = await make_user()
    newer = await _queued_job(jobs, user.id, "prov-new", minutes=5)
    older = await _queued_job(jobs, user.id, "prov-old", minutes=1)

    await refresher.run_once(limit=1)

    assert (await jobs.get(older.id)).status == "ready"
    assert (await jobs.get(newer.id)).status == "queued"


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(refresher, jobs, make_user) -> None:
    user = await make_user()
    job = await _queued_job(jobs, user.id, "prov-1")

    report = await refresher.run_once(limit=10, dry_run=True)

    assert report.ready == 1
    assert (await jobs.get(job.id)).status == "queued"


@pytest.mark.asyncio
async def test_cron_refresh_reports_counts(monkeypatch, refresher, jobs, make_user) -> None:
    user = await make_user()
    await _queued_job(jobs, user.id, "prov-1")

    async def fake_create():
        return refresher

    monkeypatch.setattr(cron_run, "create_status_refresher", fake_create)

    result = await cron_run.refresh(limit=5)

    assert result["checked"] == 1
    assert result["ready"] == 1
    assert result["errors"] == []


@pytest.mark.asyncio
async def test_worker_cycle_skips_when_lock_is_held(monkeypatch, refresher, jobs, make_user) -> None:
    user = await make_user()
    job = await _queued_job(jobs, user.id, "prov-1")

    async def lock_busy(name, **kwargs):
        return None

    monkeypatch.setattr(worker_run, "acquire_lock", lock_busy)

    report = await worker_run.run_cycle(refresher, worker_run.get_settings())

    assert report is None
    assert (await jobs.get(job.id)).status == "queued"


@pytest.mark.asyncio
async def test_worker_cycle_releases_lock(monkeypatch, refresher, jobs, make_user) -> None:
    user = await make_user()
    await _queued_job(jobs, user.id, "prov-1")
    released = []

    async def lock_free(name, **kwargs):
        return "token-1"

    async def release(name, token):
        released.append((name, token))
        return True

    monkeypatch.setattr(worker_run, "acquire_lock", lock_free)
    monkeypatch.setattr(worker_run, "release_lock", release)

    report = await worker_run.run_cycle(refresher, worker_run.get_settings())

    assert report.ready == 1
    assert released == [(worker_run.LOCK_NAME, "token-1")]


@pytest.mark.asyncio
async def test_worker_keeps_polling_after_unexpected_cycle_error(monkeypatch, refresher) -> None:
    cycles = []
    closed = []

    async def fake_create():
        return refresher

    async def flaky_cycle(refresher, settings):
        cycles.append(len(cycles))
        if len(cycles) == 1:
            raise RuntimeError("decoder blew up")
        return None

    async def close_gateway():
        closed.append("gateway")

    async def close_redis():
        closed.append("redis")

    class _Database:
        async def dispose(self):
            closed.append("database")

    monkeypatch.setattr(
        worker_run,
        "get_settings",
        lambda: Settings(POSTGRES_DSN="sqlite+aiosqlite:///:memory:", STATUS_REFRESH_INTERVAL_SECONDS=0),
    )
    monkeypatch.setattr(worker_run, "create_status_refresher", fake_create)
    monkeypatch.setattr(worker_run, "run_cycle", flaky_cycle)
    monkeypatch.setattr(worker_run, "close_provider_gateway", close_gateway)
    monkeypatch.setattr(worker_run, "close_redis_client", close_redis)
    monkeypatch.setattr(worker_run, "get_database", lambda: _Database())

    await worker_run.run_worker(max_cycles=3)

    assert cycles == [0, 1, 2]
    assert closed == ["gateway", "redis", "database"]
