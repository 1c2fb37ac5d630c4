from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest

from backend.reelgen.errors import QuotaExceeded
from backend.reelgen.models import GenerationKind
from backend.reelgen.quota import UsageLedger


DAY = date(2025, 3, 14)


@pytest.fixture
def ledger(session_factory):
    return UsageLedger(session_factory)


@pytest.mark.asyncio
async def test_first_consume_creates_record(ledger, make_user) -> None:
    user = await make_user()

    snapshot = await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 1)

    assert snapshot.video_count == 1
    assert snapshot.audio_count == 0
    assert await ledger.count_records(user.id, DAY) == 1


@pytest.mark.asyncio
async def test_consume_rejects_at_limit_without_incrementing(ledger, make_user) -> None:
    user = await make_user()
    await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 1)

    with pytest.raises(QuotaExceeded) as exc_info:
        await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 1)

    assert exc_info.value.limit == 1
    assert exc_info.value.used == 1
    assert exc_info.value.public_fields() == {"limit": 1, "used": 1}
    assert (await ledger.snapshot(user.id, DAY)).video_count == 1


@pytest.mark.asyncio
async def test_kinds_are_counted_separately(ledger, make_user) -> None:
    user = await make_user()
    await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 1)

    snapshot = await ledger.try_consume(user.id, DAY, GenerationKind.AUDIO, 1)

    assert (snapshot.video_count, snapshot.audio_count) == (1, 1)


@pytest.mark.asyncio
async def test_days_are_counted_separately(ledger, make_user) -> None:
    user = await make_user()
    await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 1)

    snapshot = await ledger.try_consume(user.id, DAY + timedelta(days=1), GenerationKind.VIDEO, 1)

    assert snapshot.video_count == 1
    assert await ledger.count_records(user.id, DAY) == 1


@pytest.mark.asyncio
async def test_zero_limit_rejects_and_leaves_counter_untouched(ledger, make_user) -> None:
    user = await make_user()

    with pytest.raises(QuotaExceeded) as exc_info:
        await ledger.try_consume(user.id, DAY, GenerationKind.AUDIO, 0)

    assert exc_info.value.used == 0
    assert (await ledger.snapshot(user.id, DAY)).audio_count == 0


@pytest.mark.asyncio
async def test_unlimited_consume_never_rejects(ledger, make_user) -> None:
    user = await make_user()

    for _ in range(7):
        snapshot = await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, None)

    assert snapshot.video_count == 7


@pytest.mark.asyncio
async def test_concurrent_consumes_respect_limit(ledger, make_user) -> None:
    user = await make_user()

    results = await asyncio.gather(
        *(ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 3) for _ in range(10)),
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, QuotaExceeded)]
    assert len(accepted) == 3
    assert len(rejected) == 7
    assert all(exc.used == 3 and exc.limit == 3 for exc in rejected)
    assert await ledger.count_records(user.id, DAY) == 1
    assert (await ledger.snapshot(user.id, DAY)).video_count == 3


@pytest.mark.asyncio
async def test_release_restores_counter(ledger, make_user) -> None:
    user = await make_user()
    await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 1)

    snapshot = await ledger.release(user.id, DAY, GenerationKind.VIDEO)

    assert snapshot.video_count == 0
    await ledger.try_consume(user.id, DAY, GenerationKind.VIDEO, 1)


@pytest.mark.asyncio
async def test_release_never_goes_below_zero(ledger, make_user) -> None:
    user = await make_user()

    snapshot = await ledger.release(user.id, DAY, GenerationKind.AUDIO)

    assert snapshot.audio_count == 0
    assert await ledger.count_records(user.id, DAY) == 0


@pytest.mark.asyncio
async def test_snapshot_without_record_is_zero(ledger, make_user) -> None:
    user = await make_user()

    snapshot = await ledger.snapshot(user.id, DAY)

    assert (snapshot.video_count, snapshot.audio_count) == (0, 0)
