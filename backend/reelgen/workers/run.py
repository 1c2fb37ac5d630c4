"""Long-running status refresh worker.

    python -m backend.reelgen.workers.run

Every cycle takes a short Redis lock so that only one replica polls the
provider at a time; replicas that miss the lock sleep until the next cycle.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from backend.reelgen.config import Settings, get_settings
from backend.reelgen.errors import ReelgenError
from backend.reelgen.providers import close_provider_gateway
from backend.reelgen.utils.db import get_database
from backend.reelgen.utils.redis_client import acquire_lock, close_redis_client, release_lock
from backend.reelgen.workers.status_refresh import (
    RefreshReport,
    StatusRefresher,
    create_status_refresher,
)


logger = logging.getLogger(__name__)

LOCK_NAME = "status_refresh"


async def run_cycle(refresher: StatusRefresher, settings: Settings) -> Optional[RefreshReport]:
    """Run one locked refresh cycle. Returns None if another worker holds the lock."""
    token = await acquire_lock(
        LOCK_NAME,
        ttl_seconds=settings.STATUS_REFRESH_LOCK_TTL,
        timeout=0,
    )
    if token is None:
        logger.debug("status_refresh_lock_busy")
        return None
    try:
        return await refresher.run_once(settings.STATUS_REFRESH_BATCH_SIZE)
    finally:
        await release_lock(LOCK_NAME, token)


async def run_worker(max_cycles: Optional[int] = None) -> None:
    """Poll until cancelled, or for ``max_cycles`` cycles when given."""
    settings = get_settings()
    refresher = await create_status_refresher()
    logger.info(
        "worker_started",
        extra={
            "interval_seconds": settings.STATUS_REFRESH_INTERVAL_SECONDS,
            "batch_size": settings.STATUS_REFRESH_BATCH_SIZE,
        },
    )

    cycles = 0
    try:
        while max_cycles is None or cycles < max_cycles:
            cycles += 1
            try:
                await run_cycle(refresher, settings)
            except ReelgenError as exc:
                logger.error(
                    "status_refresh_cycle_failed",
                    extra={"error_kind": exc.kind, "detail": exc.detail},
                )
            except Exception:
                logger.exception("status_refresh_cycle_crashed")
            await asyncio.sleep(settings.STATUS_REFRESH_INTERVAL_SECONDS)
    finally:
        await close_provider_gateway()
        await close_redis_client()
        await get_database().dispose()
        logger.info("worker_stopped", extra={"cycles": cycles})


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("worker_interrupted")


if __name__ == "__main__":
    main()
