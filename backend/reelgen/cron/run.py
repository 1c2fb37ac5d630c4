"""Status refresh cron job.

This module provides a one-shot entry point for the status refresh, for
deployments that schedule it instead of running the long-lived worker:

    python -m backend.reelgen.cron.run refresh
    python -m backend.reelgen.cron.run refresh --limit 200
    python -m backend.reelgen.cron.run refresh --dry-run

The refresh job:
1. Loads queued generation jobs, oldest first
2. Asks the provider for each job's current status
3. Moves finished jobs to ready or failed
4. Records the refresh timestamp for monitoring
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from typing import Optional

from backend.reelgen.config import get_settings
from backend.reelgen.errors import ReelgenError
from backend.reelgen.providers import close_provider_gateway
from backend.reelgen.utils.db import get_database
from backend.reelgen.workers.status_refresh import create_status_refresher

logger = logging.getLogger(__name__)


async def refresh(limit: Optional[int] = None, dry_run: bool = False) -> dict:
    """Run one status refresh cycle.

    Args:
        limit: Maximum number of queued jobs to check (defaults to
            STATUS_REFRESH_BATCH_SIZE)
        dry_run: If True, report outcomes without writing them

    Returns:
        Dictionary with refresh results:
        - checked: Number of jobs looked up
        - ready / failed / unchanged: Outcome counts
        - errors: List of error messages
    """
    settings = get_settings()
    limit = limit or settings.STATUS_REFRESH_BATCH_SIZE
    start_time = time.time()

    result: dict = {
        "checked": 0,
        "ready": 0,
        "failed": 0,
        "unchanged": 0,
        "errors": [],
        "duration_seconds": 0.0,
    }

    try:
        refresher = await create_status_refresher()
        report = await refresher.run_once(limit, dry_run=dry_run)
        result.update(
            checked=report.checked,
            ready=report.ready,
            failed=report.failed,
            unchanged=report.unchanged,
        )
        result["errors"].extend(f"provider lookup failed for job {job_id}" for job_id in report.errors)
    except ReelgenError as e:
        logger.exception("status_refresh_failed", extra={"error_kind": e.kind})
        result["errors"].append(e.message)
    finally:
        await close_provider_gateway()
        await get_database().dispose()

    result["duration_seconds"] = time.time() - start_time
    return result


async def main_async(args: argparse.Namespace) -> int:
    """Async main entry point."""
    if args.command == "refresh":
        result = await refresh(limit=args.limit, dry_run=args.dry_run)
    else:
        result = await refresh()

    for error in result["errors"]:
        logger.error("status_refresh_error", extra={"error": error})

    logger.info(
        "status_refresh_summary",
        extra={k: v for k, v in result.items() if k != "errors"},
    )
    return 1 if result["errors"] else 0


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the cron module."""
    parser = argparse.ArgumentParser(
        description="Scheduled jobs for the generation backend"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    refresh_parser = subparsers.add_parser(
        "refresh",
        help="Refresh the status of queued generation jobs"
    )
    refresh_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of queued jobs to check",
    )
    refresh_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Look up provider status without updating jobs",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    exit_code = asyncio.run(main_async(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
