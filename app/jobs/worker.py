"""
Background worker runner for calendar sync.

    python -m app.jobs.worker calendar_sync        # scheduler loop
    python -m app.jobs.worker calendar_sync_once   # one pass, then exit

Without an argument the WORKER_JOB environment variable decides.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.calendar_sync_job import run_calendar_sync_once, start_calendar_sync_scheduler

logger = get_logger(__name__)

DEFAULT_JOB = "calendar_sync"

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "calendar_sync": start_calendar_sync_scheduler,
    "calendar_sync_once": run_calendar_sync_once,
}


def _resolve_job_name(argv: list[str] | None = None) -> str:
    args = sys.argv[1:] if argv is None else argv
    raw = args[0] if args else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return raw.strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """
    Run one registered job until it returns.

    Raises:
        ValueError: Unknown job name
    """
    name = (job_name or _resolve_job_name()).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}")

    logger.info("Starting background worker", job=name, environment=settings.environment)
    await job()


def main() -> None:
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment != "development")
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
