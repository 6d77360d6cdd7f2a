"""
Calendar Sync Job.
Iterates over every user with an active calendar credential and runs one
reconciliation pass each. A user's failure is recorded in the report and
never stops the loop.
"""

import asyncio
import time
from datetime import UTC, datetime

import structlog

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import SyncOutcome
from app.models.domain.credential_domain import GOOGLE_CALENDAR
from app.repositories.credential_repository import CredentialRepository, credential_repository
from app.services.calendar.errors import CalendarSyncError
from app.services.calendar.sync_service import CalendarSyncService, calendar_sync_service

logger = get_logger(__name__)

SCHEDULER_ERROR_BACKOFF_SECONDS = 60


class CalendarSyncJobError(Exception):
    """Raised when the job cannot even enumerate users."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class CalendarSyncMetrics:
    """Aggregate report for one scheduler pass."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.users_processed = 0
        self.succeeded = 0
        self.failed = 0
        self.imported = 0
        self.updated = 0
        self.skipped = 0
        self.exported = 0
        self.event_failures = 0
        self.total_duration_seconds = 0.0
        self.errors: dict[str, str] = {}

    def record_success(self, outcome: SyncOutcome, duration_ms: float):
        self.users_processed += 1
        self.succeeded += 1
        self.imported += outcome.imported
        self.updated += outcome.updated
        self.skipped += outcome.skipped
        self.exported += outcome.exported
        self.event_failures += outcome.failed

        logger.debug(
            "User calendar synced",
            user_id=outcome.user_id,
            duration_ms=round(duration_ms, 2),
            job_run="calendar_sync",
        )

    def record_failure(self, user_id: str, error: str, reauth_required: bool = False):
        self.users_processed += 1
        self.failed += 1
        self.errors[user_id] = error

        logger.warning(
            "User calendar sync failed",
            user_id=user_id,
            error=error,
            reauth_required=reauth_required,
            job_run="calendar_sync",
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "calendar_sync",
            "start_time": self.start_time.isoformat(),
            "duration_seconds": round(self.total_duration_seconds, 2),
            "users_processed": self.users_processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "exported": self.exported,
            "event_failures": self.event_failures,
            "errors": dict(self.errors),
        }


class CalendarSyncJob:
    """
    Background job driving per-user calendar reconciliation.

    Users run sequentially by default; CALENDAR_SYNC_MAX_CONCURRENT > 1
    processes several at once since each user's data is disjoint.
    """

    def __init__(
        self,
        sync_service: CalendarSyncService | None = None,
        credential_store: CredentialRepository | None = None,
        user_timeout_seconds: float | None = None,
        max_concurrent: int | None = None,
    ):
        self.sync_service = sync_service or calendar_sync_service
        self.credential_store = credential_store or credential_repository
        self.user_timeout_seconds = user_timeout_seconds or settings.CALENDAR_SYNC_USER_TIMEOUT
        self.max_concurrent = max(1, max_concurrent or settings.CALENDAR_SYNC_MAX_CONCURRENT)
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = CalendarSyncMetrics()

    async def run_once(self) -> dict:
        """
        Run one pass over all connected users.

        Returns:
            Dict: aggregate report; user failures are data, not exceptions

        Raises:
            CalendarSyncJobError: If the user list cannot be loaded
        """
        if self.is_running:
            logger.warning("Calendar sync job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            user_ids = await self._get_connected_users()
            if not user_ids:
                logger.info("No users with an active calendar connection")
                self.job_metrics.finalize()
                return self.job_metrics.to_dict()

            logger.info(
                "Starting calendar sync job",
                user_count=len(user_ids),
                max_concurrent=self.max_concurrent,
            )

            semaphore = asyncio.Semaphore(self.max_concurrent)
            await asyncio.gather(
                *(self._sync_user_with_semaphore(semaphore, user_id) for user_id in user_ids)
            )

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            metrics = self.job_metrics.to_dict()
            logger.info(
                "Calendar sync job completed",
                **{k: v for k, v in metrics.items() if k != "errors"},
            )
            return metrics

        finally:
            self.is_running = False

    async def _get_connected_users(self) -> list[str]:
        try:
            return await self.credential_store.list_active_user_ids(GOOGLE_CALENDAR)
        except Exception as e:
            logger.error("Failed to load connected users", error=str(e))
            raise CalendarSyncJobError(
                f"Failed to load connected users: {e}", operation="get_connected_users"
            ) from e

    async def _sync_user_with_semaphore(self, semaphore: asyncio.Semaphore, user_id: str):
        async with semaphore:
            await self._sync_user(user_id)

    async def _sync_user(self, user_id: str):
        start_time = time.time()
        try:
            with structlog.contextvars.bound_contextvars(job_run="calendar_sync", user_id=user_id):
                outcome = await asyncio.wait_for(
                    self.sync_service.sync_user(user_id), timeout=self.user_timeout_seconds
                )
        except TimeoutError:
            self.job_metrics.record_failure(
                user_id, f"Calendar sync timed out after {self.user_timeout_seconds}s"
            )
        except CalendarSyncError as e:
            self.job_metrics.record_failure(user_id, str(e), reauth_required=not e.recoverable)
        except Exception as e:
            self.job_metrics.record_failure(user_id, f"Unexpected error: {type(e).__name__}: {e}")
        else:
            self.job_metrics.record_success(outcome, (time.time() - start_time) * 1000)


# Singleton instance for application use
calendar_sync_job = CalendarSyncJob()


async def run_calendar_sync_job() -> dict:
    """Run a single iteration of the calendar sync job."""
    return await calendar_sync_job.run_once()


async def run_calendar_sync_once() -> None:
    """Worker entrypoint: one pass with its own database pool."""
    await db_pool.initialize()
    try:
        report = await run_calendar_sync_job()
        logger.info("Calendar sync single pass finished", report=report)
    finally:
        await db_pool.close()


async def start_calendar_sync_scheduler():
    """
    Run the calendar sync job forever at CALENDAR_SYNC_INTERVAL_MINUTES.

    Meant to run in a separate process/container through the worker runner.
    """
    interval_minutes = settings.CALENDAR_SYNC_INTERVAL_MINUTES
    logger.info("Starting calendar sync job scheduler", interval_minutes=interval_minutes)

    await db_pool.initialize()
    try:
        while True:
            try:
                metrics = await run_calendar_sync_job()
                if not metrics.get("skipped", False):
                    logger.info(
                        "Calendar sync job cycle completed",
                        succeeded=metrics["succeeded"],
                        failed=metrics["failed"],
                    )
                await asyncio.sleep(interval_minutes * 60)

            except CalendarSyncJobError as e:
                logger.error("Error in calendar sync job scheduler", error=str(e))
                await asyncio.sleep(SCHEDULER_ERROR_BACKOFF_SECONDS)
    finally:
        await db_pool.close()
