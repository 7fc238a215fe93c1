"""Recurring job scheduler — polls for due ScheduledJobs and executes them."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from framecast.core.clock import TimeZoneClock
from framecast.core.errors import ConfigurationError
from framecast.core.pipeline import GenerationPipeline
from framecast.core.recurrence import next_run_at, schedule_fields
from framecast.core.store import JobStore
from framecast.services.base import DeviceNotifier

logger = logging.getLogger(__name__)

CHECK_JOB_ID = "check_due_jobs"
PURGE_JOB_ID = "purge_expired_tokens"


class RecurringJobScheduler:
    """APScheduler-backed polling loop for scheduled image generation.

    Every ``poll_seconds`` (and once immediately on start) due jobs are run
    one after another. A failing job never stops the rest of the pass. A
    second hourly task asks the auth layer to purge expired tokens.
    """

    def __init__(
        self,
        store: JobStore,
        pipeline: GenerationPipeline,
        notifier: DeviceNotifier | None = None,
        *,
        clock: TimeZoneClock | None = None,
        purge_tokens: Callable[[], Awaitable[Any]] | None = None,
        poll_seconds: int = 60,
        purge_seconds: int = 3600,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.notifier = notifier
        self.clock = clock or TimeZoneClock()
        self._purge_tokens = purge_tokens
        self.poll_seconds = poll_seconds
        self.purge_seconds = purge_seconds
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        # job id -> (ran_at, next_run_at, error) for outcomes the store rejected
        self._unrecorded: dict[str, tuple[datetime, datetime | None, str | None]] = {}

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    async def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        first_run = datetime.now(UTC)
        self.scheduler.add_job(
            self.check_due_jobs,
            trigger=IntervalTrigger(seconds=self.poll_seconds),
            id=CHECK_JOB_ID,
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self._purge_tokens is not None:
            self.scheduler.add_job(
                self.purge_expired_tokens,
                trigger=IntervalTrigger(seconds=self.purge_seconds),
                id=PURGE_JOB_ID,
                next_run_time=first_run,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info("Scheduler started (poll every %ds)", self.poll_seconds)

    def shutdown(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def check_due_jobs(self) -> int:
        """Run every due job once. Returns how many jobs were due."""
        now = self.clock.utcnow()
        try:
            due = await self.store.find_due_scheduled_jobs(now)
        except Exception:
            logger.exception("Error checking due jobs")
            return 0

        logger.debug("Scheduler check now=%s due=%d", now.isoformat(), len(due))
        if due:
            logger.info("Found %d due scheduled job(s)", len(due))
        # A pending outcome for a job no longer due was overtaken by an edit or delete
        due_ids = {job.id for job in due}
        self._unrecorded = {k: v for k, v in self._unrecorded.items() if k in due_ids}

        for job in due:
            try:
                if job.id in self._unrecorded:
                    # Already ran; only the bookkeeping is outstanding
                    await self._record(job, *self._unrecorded[job.id])
                    continue
                await self.execute_job(job)
            except Exception:
                logger.exception("Scheduled job %s failed", job.id)
        return len(due)

    async def execute_job(self, job: Any) -> bool:
        """Execute one job and record the outcome. Returns True on success."""
        logger.info("Executing scheduled job %s user=%s", job.id, job.user_id)
        try:
            artifact = await self.pipeline.run(
                owner_id=job.user_id,
                prompt=job.prompt,
                size=job.size,
                style_preset=job.style_preset,
                source="schedule",
            )
        except Exception as exc:
            logger.exception("Failed to execute scheduled job %s", job.id)
            ran_at = self.clock.utcnow()
            await self._record(
                job, ran_at, self._next_run(job, ran_at), error=str(exc) or type(exc).__name__
            )
            return False

        if job.auto_sync_device:
            await self._sync(job, artifact.url)
        ran_at = self.clock.utcnow()
        await self._record(job, ran_at, self._next_run(job, ran_at))
        return True

    async def _record(
        self, job: Any, ran_at: datetime, upcoming: datetime | None, error: str | None = None
    ) -> None:
        """Persist a run outcome. If the store rejects it, keep it for the next poll."""
        try:
            if error is None:
                await self.store.record_job_success(job.id, ran_at, upcoming)
            else:
                await self.store.record_job_failure(job.id, ran_at, error, upcoming)
        except Exception:
            logger.exception("Could not record outcome of scheduled job %s; will retry", job.id)
            self._unrecorded[job.id] = (ran_at, upcoming, error)
            return
        self._unrecorded.pop(job.id, None)
        if upcoming is None:
            logger.info("Scheduled job %s has no further runs; disabled", job.id)

    def _next_run(self, job: Any, reference_now: datetime) -> datetime | None:
        try:
            return next_run_at(*schedule_fields(job), reference_now=reference_now)
        except ConfigurationError as exc:
            logger.warning("Cannot reschedule job %s: %s", job.id, exc)
            return None

    async def _sync(self, job: Any, image_url: str) -> None:
        """Push to the owner's devices. Failures are logged, never propagated."""
        if self.notifier is None:
            return
        try:
            if not await self.store.has_sync_target(job.user_id):
                logger.debug("User %s has no sync target; skipping", job.user_id)
                return
            await self.notifier.notify(image_url, job.prompt, job.user_id)
            logger.info("Scheduled image synced to device job=%s", job.id)
        except Exception:
            logger.warning("Failed to sync scheduled image for job %s", job.id, exc_info=True)

    async def purge_expired_tokens(self) -> None:
        if self._purge_tokens is None:
            return
        try:
            await self._purge_tokens()
        except Exception:
            logger.exception("Token cleanup failed")
