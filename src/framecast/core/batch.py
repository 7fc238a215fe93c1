"""Batch processing — one item at a time under a global rate limit.

The processor is a single long-lived object holding all mutable state:
the reentrancy flag, the last generation timestamp and the staggered
device-sync queue. Timestamps come from an injectable monotonic clock so the
rate limit and stagger interval can be driven with virtual time.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from framecast.core.clock import TimeZoneClock
from framecast.core.errors import BatchStateError, ConfigurationError, NotFoundError
from framecast.core.pipeline import DEFAULT_SIZE, Artifact, GenerationPipeline
from framecast.core.store import JobStore
from framecast.models.batch import (
    ACTIVE_BATCH_STATUSES,
    BatchJob,
    BatchJobItem,
    BatchStatus,
)
from framecast.services.base import DeviceNotifier

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 10
TICK_JOB_ID = "batch_tick"
EXHAUSTED_ERROR = "Exceeded maximum attempts"


@dataclass(frozen=True)
class SyncNotice:
    """A device push waiting for its turn in the stagger queue."""

    item_id: str
    image_url: str
    caption: str
    owner_id: str


class BatchProcessor:
    """Drains pending batch jobs one item per pass.

    Each ``tick`` first sends at most one queued device sync (once the stagger
    interval has passed), then, if no generation is in flight and the rate
    limit interval has passed, processes one item of the oldest active batch.
    """

    def __init__(
        self,
        store: JobStore,
        pipeline: GenerationPipeline,
        notifier: DeviceNotifier | None = None,
        *,
        clock: TimeZoneClock | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        poll_seconds: float = 5.0,
        rate_limit_seconds: float = 30.0,
        stagger_seconds: float = 600.0,
        lease_seconds: float = 300.0,
        max_attempts: int = 3,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.notifier = notifier
        self.clock = clock or TimeZoneClock()
        self.monotonic = monotonic
        self.poll_seconds = poll_seconds
        self.rate_limit_seconds = rate_limit_seconds
        self.stagger_seconds = stagger_seconds
        self.lease_seconds = lease_seconds
        self.max_attempts = max_attempts
        self.scheduler = AsyncIOScheduler(timezone="UTC")

        self._processing = False
        self._last_generation_at: float | None = None
        self._sync_queue: deque[SyncNotice] = deque()
        self._last_sync_at: float | None = None
        # Batch whose first image has already been pushed this run
        self._sync_batch_id: str | None = None

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    @property
    def pending_syncs(self) -> int:
        return len(self._sync_queue)

    async def start(self) -> None:
        if self.running:
            logger.warning("Batch processor already running")
            return
        resumable = await self.store.find_oldest_active_batch()
        if resumable is not None:
            logger.info(
                "Found in-progress batch job %s to resume (status=%s, %d/%d done)",
                resumable.id,
                resumable.status,
                resumable.completed_count + resumable.failed_count,
                resumable.total_count,
            )
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.poll_seconds),
            id=TICK_JOB_ID,
            next_run_time=datetime.now(UTC),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "Batch processor started (poll every %ss, rate limit %ss)",
            self.poll_seconds,
            self.rate_limit_seconds,
        )

    def shutdown(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Batch processor stopped")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def tick(self) -> None:
        await self.send_next_sync()
        await self.process_next()

    def _rate_limited(self) -> bool:
        if self._last_generation_at is None:
            return False
        return self.monotonic() - self._last_generation_at < self.rate_limit_seconds

    async def process_next(self) -> bool:
        """Process one item if allowed. Returns True when an item was handled."""
        if self._processing or self._rate_limited():
            return False

        self._processing = True
        try:
            batch = await self.store.find_oldest_active_batch()
            if batch is None:
                return False
            logger.info("Processing batch job %s (status=%s)", batch.id, batch.status)
            if batch.status == BatchStatus.PENDING:
                await self.store.mark_batch_started(batch.id, self.clock.utcnow())
            return await self._process_next_item(batch)
        except Exception:
            logger.exception("Error in batch processor")
            return False
        finally:
            self._processing = False

    async def _process_next_item(self, batch: BatchJob) -> bool:
        now = self.clock.utcnow()
        item = await self.store.find_next_pending_item(
            batch.id, lease_expired_before=now - timedelta(seconds=self.lease_seconds)
        )
        if item is None:
            await self._finish_if_drained(batch)
            return False

        if item.attempt_count >= self.max_attempts:
            logger.warning(
                "Batch item %s abandoned after %d attempts", item.id, item.attempt_count
            )
            await self.store.finish_item(
                batch.id, item.id, succeeded=False, error=EXHAUSTED_ERROR, at=now
            )
            await self._finish_if_drained(batch)
            return True

        attempt = item.attempt_count + 1
        await self.store.claim_item(item.id, now)
        logger.info(
            "Processing batch item %s of batch %s (attempt %d)", item.id, batch.id, attempt
        )
        try:
            artifact = await self.pipeline.run(
                owner_id=batch.user_id,
                prompt=item.prompt,
                size=batch.size or DEFAULT_SIZE,
                style_preset=batch.style_preset,
                source="batch",
            )
        except Exception as exc:
            # The provider call was still made; it counts against the rate limit
            self._last_generation_at = self.monotonic()
            message = str(exc) or type(exc).__name__
            logger.error("Failed to process batch item %s: %s", item.id, message)
            await self.store.finish_item(
                batch.id, item.id, succeeded=False, error=message, at=self.clock.utcnow()
            )
        else:
            self._last_generation_at = self.monotonic()
            await self.store.finish_item(
                batch.id, item.id, succeeded=True, image_id=artifact.id, at=self.clock.utcnow()
            )
            logger.info("Batch item %s completed image=%s", item.id, artifact.id)
            if batch.auto_sync_device:
                await self._schedule_sync(batch, item, artifact)

        await self._finish_if_drained(batch)
        return True

    async def _finish_if_drained(self, batch: BatchJob) -> None:
        """Finalize the batch once no item is pending or still leased."""
        open_items = await self.store.count_open_items(batch.id)
        if open_items:
            return
        final = await self.store.finalize_batch(batch.id, self.clock.utcnow())
        if self._sync_batch_id == batch.id:
            self._sync_batch_id = None
        if final is not None:
            logger.info(
                "Batch job %s finished status=%s completed=%d failed=%d",
                final.id,
                final.status,
                final.completed_count,
                final.failed_count,
            )

    # ------------------------------------------------------------------
    # Staggered device sync
    # ------------------------------------------------------------------

    async def _schedule_sync(
        self, batch: BatchJob, item: BatchJobItem, artifact: Artifact
    ) -> None:
        if not await self.store.has_sync_target(batch.user_id):
            logger.info("Skipping device sync for item %s: owner has no device", item.id)
            return
        notice = SyncNotice(
            item_id=item.id, image_url=artifact.url, caption=item.prompt, owner_id=batch.user_id
        )
        if self._sync_batch_id != batch.id and not self._sync_queue:
            # First image of a batch goes out right away
            self._sync_batch_id = batch.id
            await self._send(notice)
            return
        self._sync_batch_id = batch.id
        self._sync_queue.append(notice)
        logger.info(
            "Queued device sync for item %s (%d waiting)", item.id, len(self._sync_queue)
        )

    async def send_next_sync(self) -> bool:
        """Send one queued sync if the stagger interval has elapsed."""
        if not self._sync_queue:
            return False
        if (
            self._last_sync_at is not None
            and self.monotonic() - self._last_sync_at < self.stagger_seconds
        ):
            return False
        await self._send(self._sync_queue.popleft())
        return True

    async def _send(self, notice: SyncNotice) -> None:
        self._last_sync_at = self.monotonic()
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(notice.image_url, notice.caption, notice.owner_id)
            await self.store.mark_item_synced(notice.item_id)
            logger.info("Batch image synced to device item=%s", notice.item_id)
        except Exception:
            logger.warning("Failed to sync batch item %s", notice.item_id, exc_info=True)


# ── Batch lifecycle (called from the API) ─────────────────────────────────────


async def create_batch(
    store: JobStore,
    *,
    user_id: str,
    prompts: Sequence[str],
    name: str | None = None,
    size: str = DEFAULT_SIZE,
    style_preset: str | None = None,
    auto_sync_device: bool = False,
    max_size: int = MAX_BATCH_SIZE,
) -> BatchJob:
    if not prompts:
        raise ConfigurationError("At least one prompt is required")
    if len(prompts) > max_size:
        raise ConfigurationError(f"Maximum {max_size} prompts allowed per batch")
    cleaned = [p.strip() for p in prompts if isinstance(p, str) and p.strip()]
    if not cleaned:
        raise ConfigurationError("At least one non-empty prompt is required")

    batch = await store.create_batch(
        user_id=user_id,
        name=name or None,
        prompts=cleaned,
        size=size,
        style_preset=style_preset or None,
        auto_sync_device=auto_sync_device,
    )
    logger.info(
        "Batch job %s created user=%s prompts=%d preset=%s",
        batch.id,
        user_id,
        len(cleaned),
        style_preset,
    )
    return batch


async def get_batch_with_items(store: JobStore, batch_id: str, user_id: str) -> BatchJob:
    batch = await store.get_batch(batch_id, user_id)
    if batch is None:
        raise NotFoundError("Batch job not found")
    return batch


async def list_user_batches(store: JobStore, user_id: str) -> list[BatchJob]:
    return await store.list_batches(user_id)


async def cancel_batch(store: JobStore, batch_id: str, user_id: str) -> BatchJob:
    """Stop future item pickup. An in-flight generation is not interrupted."""
    batch = await get_batch_with_items(store, batch_id, user_id)
    if batch.status not in ACTIVE_BATCH_STATUSES:
        raise BatchStateError(f"Cannot cancel a batch that is already {batch.status}")
    await store.set_batch_status(batch.id, BatchStatus.CANCELLED)
    batch.status = BatchStatus.CANCELLED
    logger.info("Batch job %s cancelled", batch.id)
    return batch


async def delete_batch(store: JobStore, batch_id: str, user_id: str) -> None:
    batch = await get_batch_with_items(store, batch_id, user_id)
    if batch.status in ACTIVE_BATCH_STATUSES:
        raise BatchStateError("Only completed, failed or cancelled batches can be deleted")
    await store.delete_batch(batch.id)
    logger.info("Batch job %s deleted", batch.id)
