"""Shared fixtures: an in-memory JobStore and a manually advanced clock."""

from __future__ import annotations

import os
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_PASSWORD", "test-password")

from framecast.core.clock import TimeZoneClock  # noqa: E402
from framecast.core.store import JobStore  # noqa: E402
from framecast.models import (  # noqa: E402
    BatchItemStatus,
    BatchJob,
    BatchJobItem,
    BatchStatus,
    ScheduledJob,
)
from framecast.models.base import new_uuid  # noqa: E402

OPEN_ITEM_STATUSES = (BatchItemStatus.PENDING, BatchItemStatus.PROCESSING)


class ManualTime:
    """Wall clock and monotonic clock that only move when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start
        self.mono = 1000.0

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self.mono += seconds

    def clock(self) -> TimeZoneClock:
        return TimeZoneClock(lambda: self.now)

    def monotonic(self) -> float:
        return self.mono


class FakeJobStore(JobStore):
    """Dict-backed JobStore holding transient model instances."""

    def __init__(self) -> None:
        self.jobs: dict[str, ScheduledJob] = {}
        self.batches: dict[str, BatchJob] = {}
        self.items: dict[str, BatchJobItem] = {}
        self.sync_targets: set[str] = set()
        self.synced_items: list[str] = []
        self._batch_order: list[str] = []

    # ── helpers ─────────────────────────────────────────────────────────────

    def add_job(self, **fields) -> ScheduledJob:
        values = {
            "id": new_uuid(),
            "user_id": "user-1",
            "prompt": "a lighthouse at dusk",
            "size": "1024x1024",
            "style_preset": None,
            "schedule_type": "daily",
            "schedule_time": "09:00",
            "schedule_days": None,
            "scheduled_at": None,
            "timezone": "UTC",
            "is_enabled": True,
            "auto_sync_device": False,
            "last_run_at": None,
            "next_run_at": None,
            "run_count": 0,
            "last_error": None,
        }
        values.update(fields)
        job = ScheduledJob(**values)
        self.jobs[job.id] = job
        return job

    def items_of(self, batch_id: str) -> list[BatchJobItem]:
        return sorted(
            (i for i in self.items.values() if i.batch_id == batch_id), key=lambda i: i.position
        )

    # ── scheduled jobs ──────────────────────────────────────────────────────

    async def find_due_scheduled_jobs(self, as_of: datetime) -> list[ScheduledJob]:
        due = [
            j
            for j in self.jobs.values()
            if j.is_enabled and j.next_run_at is not None and j.next_run_at <= as_of
        ]
        return sorted(due, key=lambda j: j.next_run_at)

    async def record_job_success(self, job_id, ran_at, next_run_at) -> None:
        job = self.jobs[job_id]
        job.last_run_at = ran_at
        job.next_run_at = next_run_at
        job.run_count += 1
        job.last_error = None
        if next_run_at is None:
            job.is_enabled = False

    async def record_job_failure(self, job_id, ran_at, error, next_run_at) -> None:
        job = self.jobs[job_id]
        job.last_run_at = ran_at
        job.next_run_at = next_run_at
        job.last_error = error
        if next_run_at is None:
            job.is_enabled = False

    async def has_sync_target(self, user_id: str) -> bool:
        return user_id in self.sync_targets

    # ── batches ─────────────────────────────────────────────────────────────

    async def create_batch(
        self,
        *,
        user_id: str,
        name: str | None,
        prompts: Sequence[str],
        size: str,
        style_preset: str | None,
        auto_sync_device: bool,
    ) -> BatchJob:
        batch = BatchJob(
            id=new_uuid(),
            user_id=user_id,
            name=name,
            status=BatchStatus.PENDING,
            total_count=len(prompts),
            completed_count=0,
            failed_count=0,
            size=size,
            style_preset=style_preset,
            auto_sync_device=auto_sync_device,
            started_at=None,
            completed_at=None,
        )
        items = [
            BatchJobItem(
                id=new_uuid(),
                batch_id=batch.id,
                position=index,
                prompt=prompt,
                status=BatchItemStatus.PENDING,
                image_id=None,
                error_message=None,
                attempt_count=0,
                leased_at=None,
                synced_to_device=False,
                completed_at=None,
            )
            for index, prompt in enumerate(prompts)
        ]
        batch.items = items
        self.batches[batch.id] = batch
        self._batch_order.append(batch.id)
        for item in items:
            self.items[item.id] = item
        return batch

    async def get_batch(self, batch_id, user_id=None) -> BatchJob | None:
        batch = self.batches.get(batch_id)
        if batch is None or (user_id is not None and batch.user_id != user_id):
            return None
        return batch

    async def list_batches(self, user_id: str) -> list[BatchJob]:
        return [
            self.batches[b]
            for b in reversed(self._batch_order)
            if b in self.batches and self.batches[b].user_id == user_id
        ]

    async def set_batch_status(self, batch_id, status) -> None:
        self.batches[batch_id].status = status

    async def delete_batch(self, batch_id) -> None:
        self.batches.pop(batch_id)
        for item_id in [i.id for i in self.items.values() if i.batch_id == batch_id]:
            del self.items[item_id]

    async def find_oldest_active_batch(self) -> BatchJob | None:
        active = await self.list_active_batches()
        return active[0] if active else None

    async def list_active_batches(self) -> list[BatchJob]:
        return [
            self.batches[b]
            for b in self._batch_order
            if b in self.batches
            and self.batches[b].status in (BatchStatus.PENDING, BatchStatus.PROCESSING)
        ]

    async def mark_batch_started(self, batch_id, at) -> None:
        batch = self.batches[batch_id]
        if batch.status == BatchStatus.PENDING:
            batch.status = BatchStatus.PROCESSING
            batch.started_at = at

    async def find_next_pending_item(self, batch_id, lease_expired_before):
        for item in self.items_of(batch_id):
            if item.status == BatchItemStatus.PENDING:
                return item
            if item.status == BatchItemStatus.PROCESSING and (
                item.leased_at is None or item.leased_at < lease_expired_before
            ):
                return item
        return None

    async def claim_item(self, item_id, at) -> None:
        item = self.items[item_id]
        item.status = BatchItemStatus.PROCESSING
        item.leased_at = at
        item.attempt_count += 1

    async def finish_item(
        self, batch_id, item_id, *, succeeded, at, image_id=None, error=None
    ) -> bool:
        item = self.items[item_id]
        if succeeded:
            item.status = BatchItemStatus.COMPLETED
            item.image_id = image_id
            item.error_message = None
        else:
            item.status = BatchItemStatus.FAILED
            item.error_message = error
        item.leased_at = None
        item.completed_at = at
        return await self.increment_batch_progress(batch_id, succeeded)

    async def mark_item_synced(self, item_id) -> None:
        self.items[item_id].synced_to_device = True
        self.synced_items.append(item_id)

    async def increment_batch_progress(self, batch_id, succeeded) -> bool:
        batch = self.batches[batch_id]
        if batch.completed_count + batch.failed_count >= batch.total_count:
            return False
        if succeeded:
            batch.completed_count += 1
        else:
            batch.failed_count += 1
        return True

    async def count_open_items(self, batch_id) -> int:
        return sum(1 for i in self.items_of(batch_id) if i.status in OPEN_ITEM_STATUSES)

    async def finalize_batch(self, batch_id, at) -> BatchJob | None:
        batch = self.batches.get(batch_id)
        if batch is None or batch.status not in (BatchStatus.PENDING, BatchStatus.PROCESSING):
            return batch
        batch.status = BatchStatus.COMPLETED if batch.completed_count > 0 else BatchStatus.FAILED
        batch.completed_at = at
        return batch


@pytest.fixture
def store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def manual_time() -> ManualTime:
    # Thursday 2026-03-05 12:00 UTC
    return ManualTime(datetime(2026, 3, 5, 12, 0, tzinfo=UTC))
