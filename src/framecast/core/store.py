"""JobStore — persistence surface used by the scheduler and batch processor."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from framecast.db.session import get_session_factory
from framecast.models.batch import (
    ACTIVE_BATCH_STATUSES,
    BatchItemStatus,
    BatchJob,
    BatchJobItem,
    BatchStatus,
)
from framecast.models.device import UserDevice
from framecast.models.schedule import ScheduledJob

logger = logging.getLogger(__name__)

# Stored error messages are truncated to this many characters
MAX_ERROR_LENGTH = 2000


def _progress_update(batch_id: str, succeeded: bool):
    column = BatchJob.completed_count if succeeded else BatchJob.failed_count
    # Single UPDATE so concurrent readers never see a torn read-modify-write
    return (
        update(BatchJob)
        .where(
            BatchJob.id == batch_id,
            BatchJob.completed_count + BatchJob.failed_count < BatchJob.total_count,
        )
        .values({column: column + 1})
    )


class JobStore(ABC):
    """Abstract persistence for scheduled jobs, batch jobs and batch items.

    The scheduler and batch processor are the only writers of runtime and
    progress fields; API handlers only write content fields.
    """

    # ── Scheduled jobs ────────────────────────────────────────────────────

    @abstractmethod
    async def find_due_scheduled_jobs(self, as_of: datetime) -> list[ScheduledJob]:
        """Enabled jobs whose next_run_at is at or before ``as_of``."""

    @abstractmethod
    async def record_job_success(
        self, job_id: str, ran_at: datetime, next_run_at: datetime | None
    ) -> None:
        """Set last_run_at, next_run_at, bump run_count, clear last_error.

        A None ``next_run_at`` disables the job.
        """

    @abstractmethod
    async def record_job_failure(
        self, job_id: str, ran_at: datetime, error: str, next_run_at: datetime | None
    ) -> None:
        """Record last_error and the recomputed next_run_at; None disables the job."""

    @abstractmethod
    async def has_sync_target(self, user_id: str) -> bool:
        """Whether the user has at least one device that can receive images."""

    # ── Batches ───────────────────────────────────────────────────────────

    @abstractmethod
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
        """Create a pending batch with one item per prompt, in order."""

    @abstractmethod
    async def get_batch(self, batch_id: str, user_id: str | None = None) -> BatchJob | None:
        """Load a batch with its items; ``user_id`` restricts to the owner."""

    @abstractmethod
    async def list_batches(self, user_id: str) -> list[BatchJob]:
        """All batches owned by ``user_id``, newest first."""

    @abstractmethod
    async def set_batch_status(self, batch_id: str, status: BatchStatus) -> None: ...

    @abstractmethod
    async def delete_batch(self, batch_id: str) -> None: ...

    @abstractmethod
    async def find_oldest_active_batch(self) -> BatchJob | None:
        """The oldest batch in pending or processing status."""

    @abstractmethod
    async def list_active_batches(self) -> list[BatchJob]:
        """All pending or processing batches, oldest first."""

    @abstractmethod
    async def mark_batch_started(self, batch_id: str, at: datetime) -> None:
        """Move a pending batch to processing."""

    @abstractmethod
    async def find_next_pending_item(
        self, batch_id: str, lease_expired_before: datetime
    ) -> BatchJobItem | None:
        """First item in creation order that is pending, or processing with an expired lease."""

    @abstractmethod
    async def claim_item(self, item_id: str, at: datetime) -> None:
        """Mark the item processing, take a lease at ``at`` and bump attempt_count."""

    @abstractmethod
    async def finish_item(
        self,
        batch_id: str,
        item_id: str,
        *,
        succeeded: bool,
        at: datetime,
        image_id: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Complete or fail an item and bump the batch counter in one transaction.

        If either write fails neither is applied, so the item stays leased and
        a terminal batch always has completed_count + failed_count == total_count.
        Returns False when the counter increment was refused.
        """

    @abstractmethod
    async def mark_item_synced(self, item_id: str) -> None: ...

    @abstractmethod
    async def increment_batch_progress(self, batch_id: str, succeeded: bool) -> bool:
        """Atomically bump completed_count or failed_count.

        Never lets completed_count + failed_count exceed total_count; returns
        False when the increment was refused.
        """

    @abstractmethod
    async def count_open_items(self, batch_id: str) -> int:
        """Number of items still pending or processing."""

    @abstractmethod
    async def finalize_batch(self, batch_id: str, at: datetime) -> BatchJob | None:
        """Re-read fresh counts and move an active batch to completed or failed.

        A batch that is no longer active (e.g. cancelled) is returned unchanged.
        """


class SqlJobStore(JobStore):
    """SQLAlchemy async implementation. Every call uses its own short session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def _execute(self, stmt) -> int:
        async with self._factory()() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    # ── Scheduled jobs ────────────────────────────────────────────────────

    async def find_due_scheduled_jobs(self, as_of: datetime) -> list[ScheduledJob]:
        async with self._factory()() as session:
            result = await session.execute(
                select(ScheduledJob)
                .where(
                    ScheduledJob.is_enabled.is_(True),
                    ScheduledJob.next_run_at.is_not(None),
                    ScheduledJob.next_run_at <= as_of,
                )
                .order_by(ScheduledJob.next_run_at)
            )
            return list(result.scalars().all())

    async def record_job_success(
        self, job_id: str, ran_at: datetime, next_run_at: datetime | None
    ) -> None:
        values = {
            "last_run_at": ran_at,
            "next_run_at": next_run_at,
            "run_count": ScheduledJob.run_count + 1,
            "last_error": None,
        }
        if next_run_at is None:
            values["is_enabled"] = False
        await self._execute(update(ScheduledJob).where(ScheduledJob.id == job_id).values(**values))

    async def record_job_failure(
        self, job_id: str, ran_at: datetime, error: str, next_run_at: datetime | None
    ) -> None:
        values = {
            "last_run_at": ran_at,
            "next_run_at": next_run_at,
            "last_error": error[:MAX_ERROR_LENGTH],
        }
        if next_run_at is None:
            values["is_enabled"] = False
        await self._execute(update(ScheduledJob).where(ScheduledJob.id == job_id).values(**values))

    async def has_sync_target(self, user_id: str) -> bool:
        async with self._factory()() as session:
            count = await session.scalar(
                select(func.count(UserDevice.id)).where(
                    UserDevice.user_id == user_id,
                    UserDevice.webhook_uuid.is_not(None),
                )
            )
            return bool(count)

    # ── Batches ───────────────────────────────────────────────────────────

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
        async with self._factory()() as session:
            batch = BatchJob(
                user_id=user_id,
                name=name,
                status=BatchStatus.PENDING,
                total_count=len(prompts),
                completed_count=0,
                failed_count=0,
                size=size,
                style_preset=style_preset,
                auto_sync_device=auto_sync_device,
            )
            batch.items = [
                BatchJobItem(position=index, prompt=prompt, status=BatchItemStatus.PENDING)
                for index, prompt in enumerate(prompts)
            ]
            session.add(batch)
            await session.commit()
            return batch

    async def get_batch(self, batch_id: str, user_id: str | None = None) -> BatchJob | None:
        stmt = (
            select(BatchJob)
            .options(selectinload(BatchJob.items))
            .where(BatchJob.id == batch_id)
        )
        if user_id is not None:
            stmt = stmt.where(BatchJob.user_id == user_id)
        async with self._factory()() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_batches(self, user_id: str) -> list[BatchJob]:
        async with self._factory()() as session:
            result = await session.execute(
                select(BatchJob)
                .where(BatchJob.user_id == user_id)
                .order_by(BatchJob.created_at.desc())
            )
            return list(result.scalars().all())

    async def set_batch_status(self, batch_id: str, status: BatchStatus) -> None:
        await self._execute(update(BatchJob).where(BatchJob.id == batch_id).values(status=status))

    async def delete_batch(self, batch_id: str) -> None:
        await self._execute(delete(BatchJob).where(BatchJob.id == batch_id))

    async def find_oldest_active_batch(self) -> BatchJob | None:
        async with self._factory()() as session:
            result = await session.execute(
                select(BatchJob)
                .where(BatchJob.status.in_(ACTIVE_BATCH_STATUSES))
                .order_by(BatchJob.created_at, BatchJob.id)
                .limit(1)
            )
            return result.scalars().first()

    async def list_active_batches(self) -> list[BatchJob]:
        async with self._factory()() as session:
            result = await session.execute(
                select(BatchJob)
                .where(BatchJob.status.in_(ACTIVE_BATCH_STATUSES))
                .order_by(BatchJob.created_at, BatchJob.id)
            )
            return list(result.scalars().all())

    async def mark_batch_started(self, batch_id: str, at: datetime) -> None:
        await self._execute(
            update(BatchJob)
            .where(BatchJob.id == batch_id, BatchJob.status == BatchStatus.PENDING)
            .values(status=BatchStatus.PROCESSING, started_at=at)
        )

    async def find_next_pending_item(
        self, batch_id: str, lease_expired_before: datetime
    ) -> BatchJobItem | None:
        async with self._factory()() as session:
            result = await session.execute(
                select(BatchJobItem)
                .where(
                    BatchJobItem.batch_id == batch_id,
                    or_(
                        BatchJobItem.status == BatchItemStatus.PENDING,
                        and_(
                            BatchJobItem.status == BatchItemStatus.PROCESSING,
                            or_(
                                BatchJobItem.leased_at.is_(None),
                                BatchJobItem.leased_at < lease_expired_before,
                            ),
                        ),
                    ),
                )
                .order_by(BatchJobItem.position)
                .limit(1)
            )
            return result.scalars().first()

    async def claim_item(self, item_id: str, at: datetime) -> None:
        await self._execute(
            update(BatchJobItem)
            .where(BatchJobItem.id == item_id)
            .values(
                status=BatchItemStatus.PROCESSING,
                leased_at=at,
                attempt_count=BatchJobItem.attempt_count + 1,
            )
        )

    async def finish_item(
        self,
        batch_id: str,
        item_id: str,
        *,
        succeeded: bool,
        at: datetime,
        image_id: str | None = None,
        error: str | None = None,
    ) -> bool:
        if succeeded:
            values = {
                "status": BatchItemStatus.COMPLETED,
                "image_id": image_id,
                "error_message": None,
            }
        else:
            values = {
                "status": BatchItemStatus.FAILED,
                "error_message": (error or "")[:MAX_ERROR_LENGTH],
            }
        async with self._factory()() as session:
            await session.execute(
                update(BatchJobItem)
                .where(BatchJobItem.id == item_id)
                .values(leased_at=None, completed_at=at, **values)
            )
            result = await session.execute(_progress_update(batch_id, succeeded))
            await session.commit()
        counted = (result.rowcount or 0) > 0
        if not counted:
            logger.warning("Refused progress increment for batch %s (already full)", batch_id)
        return counted

    async def mark_item_synced(self, item_id: str) -> None:
        await self._execute(
            update(BatchJobItem).where(BatchJobItem.id == item_id).values(synced_to_device=True)
        )

    async def increment_batch_progress(self, batch_id: str, succeeded: bool) -> bool:
        rowcount = await self._execute(_progress_update(batch_id, succeeded))
        if not rowcount:
            logger.warning("Refused progress increment for batch %s (already full)", batch_id)
        return rowcount > 0

    async def count_open_items(self, batch_id: str) -> int:
        async with self._factory()() as session:
            count = await session.scalar(
                select(func.count(BatchJobItem.id)).where(
                    BatchJobItem.batch_id == batch_id,
                    BatchJobItem.status.in_(
                        (BatchItemStatus.PENDING, BatchItemStatus.PROCESSING)
                    ),
                )
            )
            return int(count or 0)

    async def finalize_batch(self, batch_id: str, at: datetime) -> BatchJob | None:
        async with self._factory()() as session:
            result = await session.execute(
                select(BatchJob)
                .where(BatchJob.id == batch_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            batch = result.scalar_one_or_none()
            if batch is None or batch.status not in ACTIVE_BATCH_STATUSES:
                return batch
            batch.status = (
                BatchStatus.COMPLETED if batch.completed_count > 0 else BatchStatus.FAILED
            )
            batch.completed_at = at
            await session.commit()
            return batch
