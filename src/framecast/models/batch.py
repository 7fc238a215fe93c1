"""BatchJob and BatchJobItem models."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from framecast.db.session import Base
from framecast.models.base import TimestampMixin, uuid_primary_key


class BatchStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_BATCH_STATUSES = frozenset(
    {BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED}
)
ACTIVE_BATCH_STATUSES = frozenset({BatchStatus.PENDING, BatchStatus.PROCESSING})


class BatchItemStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchJob(Base, TimestampMixin):
    __tablename__ = "batch_jobs"

    id: Mapped[str] = uuid_primary_key()
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus, values_callable=lambda obj: [e.value for e in obj]),
        default=BatchStatus.PENDING,
        nullable=False,
        index=True,
    )
    total_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    size: Mapped[str] = mapped_column(String(20), default="1024x1024")
    style_preset: Mapped[str | None] = mapped_column(String(50))
    auto_sync_device: Mapped[bool] = mapped_column(Boolean, default=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped[User] = relationship(back_populates="batch_jobs")  # noqa: F821
    items: Mapped[list[BatchJobItem]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchJobItem.position",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES

    def __repr__(self) -> str:
        return f"<BatchJob {self.id!r} status={self.status!r}>"


class BatchJobItem(Base, TimestampMixin):
    __tablename__ = "batch_job_items"

    id: Mapped[str] = uuid_primary_key()
    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("batch_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Creation order within the batch; items are processed FIFO by position
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[BatchItemStatus] = mapped_column(
        Enum(BatchItemStatus, values_callable=lambda obj: [e.value for e in obj]),
        default=BatchItemStatus.PENDING,
        nullable=False,
        index=True,
    )
    image_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("generated_images.id", ondelete="SET NULL")
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    leased_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    synced_to_device: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    batch: Mapped[BatchJob] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<BatchJobItem {self.id!r} status={self.status!r}>"
