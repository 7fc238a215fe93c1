"""ScheduledJob model — recurring image generation definitions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from framecast.db.session import Base
from framecast.models.base import TimestampMixin, uuid_primary_key


class ScheduledJob(Base, TimestampMixin):
    __tablename__ = "scheduled_jobs"
    __table_args__ = (Index("ix_scheduled_jobs_due", "is_enabled", "next_run_at"),)

    id: Mapped[str] = uuid_primary_key()
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Content (written by the API only)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[str] = mapped_column(String(20), default="1024x1024")
    style_preset: Mapped[str | None] = mapped_column(String(50))

    # Recurrence spec
    schedule_type: Mapped[str] = mapped_column(String(10), default="once", nullable=False)
    schedule_time: Mapped[str | None] = mapped_column(String(5))
    schedule_days: Mapped[list[int] | None] = mapped_column(JSON)
    # Local wall-clock datetime in ``timezone``, not UTC
    scheduled_at: Mapped[str | None] = mapped_column(String(32))
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    # Runtime state (written by the scheduler only)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    auto_sync_device: Mapped[bool] = mapped_column(Boolean, default=False)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text)

    user: Mapped[User] = relationship(back_populates="scheduled_jobs")  # noqa: F821

    def __repr__(self) -> str:
        return f"<ScheduledJob {self.schedule_type!r} id={self.id!r}>"
