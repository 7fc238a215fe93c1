"""Shared column helpers for the Framecast schema.

Every table is keyed by a UUID string and carries server-maintained
timestamps. MySQL hands ``DATETIME`` values back naive; readers that compare
them against aware instants go through ``framecast.core.clock.ensure_utc``.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

UUID_LENGTH = 36


def new_uuid() -> str:
    return str(uuid.uuid4())


def uuid_primary_key() -> Mapped[str]:
    """``id`` column filled client-side, so ids exist before the first flush."""
    return mapped_column(String(UUID_LENGTH), primary_key=True, default=new_uuid)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    # The migration also sets ON UPDATE CURRENT_TIMESTAMP for writes that bypass the ORM
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
