"""TRMNL display devices a user can push images to."""

from __future__ import annotations

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from framecast.db.session import Base
from framecast.models.base import TimestampMixin, uuid_primary_key


class UserDevice(Base, TimestampMixin):
    __tablename__ = "user_devices"

    id: Mapped[str] = uuid_primary_key()
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    webhook_uuid: Mapped[str | None] = mapped_column(String(64))

    user: Mapped[User] = relationship(back_populates="devices")  # noqa: F821

    def __repr__(self) -> str:
        return f"<UserDevice {self.name!r} id={self.id!r}>"
