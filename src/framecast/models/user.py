"""User model."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from framecast.db.session import Base
from framecast.models.base import TimestampMixin, uuid_primary_key


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = uuid_primary_key()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")

    # Relationships
    scheduled_jobs: Mapped[list["ScheduledJob"]] = relationship(  # noqa: F821
        back_populates="user", cascade="all, delete-orphan"
    )
    batch_jobs: Mapped[list["BatchJob"]] = relationship(  # noqa: F821
        back_populates="user", cascade="all, delete-orphan"
    )
    devices: Mapped[list["UserDevice"]] = relationship(  # noqa: F821
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.username!r}>"
