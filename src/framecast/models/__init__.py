"""SQLAlchemy models package."""

from framecast.models.base import TimestampMixin
from framecast.models.batch import BatchItemStatus, BatchJob, BatchJobItem, BatchStatus
from framecast.models.device import UserDevice
from framecast.models.image import GeneratedImage
from framecast.models.schedule import ScheduledJob
from framecast.models.token import RefreshToken, RevokedToken
from framecast.models.user import User

__all__ = [
    "TimestampMixin",
    "User",
    "UserDevice",
    "ScheduledJob",
    "BatchJob",
    "BatchJobItem",
    "BatchStatus",
    "BatchItemStatus",
    "GeneratedImage",
    "RevokedToken",
    "RefreshToken",
]
