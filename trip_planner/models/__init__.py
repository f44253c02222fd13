"""SQLAlchemy ORM Models for the trip planner."""

from .base import Base, CreatedAtMixin, IntIdMixin, JSONType
from .models import (
    # Enums
    MemberRole,
    NotificationChannel,
    NotificationType,
    PollStatus,
    # Trips
    Trip,
    TripMember,
    # Notifications
    Notification,
    ScheduledNotification,
    # Polls
    Poll,
    PollOption,
    Vote,
)

__all__ = [
    # Base
    "Base",
    "IntIdMixin",
    "CreatedAtMixin",
    "JSONType",
    # Enums
    "MemberRole",
    "NotificationChannel",
    "NotificationType",
    "PollStatus",
    # Trips
    "Trip",
    "TripMember",
    # Notifications
    "Notification",
    "ScheduledNotification",
    # Polls
    "Poll",
    "PollOption",
    "Vote",
]
