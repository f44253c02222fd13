"""SQLAlchemy ORM Models for the trip planner.

Only the tables the notification and poll-expiry machinery reads or
writes are mapped here; itinerary, expense and chat tables live with the
HTTP application.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, CreatedAtMixin, IntIdMixin, JSONType


# =============================================================================
# ENUMS
# =============================================================================


class PollStatus(str, PyEnum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    TIE = "TIE"  # Two or more options share the top vote count


class NotificationType(str, PyEnum):
    POLL_CREATED = "POLL_CREATED"
    POLL_COMPLETE = "POLL_COMPLETED"
    EVENT_CREATED = "EVENT_CREATED"
    EVENT_UPDATED = "EVENT_UPDATED"
    EVENT_DELETED = "EVENT_DELETED"
    EVENT_REMINDER = "EVENT_REMINDER"
    EVENT_ASSIGNMENT = "EVENT_ASSIGNMENT"
    EVENT_UNASSIGNMENT = "EVENT_UNASSIGNMENT"
    EVENT_NOTE_ADDED = "EVENT_NOTE_ADDED"
    EXPENSE_CREATED = "EXPENSE_CREATED"
    EXPENSE_SHARE_ADDED = "EXPENSE_SHARE_ADDED"
    EXPENSE_SHARE_SETTLED = "EXPENSE_SHARE_SETTLED"
    LOCATION_MARKED = "LOCATION_MARKED"
    LOCATION_NOTE_UPDATED = "LOCATION_NOTE_UPDATED"
    INVITE_REJECTED = "INVITE_REJECTED"
    MEMBER_JOINED = "MEMBER_JOINED"
    MEMBER_LEFT = "MEMBER_LEFT"
    MEMBER_REMOVED = "MEMBER_REMOVED"
    MEMBERS_REMOVED = "MEMBERS_REMOVED"
    MEMBER_ROLE_UPDATED = "MEMBER_ROLE_UPDATED"
    TRIP_UPDATED = "TRIP_UPDATED"
    TRIP_DELETED = "TRIP_DELETED"


class NotificationChannel(str, PyEnum):
    """Delivery channel. Advisory only; every row is shown in-app."""
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"


class MemberRole(str, PyEnum):
    CREATOR = "creator"
    ADMIN = "admin"
    MEMBER = "member"


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# Shared by both notification tables so PostgreSQL gets one type each
notification_type_enum = _enum(NotificationType, "notification_type")
notification_channel_enum = _enum(NotificationChannel, "notification_channel")


# =============================================================================
# TRIPS & MEMBERSHIP
# =============================================================================


class Trip(Base, IntIdMixin, CreatedAtMixin):
    """A group trip. Users are referenced by their auth-provider id."""

    __tablename__ = "trips"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)

    members: Mapped[list["TripMember"]] = relationship(
        back_populates="trip", cascade="all, delete-orphan"
    )
    polls: Mapped[list["Poll"]] = relationship(
        back_populates="trip", cascade="all, delete-orphan"
    )


class TripMember(Base, IntIdMixin):
    __tablename__ = "trip_members"

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[MemberRole] = mapped_column(
        _enum(MemberRole, "member_role"), default=MemberRole.MEMBER, nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )

    trip: Mapped["Trip"] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("trip_id", "user_id", name="uq_trip_members_trip_user"),
        Index("idx_trip_members_user", "user_id"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class ScheduledNotification(Base, IntIdMixin, CreatedAtMixin):
    """A notification waiting for its send time.

    Flipped to is_sent exactly once by the dispatcher and never deleted
    by it; feature code may delete rows that are still pending.
    """

    __tablename__ = "scheduled_notifications"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trip_id: Mapped[int | None] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(
        notification_type_enum, nullable=False
    )
    related_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    channel: Mapped[NotificationChannel] = mapped_column(
        notification_channel_enum,
        default=NotificationChannel.IN_APP,
        nullable=False,
    )
    send_at: Mapped[datetime] = mapped_column(nullable=False)
    is_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_scheduled_notifications_due", "is_sent", "send_at"),
        Index("idx_scheduled_notifications_related", "related_id", "type"),
    )


class Notification(Base, IntIdMixin, CreatedAtMixin):
    """Recipient-facing notification. Append-only for the background job."""

    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trip_id: Mapped[int | None] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(
        notification_type_enum, nullable=False
    )
    related_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    channel: Mapped[NotificationChannel] = mapped_column(
        notification_channel_enum,
        default=NotificationChannel.IN_APP,
        nullable=False,
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_notifications_user", "user_id", "created_at"),
    )


# =============================================================================
# POLLS
# =============================================================================


class Poll(Base, IntIdMixin, CreatedAtMixin):
    """A trip poll. Status moves ACTIVE -> COMPLETED or TIE, once."""

    __tablename__ = "polls"

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"), nullable=False
    )
    question: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[PollStatus] = mapped_column(
        _enum(PollStatus, "poll_status"), default=PollStatus.ACTIVE, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    winner_id: Mapped[int | None] = mapped_column(
        ForeignKey(
            "poll_options.id",
            use_alter=True,
            name="fk_polls_winner_id_poll_options",
            ondelete="SET NULL",
        ),
        nullable=True,
    )
    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)

    trip: Mapped["Trip"] = relationship(back_populates="polls")
    options: Mapped[list["PollOption"]] = relationship(
        back_populates="poll",
        foreign_keys="PollOption.poll_id",
        cascade="all, delete-orphan",
        order_by="PollOption.id",
    )
    winner: Mapped["PollOption | None"] = relationship(
        foreign_keys=[winner_id], post_update=True
    )

    __table_args__ = (
        Index("idx_polls_status_expires", "status", "expires_at"),
        Index("idx_polls_trip", "trip_id"),
    )


class PollOption(Base, IntIdMixin):
    __tablename__ = "poll_options"

    poll_id: Mapped[int] = mapped_column(
        ForeignKey("polls.id", ondelete="CASCADE"), nullable=False
    )
    option: Mapped[str] = mapped_column(String(255), nullable=False)

    poll: Mapped["Poll"] = relationship(
        back_populates="options", foreign_keys=[poll_id]
    )
    votes: Mapped[list["Vote"]] = relationship(
        back_populates="option", cascade="all, delete-orphan"
    )


class Vote(Base, IntIdMixin, CreatedAtMixin):
    """One vote per user per poll."""

    __tablename__ = "votes"

    poll_id: Mapped[int] = mapped_column(
        ForeignKey("polls.id", ondelete="CASCADE"), nullable=False
    )
    poll_option_id: Mapped[int] = mapped_column(
        ForeignKey("poll_options.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    option: Mapped["PollOption"] = relationship(back_populates="votes")

    __table_args__ = (
        UniqueConstraint("poll_id", "user_id", name="uq_votes_poll_user"),
        Index("idx_votes_option", "poll_option_id"),
    )
