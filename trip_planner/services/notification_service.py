"""
Notification Service: creates in-app notifications for trip members.

This module is responsible for:
1. Writing immediate notifications to the recipient-facing table
2. Deferring notifications with a future send time to the scheduled table,
   where the reconciliation job picks them up once due
3. Fanning a notification out to the members of a trip
4. Removing pending scheduled notifications for an entity

The service never commits; the caller owns the transaction.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Notification,
    NotificationChannel,
    NotificationType,
    ScheduledNotification,
    TripMember,
)


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NotificationOptions:
    """What to tell the recipients."""
    type: NotificationType
    title: str
    message: str
    related_id: int | None = None
    data: dict[str, Any] | None = None
    channel: NotificationChannel = NotificationChannel.IN_APP
    send_at: datetime | None = None


class NotificationService:
    """Creates and schedules notifications within a caller-provided session."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._clock = clock

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_notification(
        self,
        user_ids: Sequence[str],
        trip_id: int | None,
        options: NotificationOptions,
    ) -> int:
        """
        Create one notification per user.

        If options.send_at lies in the future the rows go to the scheduled
        table instead of being shown right away.

        Returns:
            Number of rows written
        """
        if not user_ids:
            return 0

        if options.send_at is not None and options.send_at > self._clock():
            rows = [
                ScheduledNotification(
                    user_id=user_id,
                    trip_id=trip_id,
                    type=options.type,
                    related_id=options.related_id,
                    title=options.title,
                    message=options.message,
                    data=options.data,
                    channel=options.channel,
                    send_at=options.send_at,
                    is_sent=False,
                )
                for user_id in user_ids
            ]
            logger.debug(
                f"[Notification] Scheduling {len(rows)} {options.type.value} "
                f"notifications for {options.send_at.isoformat()}"
            )
        else:
            rows = [
                Notification(
                    user_id=user_id,
                    trip_id=trip_id,
                    type=options.type,
                    related_id=options.related_id,
                    title=options.title,
                    message=options.message,
                    data=options.data,
                    channel=options.channel,
                )
                for user_id in user_ids
            ]

        self._session.add_all(rows)
        await self._session.flush()
        return len(rows)

    async def remove_scheduled_notifications(
        self,
        related_id: int,
        types: Iterable[NotificationType] | None = None,
    ) -> int:
        """
        Remove pending scheduled notifications for an entity
        (e.g. an itinerary event that was deleted or rescheduled).

        Args:
            related_id: The id of the related entity
            types: Only remove these notification types; all types if omitted

        Returns:
            Number of rows removed
        """
        types = list(types or [])
        stmt = delete(ScheduledNotification).where(
            ScheduledNotification.related_id == related_id,
            ScheduledNotification.is_sent.is_(False),
        )
        if types:
            stmt = stmt.where(ScheduledNotification.type.in_(types))

        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        removed = result.rowcount or 0
        type_names = ", ".join(t.value for t in types) if types else "ALL"
        logger.info(
            f"[Notification] Removed {removed} scheduled notifications for "
            f"relatedId: {related_id}, types: {type_names}"
        )
        return removed

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def get_trip_member_ids(self, trip_id: int) -> list[str]:
        result = await self._session.execute(
            select(TripMember.user_id)
            .where(TripMember.trip_id == trip_id)
            .order_by(TripMember.id)
        )
        return list(result.scalars().all())

    async def notify_trip_members(
        self,
        trip_id: int,
        options: NotificationOptions,
    ) -> int:
        """Notify every current member of the trip."""
        return await self.notify_trip_members_except(trip_id, [], options)

    async def notify_trip_members_except(
        self,
        trip_id: int,
        exclude_user_ids: Iterable[str],
        options: NotificationOptions,
    ) -> int:
        """Notify all trip members except the given users."""
        excluded = set(exclude_user_ids)
        user_ids = [
            user_id
            for user_id in await self.get_trip_member_ids(trip_id)
            if user_id not in excluded
        ]
        return await self.create_notification(user_ids, trip_id, options)

    async def notify_trip_members_except_creator(
        self,
        trip_id: int,
        creator_user_id: str,
        options: NotificationOptions,
    ) -> int:
        """Notify all trip members except whoever created the poll/expense/etc."""
        return await self.notify_trip_members_except(trip_id, [creator_user_id], options)

    async def notify_individual(
        self,
        user_id: str,
        trip_id: int | None,
        options: NotificationOptions,
    ) -> int:
        return await self.create_notification([user_id], trip_id, options)
