"""
Scheduled Notification Dispatcher.

Delivers scheduled notifications whose send time has arrived by copying
them into the recipient-facing notifications table.

Ordering is the whole point of this module:
1. Claim the due rows (is_sent = true), guarded by is_sent = false so an
   overlapping tick or a second replica cannot claim the same row
2. Commit the claim
3. Insert one Notification per claimed row

A crash, error or pass timeout between 2 and 3 loses those notifications
instead of delivering them twice (at-most-once). Such losses surface as
PartialDispatchError. With single_transaction=True the claim and the
inserts commit together and a failure leaves the rows due for next tick.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Notification, ScheduledNotification
from .errors import PartialDispatchError


logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Summary of one dispatcher pass."""
    due_count: int = 0
    claimed_ids: list[int] = field(default_factory=list)
    materialized: int = 0


class ScheduledNotificationDispatcher:
    """Moves due scheduled notifications into the notifications table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        single_transaction: bool = False,
    ):
        self._session_factory = session_factory
        self._single_transaction = single_transaction

    async def dispatch_due(self, now: datetime) -> DispatchResult:
        """
        Deliver every scheduled notification due at `now`.

        Raises:
            PartialDispatchError: claimed rows could not be materialized
                after the claim was committed
        """
        logger.info("[CRON] Checking for due scheduled notifications...")
        result = DispatchResult()

        async with self._session_factory() as session:
            due_rows = await self._find_due(session, now)
            result.due_count = len(due_rows)
            if not due_rows:
                logger.info("[CRON] Processed 0 scheduled notifications")
                return result

            claimed = await self._claim(session, [row.id for row in due_rows])
            claimed_rows = [row for row in due_rows if row.id in claimed]
            result.claimed_ids = [row.id for row in claimed_rows]

            if len(claimed_rows) < len(due_rows):
                logger.info(
                    f"[CRON] {len(due_rows) - len(claimed_rows)} due notifications "
                    f"were already claimed elsewhere"
                )

            if not self._single_transaction:
                await session.commit()

            try:
                session.add_all([self._to_notification(row) for row in claimed_rows])
                await session.commit()
            except (Exception, asyncio.CancelledError) as e:
                # A pass timeout cancels us here too; the claim is already committed
                await session.rollback()
                if self._single_transaction:
                    raise
                raise PartialDispatchError(result.claimed_ids, cause=e) from e

            result.materialized = len(claimed_rows)

        logger.info(f"[CRON] Processed {result.materialized} scheduled notifications")
        return result

    async def _find_due(
        self,
        session: AsyncSession,
        now: datetime,
    ) -> Sequence[ScheduledNotification]:
        query = (
            select(ScheduledNotification)
            .where(
                ScheduledNotification.is_sent.is_(False),
                ScheduledNotification.send_at <= now,
            )
            .order_by(ScheduledNotification.send_at.asc(), ScheduledNotification.id.asc())
        )
        rows = await session.execute(query)
        return rows.scalars().all()

    async def _claim(self, session: AsyncSession, ids: list[int]) -> set[int]:
        """Mark rows sent; returns the ids this call actually flipped."""
        stmt = (
            update(ScheduledNotification)
            .where(
                ScheduledNotification.id.in_(ids),
                ScheduledNotification.is_sent.is_(False),
            )
            .values(is_sent=True)
            .returning(ScheduledNotification.id)
            .execution_options(synchronize_session=False)
        )
        rows = await session.execute(stmt)
        return set(rows.scalars().all())

    @staticmethod
    def _to_notification(row: ScheduledNotification) -> Notification:
        return Notification(
            user_id=row.user_id,
            trip_id=row.trip_id,
            type=row.type,
            related_id=row.related_id,
            title=row.title,
            message=row.message,
            data=row.data,
            channel=row.channel,
        )
