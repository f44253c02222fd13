"""
Poll Expiry Resolver: finalizes polls whose deadline has passed.

Key responsibilities:
1. Scan for ACTIVE polls with expires_at <= now
2. Tally each poll and record COMPLETED (single winner) or TIE
3. Notify every trip member of the outcome, the poll creator included

Each poll is resolved in its own transaction. The status update is
conditional on the poll still being ACTIVE, so a poll is only ever
resolved once even when ticks overlap. A failure rolls back that poll
alone; it stays ACTIVE and is picked up again on the next tick.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..models import NotificationChannel, NotificationType, Poll, PollOption, PollStatus
from .notification_service import NotificationOptions, NotificationService
from .tally import TallyResult, count_votes, tally_votes


logger = logging.getLogger(__name__)

POLL_COMPLETED_TITLE = "Poll Completed"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class PollResolution:
    """How a single poll was resolved."""
    poll_id: int
    status: PollStatus
    winner_id: int | None
    tied_option_ids: list[int]
    completed_at: datetime
    message: str
    notified: int = 0


@dataclass
class ResolutionReport:
    """Summary of one resolver pass."""
    expired_count: int = 0
    resolved: list[PollResolution] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


# =============================================================================
# MESSAGES
# =============================================================================


def build_outcome_message(poll: Poll, tally: TallyResult) -> str:
    """Human readable outcome; zero-vote polls are worded separately from real ties."""
    if not tally.has_votes:
        return f'Poll "{poll.question}" has ended with no votes.'

    labels = {option.id: option.option for option in poll.options}
    if tally.is_tie:
        tied = ", ".join(labels[option_id] for option_id in tally.tied_option_ids)
        return f'Poll "{poll.question}" ended in a tie among the top options: {tied}.'

    return (
        f'Poll "{poll.question}" has been completed. '
        f'The winning option is "{labels[tally.winner_id]}".'
    )


# =============================================================================
# RESOLVER
# =============================================================================


class PollExpiryResolver:
    """Resolves expired polls and announces the result to the trip."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier_factory: Callable[[AsyncSession], NotificationService] = NotificationService,
    ):
        self._session_factory = session_factory
        self._notifier_factory = notifier_factory

    async def resolve_expired(self, now: datetime) -> ResolutionReport:
        """
        Resolve every ACTIVE poll whose deadline is at or before `now`.

        Per-poll failures are logged and recorded in the report, never raised.
        """
        logger.info("[CRON] Checking for expired polls...")
        report = ResolutionReport()

        polls = await self._find_expired(now)
        report.expired_count = len(polls)

        for poll in polls:
            try:
                resolution = await self._resolve_poll(poll)
            except Exception as e:
                logger.exception(f"[CRON] Failed to resolve poll {poll.id}; it stays ACTIVE: {e}")
                report.failed[poll.id] = str(e)
                continue

            if resolution is None:
                report.skipped_ids.append(poll.id)
                continue

            report.resolved.append(resolution)
            logger.info(
                f"[CRON] Poll {poll.id} expired and completed. "
                f"Status: {resolution.status.value}, Winner Option ID: {resolution.winner_id}"
            )

        return report

    async def _find_expired(self, now: datetime) -> Sequence[Poll]:
        async with self._session_factory() as session:
            query = (
                select(Poll)
                .where(
                    Poll.status == PollStatus.ACTIVE,
                    Poll.expires_at <= now,
                )
                .options(selectinload(Poll.options).selectinload(PollOption.votes))
                .order_by(Poll.expires_at.asc(), Poll.id.asc())
            )
            result = await session.execute(query)
            return result.scalars().all()

    async def _resolve_poll(self, poll: Poll) -> PollResolution | None:
        """Resolve one poll; returns None if it was no longer ACTIVE."""
        tally = tally_votes(count_votes(poll.options))
        message = build_outcome_message(poll, tally)

        async with self._session_factory() as session:
            async with session.begin():
                # The poll ends at its deadline, however late this runs
                updated = await session.execute(
                    update(Poll)
                    .where(Poll.id == poll.id, Poll.status == PollStatus.ACTIVE)
                    .values(
                        status=tally.status,
                        winner_id=tally.winner_id,
                        completed_at=poll.expires_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                if updated.rowcount == 0:
                    logger.info(f"[CRON] Poll {poll.id} already resolved, skipping")
                    return None

                notifier = self._notifier_factory(session)
                notified = await notifier.notify_trip_members(
                    poll.trip_id,
                    NotificationOptions(
                        type=NotificationType.POLL_COMPLETE,
                        related_id=poll.id,
                        title=POLL_COMPLETED_TITLE,
                        message=message,
                        data={
                            "pollId": poll.id,
                            "status": tally.status.value,
                            "winnerId": tally.winner_id,
                            "tiedOptionIds": tally.tied_option_ids,
                        },
                        channel=NotificationChannel.IN_APP,
                    ),
                )

        return PollResolution(
            poll_id=poll.id,
            status=tally.status,
            winner_id=tally.winner_id,
            tied_option_ids=tally.tied_option_ids,
            completed_at=poll.expires_at,
            message=message,
            notified=notified,
        )
