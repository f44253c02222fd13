"""Shared fixtures: a throwaway SQLite database per test plus trip/poll builders."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select

from trip_planner.core.database import build_engine, build_session_factory, init_db
from trip_planner.models import (
    MemberRole,
    Notification,
    NotificationType,
    Poll,
    PollOption,
    PollStatus,
    ScheduledNotification,
    Trip,
    TripMember,
    Vote,
)


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

TRIP_CREATOR = "user-alice"
TRIP_MEMBERS = [TRIP_CREATOR, "user-bob", "user-carol"]


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; they are stored as UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# =============================================================================
# DATABASE
# =============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'trip_planner.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return NOW


# =============================================================================
# BUILDERS
# =============================================================================


@pytest_asyncio.fixture
async def trip(session) -> Trip:
    """A trip with three members; the first one created it."""
    trip = Trip(name="Lisbon long weekend", created_by_id=TRIP_CREATOR)
    for user_id in TRIP_MEMBERS:
        role = MemberRole.CREATOR if user_id == TRIP_CREATOR else MemberRole.MEMBER
        trip.members.append(TripMember(user_id=user_id, role=role))
    session.add(trip)
    await session.commit()
    return trip


@pytest.fixture
def make_poll(session, trip, now):
    """Create a poll from {option text: number of votes}."""

    async def _make(
        votes: dict[str, int],
        question: str = "Where should we have dinner?",
        expires_at: datetime | None = None,
        status: PollStatus = PollStatus.ACTIVE,
    ) -> Poll:
        poll = Poll(
            trip_id=trip.id,
            question=question,
            status=status,
            expires_at=expires_at or now - timedelta(minutes=1),
            created_by_id=TRIP_CREATOR,
        )
        for label in votes:
            poll.options.append(PollOption(option=label))
        session.add(poll)
        await session.flush()

        voter = 0
        for option, count in zip(poll.options, votes.values()):
            for _ in range(count):
                voter += 1
                session.add(Vote(
                    poll_id=poll.id,
                    poll_option_id=option.id,
                    user_id=f"voter-{poll.id}-{voter}",
                ))
        await session.commit()
        return poll

    return _make


@pytest.fixture
def make_scheduled(session, trip, now):
    """Create a pending scheduled notification `offset` away from now."""

    async def _make(
        user_id: str = "user-bob",
        offset: timedelta = timedelta(minutes=-1),
        is_sent: bool = False,
        type: NotificationType = NotificationType.EVENT_REMINDER,
        related_id: int | None = 42,
        data: dict | None = None,
    ) -> ScheduledNotification:
        row = ScheduledNotification(
            user_id=user_id,
            trip_id=trip.id,
            type=type,
            related_id=related_id,
            title="Upcoming event",
            message=f"Reminder for {user_id}",
            data=data,
            send_at=now + offset,
            is_sent=is_sent,
        )
        session.add(row)
        await session.commit()
        return row

    return _make


# =============================================================================
# READ HELPERS (fresh session, so nothing comes from the identity map)
# =============================================================================


@pytest.fixture
def fetch_poll(session_factory):
    async def _fetch(poll_id: int) -> Poll:
        async with session_factory() as s:
            return await s.get(Poll, poll_id)

    return _fetch


@pytest.fixture
def fetch_notifications(session_factory):
    async def _fetch(**filters) -> list[Notification]:
        async with session_factory() as s:
            query = select(Notification).filter_by(**filters).order_by(Notification.id)
            return list((await s.execute(query)).scalars().all())

    return _fetch


@pytest.fixture
def fetch_scheduled(session_factory):
    async def _fetch() -> list[ScheduledNotification]:
        async with session_factory() as s:
            query = select(ScheduledNotification).order_by(ScheduledNotification.id)
            return list((await s.execute(query)).scalars().all())

    return _fetch
