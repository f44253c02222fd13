"""
Tests for the scheduled notification dispatcher.

These tests verify:
1. Due rows (send_at <= now) are delivered exactly once
2. Future and already-sent rows are left alone
3. A failure after the claim is reported as lost notifications
4. In single-transaction mode a failure leaves rows due for the next run
"""

from datetime import timedelta

import pytest

from trip_planner.models import NotificationChannel, NotificationType
from trip_planner.services.dispatcher import ScheduledNotificationDispatcher
from trip_planner.services.errors import PartialDispatchError


class TestDispatchDue:
    """Happy path delivery."""

    async def test_delivers_due_and_skips_future(
        self, session_factory, make_scheduled, fetch_notifications, fetch_scheduled, now
    ):
        """Due rows become notifications; a row due tomorrow stays pending."""
        due = await make_scheduled(user_id="user-bob", data={"eventId": 42})
        future = await make_scheduled(user_id="user-carol", offset=timedelta(days=1))

        result = await ScheduledNotificationDispatcher(session_factory).dispatch_due(now)

        assert result.due_count == 1
        assert result.claimed_ids == [due.id]
        assert result.materialized == 1

        notifications = await fetch_notifications()
        assert len(notifications) == 1
        delivered = notifications[0]
        assert delivered.user_id == "user-bob"
        assert delivered.type == NotificationType.EVENT_REMINDER
        assert delivered.related_id == 42
        assert delivered.title == "Upcoming event"
        assert delivered.message == "Reminder for user-bob"
        assert delivered.data == {"eventId": 42}
        assert delivered.channel == NotificationChannel.IN_APP
        assert delivered.is_read is False

        rows = {row.id: row for row in await fetch_scheduled()}
        assert rows[due.id].is_sent is True
        assert rows[future.id].is_sent is False

    async def test_send_at_equal_to_now_is_due(
        self, session_factory, make_scheduled, fetch_notifications, now
    ):
        await make_scheduled(offset=timedelta(0))

        result = await ScheduledNotificationDispatcher(session_factory).dispatch_due(now)

        assert result.materialized == 1
        assert len(await fetch_notifications()) == 1

    async def test_payload_is_copied_as_is(
        self, session_factory, make_scheduled, fetch_notifications, now
    ):
        """An empty payload stays an empty payload, it does not become NULL."""
        await make_scheduled(user_id="user-bob", data={})

        await ScheduledNotificationDispatcher(session_factory).dispatch_due(now)

        assert [n.data for n in await fetch_notifications()] == [{}]

    async def test_second_run_delivers_nothing(
        self, session_factory, make_scheduled, fetch_notifications, now
    ):
        """Running twice with the same clock never duplicates a notification."""
        await make_scheduled(user_id="user-bob")
        await make_scheduled(user_id="user-carol")
        dispatcher = ScheduledNotificationDispatcher(session_factory)

        first = await dispatcher.dispatch_due(now)
        second = await dispatcher.dispatch_due(now)

        assert first.materialized == 2
        assert second.due_count == 0
        assert second.materialized == 0
        assert len(await fetch_notifications()) == 2

    async def test_nothing_due_is_a_no_op(
        self, session_factory, make_scheduled, fetch_notifications, now
    ):
        await make_scheduled(offset=timedelta(hours=2))

        result = await ScheduledNotificationDispatcher(session_factory).dispatch_due(now)

        assert result.due_count == 0
        assert result.claimed_ids == []
        assert await fetch_notifications() == []

    async def test_already_sent_rows_are_not_redelivered(
        self, session_factory, make_scheduled, fetch_notifications, now
    ):
        await make_scheduled(is_sent=True)

        result = await ScheduledNotificationDispatcher(session_factory).dispatch_due(now)

        assert result.due_count == 0
        assert await fetch_notifications() == []

    async def test_claim_only_flips_unsent_rows(self, session_factory, make_scheduled):
        """A row another worker claimed in the meantime is not claimed again."""
        pending = await make_scheduled(user_id="user-bob")
        taken = await make_scheduled(user_id="user-carol", is_sent=True)
        dispatcher = ScheduledNotificationDispatcher(session_factory)

        async with session_factory() as session:
            claimed = await dispatcher._claim(session, [pending.id, taken.id])
            await session.commit()

        assert claimed == {pending.id}


class TestDispatchFailures:
    """Errors between claim and delivery."""

    async def test_failure_after_claim_reports_lost_ids(
        self, session_factory, make_scheduled, fetch_notifications, fetch_scheduled,
        monkeypatch, now,
    ):
        """Default mode: rows stay marked sent and the loss is surfaced."""
        first = await make_scheduled(user_id="user-bob")
        second = await make_scheduled(user_id="user-carol")

        def boom(row):
            raise RuntimeError("notifications table unavailable")

        monkeypatch.setattr(
            ScheduledNotificationDispatcher, "_to_notification", staticmethod(boom)
        )

        with pytest.raises(PartialDispatchError) as exc_info:
            await ScheduledNotificationDispatcher(session_factory).dispatch_due(now)

        assert sorted(exc_info.value.lost_ids) == sorted([first.id, second.id])
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert all(row.is_sent for row in await fetch_scheduled())
        assert await fetch_notifications() == []

    async def test_single_transaction_failure_keeps_rows_due(
        self, session_factory, make_scheduled, fetch_notifications, fetch_scheduled,
        monkeypatch, now,
    ):
        """Single-transaction mode: the claim rolls back with the inserts."""
        await make_scheduled(user_id="user-bob")

        def boom(row):
            raise RuntimeError("notifications table unavailable")

        monkeypatch.setattr(
            ScheduledNotificationDispatcher, "_to_notification", staticmethod(boom)
        )
        dispatcher = ScheduledNotificationDispatcher(session_factory, single_transaction=True)

        with pytest.raises(RuntimeError, match="unavailable"):
            await dispatcher.dispatch_due(now)

        assert [row.is_sent for row in await fetch_scheduled()] == [False]
        assert await fetch_notifications() == []

    async def test_single_transaction_retries_on_next_run(
        self, session_factory, make_scheduled, fetch_notifications, monkeypatch, now
    ):
        await make_scheduled(user_id="user-bob")
        dispatcher = ScheduledNotificationDispatcher(session_factory, single_transaction=True)
        original = ScheduledNotificationDispatcher._to_notification

        def boom(row):
            raise RuntimeError("transient")

        monkeypatch.setattr(
            ScheduledNotificationDispatcher, "_to_notification", staticmethod(boom)
        )
        with pytest.raises(RuntimeError):
            await dispatcher.dispatch_due(now)

        monkeypatch.setattr(
            ScheduledNotificationDispatcher, "_to_notification", staticmethod(original)
        )
        result = await dispatcher.dispatch_due(now)

        assert result.materialized == 1
        assert len(await fetch_notifications(user_id="user-bob")) == 1
