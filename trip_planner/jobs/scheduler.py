"""
Reconciliation Scheduler: periodic background job for the trip planner.

Every tick:
1. Computes "now" once
2. Delivers due scheduled notifications
3. Resolves expired polls

Each pass is bounded by a timeout and fails on its own; nothing escapes a
tick. Ticks fire at a fixed rate, so a slow tick may overlap the next one;
both passes claim rows with conditional updates and tolerate that.

The scheduler is an explicit object: build it at startup, call start(),
and await stop() on shutdown to let in-flight ticks finish.
"""

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.alerts import send_alert
from ..core.config import Settings, get_settings
from ..core.database import build_engine, build_session_factory
from ..services.dispatcher import DispatchResult, ScheduledNotificationDispatcher
from ..services.errors import PartialDispatchError, PassTimeoutError
from ..services.poll_resolver import PollExpiryResolver, ResolutionReport


logger = logging.getLogger(__name__)

T = TypeVar("T")

AlertFn = Callable[..., Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# TICK REPORT
# =============================================================================


@dataclass
class TickReport:
    """What happened during one tick."""
    now: datetime
    started_at: datetime
    completed_at: datetime | None = None
    dispatch: DispatchResult | None = None
    resolution: ResolutionReport | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict[str, Any]:
        return {
            "now": self.now.isoformat(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "notifications_due": self.dispatch.due_count if self.dispatch else None,
            "notifications_delivered": self.dispatch.materialized if self.dispatch else None,
            "polls_expired": self.resolution.expired_count if self.resolution else None,
            "polls_resolved": [
                {**asdict(r), "status": r.status.value, "completed_at": r.completed_at.isoformat()}
                for r in self.resolution.resolved
            ] if self.resolution else [],
            "polls_failed": dict(self.resolution.failed) if self.resolution else {},
            "errors": list(self.errors),
        }


# =============================================================================
# SCHEDULER
# =============================================================================


class ReconciliationScheduler:
    """Runs the dispatcher and the poll resolver on a fixed interval."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval_seconds: float = 300,
        pass_timeout_seconds: float = 120,
        single_transaction: bool = False,
        clock: Callable[[], datetime] = utcnow,
        dispatcher: ScheduledNotificationDispatcher | None = None,
        resolver: PollExpiryResolver | None = None,
        alert: AlertFn = send_alert,
    ):
        self._interval = interval_seconds
        self._pass_timeout = pass_timeout_seconds
        self._clock = clock
        self._dispatcher = dispatcher or ScheduledNotificationDispatcher(
            session_factory, single_transaction=single_transaction
        )
        self._resolver = resolver or PollExpiryResolver(session_factory)
        self._alert = alert

        self._loop_task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None
        self._in_flight: set[asyncio.Task] = set()
        self.last_report: TickReport | None = None

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> "ReconciliationScheduler":
        settings = settings or get_settings()
        return cls(
            session_factory,
            interval_seconds=settings.reconcile_interval_seconds,
            pass_timeout_seconds=settings.reconcile_pass_timeout_seconds,
            single_transaction=settings.dispatch_single_transaction,
            **kwargs,
        )

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # =========================================================================
    # ONE TICK
    # =========================================================================

    async def run_tick(self) -> TickReport:
        """Run both passes once against a single consistent timestamp."""
        now = self._clock()
        report = TickReport(now=now, started_at=utcnow())

        report.dispatch = await self._run_pass(
            "dispatcher", lambda: self._dispatcher.dispatch_due(now), report
        )
        report.resolution = await self._run_pass(
            "poll-resolver", lambda: self._resolver.resolve_expired(now), report
        )

        if report.resolution and report.resolution.failed:
            await self._send_alert(
                title="Poll Resolution Completed with Failures",
                message=(
                    f"{len(report.resolution.failed)} expired polls could not be resolved "
                    f"and stay ACTIVE until the next tick."
                ),
                severity="warning",
                details={"failed_polls": report.resolution.failed},
            )

        report.completed_at = utcnow()
        self.last_report = report
        logger.info(
            f"[CRON] Tick for {now.isoformat()} finished in "
            f"{(report.completed_at - report.started_at).total_seconds():.2f}s "
            f"with {len(report.errors)} errors"
        )
        return report

    async def _run_pass(
        self,
        name: str,
        run: Callable[[], Awaitable[T]],
        report: TickReport,
    ) -> T | None:
        try:
            return await asyncio.wait_for(run(), timeout=self._pass_timeout)
        except asyncio.TimeoutError:
            error = PassTimeoutError(name, self._pass_timeout)
            logger.error(f"[CRON] {error}")
            report.errors.append(str(error))
            await self._send_alert(
                title="Reconciliation Pass Timed Out",
                message=str(error),
                severity="error",
                details={"pass": name, "now": report.now.isoformat()},
            )
        except PartialDispatchError as e:
            # Rows are already marked sent, the next tick will not see them
            logger.critical(f"[CRON] Scheduled notifications lost: {e}")
            report.errors.append(str(e))
            await self._send_alert(
                title="Scheduled Notifications Lost",
                message=(
                    "Scheduled notifications were marked sent but could not be "
                    "written to the notifications table. They will not be retried."
                ),
                severity="critical",
                details={
                    "lost_ids": e.lost_ids,
                    "error": str(e.cause) or type(e.cause).__name__,
                },
            )
        except Exception as e:
            logger.exception(f"[CRON] {name} pass failed: {e}")
            report.errors.append(f"{name}: {e}")
            await self._send_alert(
                title="Reconciliation Pass Failed",
                message=f"The {name} pass failed and will be retried next tick.",
                severity="error",
                details={"pass": name, "error": str(e)},
            )
        return None

    async def _send_alert(self, **kwargs: Any) -> None:
        try:
            await self._alert(**kwargs)
        except Exception as e:
            logger.error(f"Failed to send alert: {e}")

    # =========================================================================
    # LOOP
    # =========================================================================

    def start(self) -> None:
        """Start ticking. The first tick fires immediately."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_forever(), name="reconciliation-scheduler")
        logger.info(f"[CRON] Reconciliation scheduler started, interval {self._interval:.0f}s")

    async def stop(self) -> None:
        """Stop launching ticks and wait for the ones in flight."""
        if self._loop_task is None:
            return
        self._stopping.set()
        await self._loop_task
        self._loop_task = None

        if self._in_flight:
            logger.info(f"[CRON] Waiting for {len(self._in_flight)} in-flight ticks")
            results = await asyncio.gather(*self._in_flight, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.error(f"[CRON] Tick ended with an error during shutdown: {result!r}")
        logger.info("[CRON] Reconciliation scheduler stopped")

    async def _run_forever(self) -> None:
        while not self._stopping.is_set():
            tick = asyncio.create_task(self.run_tick())
            self._in_flight.add(tick)
            tick.add_done_callback(self._in_flight.discard)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue


# =============================================================================
# ENTRY POINTS
# =============================================================================


async def run_reconciliation_job(
    database_url: str,
    single_transaction: bool = False,
    pass_timeout_seconds: float = 120,
) -> dict[str, Any]:
    """Run a single tick against `database_url` and return its summary."""
    engine = build_engine(database_url)
    try:
        scheduler = ReconciliationScheduler(
            build_session_factory(engine),
            pass_timeout_seconds=pass_timeout_seconds,
            single_transaction=single_transaction,
        )
        report = await scheduler.run_tick()
    finally:
        await engine.dispose()
    return report.as_dict()


async def serve(
    database_url: str,
    interval_seconds: float,
    single_transaction: bool = False,
    pass_timeout_seconds: float = 120,
) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    engine = build_engine(database_url)
    scheduler = ReconciliationScheduler(
        build_session_factory(engine),
        interval_seconds=interval_seconds,
        pass_timeout_seconds=pass_timeout_seconds,
        single_transaction=single_transaction,
    )
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    scheduler.start()
    try:
        await shutdown.wait()
    finally:
        await scheduler.stop()
        await engine.dispose()


def main():
    """CLI entry point for the reconciliation job."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="Deliver due scheduled notifications and resolve expired polls"
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url_async,
        help="Database connection string (async driver)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit",
    )
    parser.add_argument(
        "--interval-minutes",
        type=float,
        default=settings.reconcile_interval_minutes,
        help="Minutes between ticks",
    )
    parser.add_argument(
        "--single-transaction",
        action="store_true",
        default=settings.dispatch_single_transaction,
        help="Claim and deliver scheduled notifications in one transaction",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.once:
        results = asyncio.run(run_reconciliation_job(
            database_url=args.database_url,
            single_transaction=args.single_transaction,
            pass_timeout_seconds=settings.reconcile_pass_timeout_seconds,
        ))
        print(f"Job completed: {results}")
        if results["errors"]:
            raise SystemExit(1)
        return

    asyncio.run(serve(
        database_url=args.database_url,
        interval_seconds=args.interval_minutes * 60,
        single_transaction=args.single_transaction,
        pass_timeout_seconds=settings.reconcile_pass_timeout_seconds,
    ))


if __name__ == "__main__":
    main()
