"""Business logic services for the trip planner background job."""

from .dispatcher import DispatchResult, ScheduledNotificationDispatcher
from .errors import PartialDispatchError, PassTimeoutError, ReconciliationError
from .notification_service import NotificationOptions, NotificationService
from .poll_resolver import (
    PollExpiryResolver,
    PollResolution,
    ResolutionReport,
    build_outcome_message,
)
from .tally import TallyResult, count_votes, tally_votes

__all__ = [
    # Notifications
    "NotificationOptions",
    "NotificationService",
    # Dispatcher
    "ScheduledNotificationDispatcher",
    "DispatchResult",
    # Poll resolution
    "PollExpiryResolver",
    "PollResolution",
    "ResolutionReport",
    "build_outcome_message",
    # Tally
    "TallyResult",
    "count_votes",
    "tally_votes",
    # Errors
    "ReconciliationError",
    "PartialDispatchError",
    "PassTimeoutError",
]
