"""Exceptions raised by the reconciliation passes."""


class ReconciliationError(Exception):
    """Base exception for reconciliation pass failures."""
    pass


class PartialDispatchError(ReconciliationError):
    """Scheduled notifications were marked sent but never materialized.

    These rows no longer match the due query, so they are lost for good
    unless an operator replays them by hand.
    """

    def __init__(self, lost_ids: list[int], cause: BaseException | None = None):
        self.lost_ids = lost_ids
        self.cause = cause
        super().__init__(
            f"{len(lost_ids)} scheduled notifications marked sent but not delivered: {lost_ids}"
        )


class PassTimeoutError(ReconciliationError):
    """A reconciliation pass exceeded its time budget."""

    def __init__(self, pass_name: str, timeout_seconds: float):
        self.pass_name = pass_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{pass_name} pass timed out after {timeout_seconds:.1f}s")
