"""Trip planner: scheduled notifications and poll expiry reconciliation."""

__version__ = "1.0.0"
