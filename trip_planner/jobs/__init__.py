"""
Background Jobs for the trip planner.

This module contains scheduled and background jobs:
- scheduler: periodic delivery of scheduled notifications and
  resolution of expired polls
"""

from .scheduler import ReconciliationScheduler, TickReport, run_reconciliation_job

__all__ = ["ReconciliationScheduler", "TickReport", "run_reconciliation_job"]
