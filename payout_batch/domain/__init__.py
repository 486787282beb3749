"""
payout_batch.domain -- Pure types and cron evaluation for scheduled runs.

ZERO I/O.  All types are frozen dataclasses.
"""

from payout_batch.domain.types import (
    AutomationHealth,
    AutomationRun,
    JobHealth,
    JobSchedule,
    RunCounts,
    RunStatus,
    RunTrigger,
)

__all__ = [
    "AutomationHealth",
    "AutomationRun",
    "JobHealth",
    "JobSchedule",
    "RunCounts",
    "RunStatus",
    "RunTrigger",
]
