"""
Injectable time source for the payout runs.

The monthly target period, queue backoff deadlines, stall cutoffs and lock
expiry all read the time through a ``Clock``, so tests pin a run to a fixed
instant and step it forward explicitly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now_utc(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        ...


class SystemClock(Clock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Clock frozen at ``start``; only ``advance`` moves it."""

    def __init__(self, start: datetime):
        self._now = start.astimezone(timezone.utc)

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> None:
        self._now += timedelta(seconds=seconds)
