"""
Calendar reporting periods (pure, no I/O).

A ``ReportingPeriod`` is one calendar month.  Monthly runs target the
previous month relative to the trigger time, so a run fired at
2026-03-01 00:00 UTC reports on February 2026.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True, order=True)
class ReportingPeriod:
    """One calendar month.  Ordered by (year, month)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be in 1..12, got {self.month}")
        if self.year < 1:
            raise ValueError(f"year must be positive, got {self.year}")

    @property
    def key(self) -> str:
        """Stable ``YYYY-MM`` form used in idempotency keys."""
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> datetime:
        """First instant of the month (UTC)."""
        return first_day_of_month(self.year, self.month)

    @property
    def end(self) -> datetime:
        """Last representable instant of the month (UTC)."""
        return last_day_of_month(self.year, self.month)

    def previous(self) -> ReportingPeriod:
        if self.month == 1:
            return ReportingPeriod(year=self.year - 1, month=12)
        return ReportingPeriod(year=self.year, month=self.month - 1)

    @classmethod
    def containing(cls, moment: datetime) -> ReportingPeriod:
        return cls(year=moment.year, month=moment.month)

    @classmethod
    def parse(cls, key: str) -> ReportingPeriod:
        """Parse ``YYYY-MM``.

        Raises:
            ValueError: If ``key`` is malformed.
        """
        try:
            year_str, month_str = key.split("-", 1)
            return cls(year=int(year_str), month=int(month_str))
        except ValueError as exc:
            raise ValueError(f"Invalid period key (expected YYYY-MM): {key!r}") from exc

    def __str__(self) -> str:
        return self.key


def first_day_of_month(year: int, month: int) -> datetime:
    return datetime(year, month, 1, 0, 0, 0, tzinfo=timezone.utc)


def last_day_of_month(year: int, month: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)


def previous_month(moment: datetime) -> ReportingPeriod:
    """The calendar month before the one containing ``moment``."""
    return ReportingPeriod.containing(moment).previous()


def last_n_months(moment: datetime, count: int) -> list[ReportingPeriod]:
    """The ``count`` months before ``moment``, most recent first."""
    periods: list[ReportingPeriod] = []
    current = ReportingPeriod.containing(moment)
    for _ in range(count):
        current = current.previous()
        periods.append(current)
    return periods
