"""
Pure domain layer.

Clock abstraction, Decimal money helpers and calendar periods.  No ORM,
no database, no I/O (except SystemClock).
"""

from payout_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payout_kernel.domain.money import (
    CENT,
    compute_amount_per_share,
    compute_payout,
    round_money,
    to_decimal,
    truncate_money,
)
from payout_kernel.domain.period import ReportingPeriod, last_n_months, previous_month

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CENT",
    "compute_amount_per_share",
    "compute_payout",
    "round_money",
    "to_decimal",
    "truncate_money",
    "ReportingPeriod",
    "last_n_months",
    "previous_month",
]
