"""
payout_automation.types -- Result DTOs of the automation engines.

ZERO I/O.  Every per-unit result carries an ``UnitOutcome``:

    CREATED             the unit's financial record was written
    SKIPPED             already done (pre-check hit or unique violation)
    PRECONDITION_UNMET  cannot run (no bank connection, too little history);
                        reported with a reason, never retried
    FAILED              fatal for this unit; siblings still ran

Only FAILED counts as failure.  Run results aggregate per-unit results into
``RunCounts`` for the scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from payout_batch.domain.types import RunCounts
from payout_kernel.domain.period import ReportingPeriod

_ZERO = Decimal("0")


class UnitOutcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    PRECONDITION_UNMET = "precondition_unmet"
    FAILED = "failed"


@dataclass(frozen=True)
class CompanySnapshot:
    """Detached copy of the company fields a run needs.

    Engines load snapshots, close the read session, then process each
    company in its own transaction.
    """

    company_id: UUID
    business_name: str
    bank_api_connected: bool
    bank_account_identifier: str
    total_shares: Decimal
    current_price: Decimal

    @classmethod
    def from_model(cls, company) -> CompanySnapshot:
        return cls(
            company_id=company.id,
            business_name=company.business_name,
            bank_api_connected=company.bank_api_connected,
            bank_account_identifier=company.bank_account_identifier,
            total_shares=company.total_shares,
            current_price=company.current_price,
        )


def _count(results: tuple) -> RunCounts:
    return RunCounts(
        total=len(results),
        succeeded=sum(1 for r in results if r.outcome == UnitOutcome.CREATED),
        failed=sum(1 for r in results if r.outcome == UnitOutcome.FAILED),
        skipped=sum(
            1 for r in results
            if r.outcome in (UnitOutcome.SKIPPED, UnitOutcome.PRECONDITION_UNMET)
        ),
    )


# =============================================================================
# Revenue
# =============================================================================


@dataclass(frozen=True)
class RevenueSplit:
    """Derived amounts of one revenue report (all rounded to cents)."""

    total_deposits: Decimal
    total_withdrawals: Decimal
    net_revenue: Decimal
    platform_fee: Decimal
    net_profit: Decimal
    dividend_pool: Decimal
    reinvestment_amount: Decimal
    transaction_count: int = 0


@dataclass(frozen=True)
class RevenueCalculationResult:
    company_id: UUID
    outcome: UnitOutcome
    report_id: UUID | None = None
    split: RevenueSplit | None = None
    note: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome != UnitOutcome.FAILED

    @property
    def skipped(self) -> bool:
        return self.outcome == UnitOutcome.SKIPPED

    @property
    def dividend_pool(self) -> Decimal:
        return self.split.dividend_pool if self.split else _ZERO


@dataclass(frozen=True)
class RevenueRunResult:
    period: ReportingPeriod
    results: tuple[RevenueCalculationResult, ...] = ()

    @property
    def counts(self) -> RunCounts:
        return _count(self.results)

    @property
    def succeeded(self) -> int:
        return self.counts.succeeded

    @property
    def failed(self) -> int:
        return self.counts.failed

    @property
    def skipped(self) -> int:
        return self.counts.skipped


# =============================================================================
# Dividend
# =============================================================================


@dataclass(frozen=True)
class DividendDistributionResult:
    revenue_report_id: UUID
    outcome: UnitOutcome
    dividend_id: UUID | None = None
    company_id: UUID | None = None
    amount_per_share: Decimal = _ZERO
    total_distributed: Decimal = _ZERO
    shareholders_paid: int = 0
    shareholders_skipped: int = 0
    queued_jobs: int = 0
    note: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome != UnitOutcome.FAILED

    @property
    def skipped(self) -> bool:
        return self.outcome == UnitOutcome.SKIPPED


@dataclass(frozen=True)
class DividendRunResult:
    period: ReportingPeriod
    results: tuple[DividendDistributionResult, ...] = ()

    @property
    def counts(self) -> RunCounts:
        return _count(self.results)

    @property
    def total_distributed(self) -> Decimal:
        return sum((r.total_distributed for r in self.results), _ZERO)


@dataclass(frozen=True)
class PayoutApplyResult:
    """Outcome of one queued payout job."""

    dividend_id: UUID
    user_id: UUID
    applied: bool
    payout_id: UUID | None = None
    dividend_completed: bool = False


# =============================================================================
# Price
# =============================================================================


@dataclass(frozen=True)
class PerformanceScore:
    revenue_growth: Decimal
    profit_margin: Decimal
    volume_score: Decimal
    dividend_score: Decimal
    score: Decimal


@dataclass(frozen=True)
class PriceAdjustmentResult:
    company_id: UUID
    outcome: UnitOutcome
    previous_price: Decimal = _ZERO
    new_price: Decimal = _ZERO
    change_percent: Decimal = _ZERO
    performance: PerformanceScore | None = None
    snapshot_at: datetime | None = None
    note: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome != UnitOutcome.FAILED


@dataclass(frozen=True)
class PriceRunResult:
    period: ReportingPeriod
    results: tuple[PriceAdjustmentResult, ...] = field(default_factory=tuple)

    @property
    def counts(self) -> RunCounts:
        return _count(self.results)
