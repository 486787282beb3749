"""
Configuration schema (``payout_config.schema``).

Responsibility
--------------
Frozen dataclasses describing every tunable of the monthly automation:
revenue split rates, dividend thresholds and batch size, the bank fetch
retry policy, cron schedules, queue policies, price adjustment weights and
the operational knobs (lock TTL, scheduler tick, database URL).

Architecture position
---------------------
**Config layer**.  Pure data, no I/O.  ``payout_config.loader`` builds these
from YAML; engines receive the relevant sub-settings by injection and never
read files themselves.

Invariants enforced
-------------------
* All monetary rates are ``Decimal``; parsed from YAML through ``str()`` so a
  YAML float never leaks binary rounding into money arithmetic.
* Defaults reproduce the production values, so ``AutomationSettings()`` is a
  valid configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from payout_kernel.services.retry_service import DEFAULT_RETRYABLE_SIGNATURES, RetryPolicy
from payout_queue.domain.types import DEFAULT_JOB_POLICIES, JobPolicy, JobType

REVENUE_JOB = "MonthlyRevenueCalculation"
DIVIDEND_JOB = "DividendDistribution"
PRICE_JOB = "StockPriceAdjustment"


@dataclass(frozen=True)
class RetrySettings:
    """Bank fetch retry policy (see RetryPolicy)."""

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_SIGNATURES

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            retryable_errors=self.retryable_errors,
        )


@dataclass(frozen=True)
class RevenueSettings:
    """Revenue split rates.  Pool and reinvestment shares of net profit sum to 1."""

    platform_fee_rate: Decimal = Decimal("0.05")
    dividend_pool_rate: Decimal = Decimal("0.60")
    reinvestment_rate: Decimal = Decimal("0.40")
    fetch_retry: RetrySettings = field(default_factory=RetrySettings)


@dataclass(frozen=True)
class DividendSettings:
    """Dividend distribution thresholds."""

    minimum_payout: Decimal = Decimal("0.01")
    batch_size: int = 100
    notifications_enabled: bool = True


@dataclass(frozen=True)
class PriceSettings:
    """Monthly share price adjustment weights and bounds."""

    revenue_growth_weight: Decimal = Decimal("0.4")
    profit_margin_weight: Decimal = Decimal("0.3")
    volume_weight: Decimal = Decimal("0.2")
    dividend_weight: Decimal = Decimal("0.1")
    volume_score_cap: Decimal = Decimal("0.2")
    dividend_score_cap: Decimal = Decimal("0.1")
    max_change: Decimal = Decimal("0.20")
    dividend_lookback_months: int = 3
    snapshot_hour: int = 3
    snapshot_window_seconds: int = 60


@dataclass(frozen=True)
class ScheduleSettings:
    """One cron-driven automation job."""

    job_name: str
    cron_expression: str
    is_active: bool = True
    description: str = ""


DEFAULT_SCHEDULES: tuple[ScheduleSettings, ...] = (
    ScheduleSettings(
        job_name=REVENUE_JOB,
        cron_expression="0 0 1 * *",
        description="Compute last month's revenue report for every active company",
    ),
    ScheduleSettings(
        job_name=DIVIDEND_JOB,
        cron_expression="0 2 1 * *",
        description="Distribute dividends from last month's verified reports",
    ),
    ScheduleSettings(
        job_name=PRICE_JOB,
        cron_expression="0 3 1 * *",
        description="Adjust share prices from company performance",
    ),
)


@dataclass(frozen=True)
class QueueSettings:
    """Job queue namespace, stall detection, retention and per-type policies."""

    queue_name: str = "dividends"
    stall_timeout_seconds: int = 30
    max_stalled_count: int = 3
    max_failed_jobs: int = 100
    keep_completed: int = 200
    keep_failed: int = 100
    poll_interval_seconds: float = 1.0
    policies: dict[JobType, JobPolicy] = field(
        default_factory=lambda: dict(DEFAULT_JOB_POLICIES),
    )


@dataclass(frozen=True)
class AutomationSettings:
    """Root settings object returned by ``get_active_settings()``."""

    database_url: str = "sqlite:///payout.db"
    lock_ttl_seconds: int = 3600
    scheduler_tick_seconds: int = 60
    revenue: RevenueSettings = field(default_factory=RevenueSettings)
    dividend: DividendSettings = field(default_factory=DividendSettings)
    price: PriceSettings = field(default_factory=PriceSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    schedules: tuple[ScheduleSettings, ...] = DEFAULT_SCHEDULES

    def schedule_for(self, job_name: str) -> ScheduleSettings | None:
        for schedule in self.schedules:
            if schedule.job_name == job_name:
                return schedule
        return None
