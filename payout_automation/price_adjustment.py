"""
PriceAdjustmentEngine -- monthly share price move from company performance.

For each active company the engine scores the target month on four
factors and moves ``current_price`` by the weighted score, capped at
``max_change`` either way:

    revenue_growth  (this net revenue - last) / last     (0 when last is 0)
    profit_margin   net profit / net revenue             (0 when revenue is 0)
    volume_score    traded shares / total shares         clamped to [0, cap]
    dividend_score  completed dividends in lookback / N  clamped to [0, cap]

A PriceSnapshot stamped at the 1st of the target month, 03:00 UTC, marks
the adjustment as done; a snapshot within the window of that instant makes
a rerun a no-op, and a unique (company, instant) key turns a concurrent
duplicate into the same no-op.  The price update and the snapshot share
one transaction; the broadcast afterwards is best-effort.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payout_config.schema import PriceSettings
from payout_kernel.db.transaction import run_in_transaction
from payout_kernel.domain.clock import Clock, SystemClock
from payout_kernel.domain.money import ZERO, round_money, to_decimal
from payout_kernel.domain.period import ReportingPeriod, last_n_months, previous_month
from payout_kernel.exceptions import CompanyNotFoundError
from payout_kernel.logging_config import LogContext, get_logger
from payout_kernel.models.company import Company, CompanyVerificationStatus, ListingStatus
from payout_kernel.models.dividend import Dividend, DividendStatus
from payout_kernel.models.price import PriceSnapshot
from payout_kernel.models.revenue import DISTRIBUTABLE_STATUSES, RevenueReport
from payout_kernel.selectors.idempotency_selector import IdempotencySelector

from payout_automation.collaborators import (
    NullPriceBroadcaster,
    PriceBroadcaster,
    TradingVolumeSource,
    ZeroVolumeSource,
)
from payout_automation.types import (
    CompanySnapshot,
    PerformanceScore,
    PriceAdjustmentResult,
    PriceRunResult,
    UnitOutcome,
)

logger = get_logger("automation.price")

SCORE_QUANTUM = Decimal("0.0001")

SNAPSHOT_EXISTS_NOTE = "Price snapshot already exists"
INSUFFICIENT_HISTORY_NOTE = "Insufficient revenue history (need at least 2 months)"


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == ZERO:
        return ZERO
    return (numerator / denominator).quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)


def _clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def score_performance(
    this_net_revenue: Decimal,
    last_net_revenue: Decimal,
    this_net_profit: Decimal,
    traded_volume: Decimal,
    total_shares: Decimal,
    completed_dividends: int,
    settings: PriceSettings,
) -> PerformanceScore:
    """Weighted performance score of one company for one month."""
    revenue_growth = _ratio(this_net_revenue - last_net_revenue, last_net_revenue)
    profit_margin = _ratio(this_net_profit, this_net_revenue)
    volume_score = _clamp(
        _ratio(to_decimal(traded_volume), to_decimal(total_shares)),
        ZERO,
        settings.volume_score_cap,
    )
    dividend_score = _clamp(
        _ratio(Decimal(completed_dividends), Decimal(settings.dividend_lookback_months)),
        ZERO,
        settings.dividend_score_cap,
    )
    score = (
        revenue_growth * settings.revenue_growth_weight
        + profit_margin * settings.profit_margin_weight
        + volume_score * settings.volume_weight
        + dividend_score * settings.dividend_weight
    ).quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)
    return PerformanceScore(
        revenue_growth=revenue_growth,
        profit_margin=profit_margin,
        volume_score=volume_score,
        dividend_score=dividend_score,
        score=score,
    )


def compute_new_price(
    current_price: Decimal, score: Decimal, max_change: Decimal,
) -> tuple[Decimal, bool]:
    """Return (new price rounded to cents, whether the cap applied)."""
    change = _clamp(score, -max_change, max_change)
    return round_money(to_decimal(current_price) * (1 + change)), change != score


class PriceAdjustmentEngine:
    """Moves share prices once a month."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        volume_source: TradingVolumeSource | None = None,
        broadcaster: PriceBroadcaster | None = None,
        clock: Clock | None = None,
        settings: PriceSettings | None = None,
    ):
        self._session_factory = session_factory
        self._volume_source = volume_source or ZeroVolumeSource()
        self._broadcaster = broadcaster or NullPriceBroadcaster()
        self._clock = clock or SystemClock()
        self._settings = settings or PriceSettings()

    def snapshot_time(self, period: ReportingPeriod) -> datetime:
        return period.start + timedelta(hours=self._settings.snapshot_hour)

    def execute_price_adjustment(self, period: ReportingPeriod | None = None) -> PriceRunResult:
        period = period or previous_month(self._clock.now_utc())
        start = time.monotonic()
        logger.info("price_adjustment_started", extra={"period": period.key})

        companies = self._load_active_companies()
        results = []
        for company in companies:
            with LogContext.bind(company_id=company.company_id):
                try:
                    result = self.adjust_company(company, period)
                except Exception as exc:
                    logger.exception("price_company_failed", extra={"period": period.key})
                    result = PriceAdjustmentResult(
                        company_id=company.company_id,
                        outcome=UnitOutcome.FAILED,
                        previous_price=company.current_price,
                        new_price=company.current_price,
                        error=str(exc),
                    )
            results.append(result)

        run = PriceRunResult(period=period, results=tuple(results))
        counts = run.counts
        created = [r for r in run.results if r.outcome == UnitOutcome.CREATED]
        logger.info(
            "price_adjustment_completed",
            extra={
                "period": period.key,
                "total_companies": counts.total,
                "succeeded": counts.succeeded,
                "skipped": counts.skipped,
                "failed": counts.failed,
                "price_increases": sum(1 for r in created if r.new_price > r.previous_price),
                "price_decreases": sum(1 for r in created if r.new_price < r.previous_price),
                "duration_ms": int((time.monotonic() - start) * 1000),
            },
        )
        return run

    def manually_adjust_stock_price(
        self, company_id: UUID, month: int, year: int,
    ) -> PriceAdjustmentResult:
        """Adjust one company's price for ``month``/``year``.

        Raises:
            CompanyNotFoundError: Unknown company.
        """
        period = ReportingPeriod(year=year, month=month)
        logger.info(
            "price_manual_trigger",
            extra={"company_id": str(company_id), "period": period.key},
        )
        session = self._session_factory()
        try:
            company = session.get(Company, company_id)
            if company is None:
                raise CompanyNotFoundError(str(company_id))
            snapshot = CompanySnapshot.from_model(company)
        finally:
            session.close()

        with LogContext.bind(company_id=company_id):
            return self.adjust_company(snapshot, period)

    def adjust_company(
        self, company: CompanySnapshot, period: ReportingPeriod,
    ) -> PriceAdjustmentResult:
        """Score and reprice one company.  Errors propagate."""
        snapshot_at = self.snapshot_time(period)
        window = timedelta(seconds=self._settings.snapshot_window_seconds)

        session = self._session_factory()
        try:
            if IdempotencySelector(session).price_snapshot_exists(
                company.company_id, snapshot_at, window,
            ):
                logger.info("price_snapshot_exists", extra={"period": period.key})
                return PriceAdjustmentResult(
                    company_id=company.company_id,
                    outcome=UnitOutcome.SKIPPED,
                    previous_price=company.current_price,
                    new_price=company.current_price,
                    snapshot_at=snapshot_at,
                    note=SNAPSHOT_EXISTS_NOTE,
                )

            reports = session.execute(
                select(RevenueReport)
                .where(
                    RevenueReport.company_id == company.company_id,
                    RevenueReport.verification_status.in_(sorted(DISTRIBUTABLE_STATUSES)),
                    (RevenueReport.report_year * 100 + RevenueReport.report_month)
                    <= period.year * 100 + period.month,
                )
                .order_by(RevenueReport.report_year.desc(), RevenueReport.report_month.desc())
                .limit(2)
            ).scalars().all()

            if len(reports) < 2:
                logger.info(
                    "price_insufficient_history",
                    extra={"reports_found": len(reports), "period": period.key},
                )
                return PriceAdjustmentResult(
                    company_id=company.company_id,
                    outcome=UnitOutcome.PRECONDITION_UNMET,
                    previous_price=company.current_price,
                    new_price=company.current_price,
                    note=INSUFFICIENT_HISTORY_NOTE,
                )

            this_month, last_month = reports
            completed_dividends = self._count_recent_dividends(session, company.company_id)
            this_revenue = to_decimal(this_month.net_revenue)
            last_revenue = to_decimal(last_month.net_revenue)
            this_profit = to_decimal(this_month.net_profit)
        finally:
            session.close()

        volume = to_decimal(
            self._volume_source.volume_for(company.company_id, period.start, period.end)
        )
        performance = score_performance(
            this_revenue,
            last_revenue,
            this_profit,
            volume,
            company.total_shares,
            completed_dividends,
            self._settings,
        )

        previous_price = to_decimal(company.current_price)
        new_price, capped = compute_new_price(
            previous_price, performance.score, self._settings.max_change,
        )
        change_percent = (
            round_money((new_price - previous_price) / previous_price * 100)
            if previous_price != ZERO
            else ZERO
        )

        def write(session: Session) -> None:
            now = self._clock.now_utc()
            session.execute(
                update(Company)
                .where(Company.id == company.company_id)
                .values(current_price=new_price, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            session.add(PriceSnapshot(
                id=uuid4(),
                company_id=company.company_id,
                price=new_price,
                previous_price=previous_price,
                volume=volume,
                performance_score=performance.score,
                snapshot_at=snapshot_at,
                created_at=now,
                updated_at=now,
            ))

        try:
            run_in_transaction(self._session_factory, write, "adjust_stock_price")
        except IntegrityError:
            logger.info(
                "price_snapshot_duplicate",
                extra={"period": period.key, "snapshot_at": snapshot_at.isoformat()},
            )
            return PriceAdjustmentResult(
                company_id=company.company_id,
                outcome=UnitOutcome.SKIPPED,
                previous_price=previous_price,
                new_price=previous_price,
                snapshot_at=snapshot_at,
                note=SNAPSHOT_EXISTS_NOTE,
            )

        logger.info(
            "price_adjusted",
            extra={
                "period": period.key,
                "previous_price": previous_price,
                "new_price": new_price,
                "change_percent": change_percent,
                "performance_score": performance.score,
                "capped": capped,
            },
        )
        self._broadcast(company.company_id, new_price, previous_price, change_percent)

        return PriceAdjustmentResult(
            company_id=company.company_id,
            outcome=UnitOutcome.CREATED,
            previous_price=previous_price,
            new_price=new_price,
            change_percent=change_percent,
            performance=performance,
            snapshot_at=snapshot_at,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load_active_companies(self) -> list[CompanySnapshot]:
        session = self._session_factory()
        try:
            companies = session.execute(
                select(Company)
                .where(
                    Company.listing_status == ListingStatus.ACTIVE.value,
                    Company.verification_status == CompanyVerificationStatus.APPROVED.value,
                )
                .order_by(Company.created_at, Company.id)
            ).scalars().all()
            return [CompanySnapshot.from_model(c) for c in companies]
        finally:
            session.close()

    def _count_recent_dividends(self, session: Session, company_id: UUID) -> int:
        lookback = last_n_months(self._clock.now_utc(), self._settings.dividend_lookback_months)
        if not lookback:
            return 0
        cutoff = lookback[-1].start
        return session.execute(
            select(func.count(Dividend.id)).where(
                Dividend.company_id == company_id,
                Dividend.payment_status == DividendStatus.COMPLETED.value,
                Dividend.distribution_date >= cutoff,
            )
        ).scalar_one()

    def _broadcast(
        self,
        company_id: UUID,
        price: Decimal,
        previous_price: Decimal,
        change_percent: Decimal,
    ) -> None:
        try:
            self._broadcaster.broadcast_price_update(
                company_id, price, previous_price, change_percent,
            )
        except Exception:
            logger.warning("price_broadcast_failed", exc_info=True)
