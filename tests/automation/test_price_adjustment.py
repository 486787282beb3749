"""Tests for payout_automation.price_adjustment."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from payout_automation.price_adjustment import (
    PriceAdjustmentEngine,
    compute_new_price,
    score_performance,
)
from payout_automation.types import UnitOutcome
from payout_config.schema import PriceSettings
from payout_kernel.db.transaction import transaction_scope
from payout_kernel.domain.period import ReportingPeriod
from payout_kernel.exceptions import CompanyNotFoundError
from payout_kernel.models.company import Company
from payout_kernel.models.dividend import Dividend
from payout_kernel.models.price import PriceSnapshot
from payout_kernel.selectors.idempotency_selector import IdempotencySelector
from payout_kernel.utils.datetimes import as_utc
from tests.fakes import RUN_TIME, TARGET_PERIOD, FixedVolumeSource, RecordingBroadcaster

JANUARY = ReportingPeriod(2026, 1)


@pytest.fixture
def volumes():
    return FixedVolumeSource()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def engine(session_factory, volumes, broadcaster, clock):
    return PriceAdjustmentEngine(
        session_factory, volume_source=volumes, broadcaster=broadcaster, clock=clock,
    )


@pytest.fixture
def two_months(make_report):
    """January and February reports with the given revenue and profit."""

    def _make(company_id, jan_revenue, feb_revenue, feb_profit, jan_profit=None):
        make_report(
            company_id,
            period=JANUARY,
            net_revenue=jan_revenue,
            net_profit=jan_profit if jan_profit is not None else jan_revenue,
            dividend_pool="1.00",
        )
        make_report(
            company_id,
            period=TARGET_PERIOD,
            net_revenue=feb_revenue,
            net_profit=feb_profit,
            dividend_pool="1.00",
        )

    return _make


# =============================================================================
# Pure scoring
# =============================================================================


class TestScorePerformance:
    def test_weighted_score(self):
        perf = score_performance(
            Decimal("12000"), Decimal("10000"), Decimal("11400"),
            Decimal("100"), Decimal("1000"), 0, PriceSettings(),
        )
        assert perf.revenue_growth == Decimal("0.2000")
        assert perf.profit_margin == Decimal("0.9500")
        assert perf.volume_score == Decimal("0.1000")
        assert perf.dividend_score == Decimal("0")
        assert perf.score == Decimal("0.3850")

    def test_zero_denominators_score_zero(self):
        perf = score_performance(
            Decimal("0"), Decimal("0"), Decimal("0"),
            Decimal("0"), Decimal("0"), 0, PriceSettings(),
        )
        assert perf.score == Decimal("0")

    def test_volume_and_dividend_scores_are_capped(self):
        perf = score_performance(
            Decimal("100"), Decimal("100"), Decimal("0"),
            Decimal("5000"), Decimal("1000"), 3, PriceSettings(),
        )
        assert perf.volume_score == Decimal("0.2")
        assert perf.dividend_score == Decimal("0.1")

    @pytest.mark.parametrize("score,expected,capped", [
        (Decimal("0.03"), Decimal("10.30"), False),
        (Decimal("0.385"), Decimal("12.00"), True),
        (Decimal("-0.5"), Decimal("8.00"), True),
    ])
    def test_new_price_is_capped(self, score, expected, capped):
        assert compute_new_price(Decimal("10.00"), score, Decimal("0.20")) == (expected, capped)


# =============================================================================
# Engine
# =============================================================================


class TestPriceAdjustment:
    def test_strong_month_hits_the_cap(
        self, engine, make_company, two_months, volumes, broadcaster, db,
    ):
        company = make_company(current_price=Decimal("10.00"), total_shares=1000)
        two_months(company.id, "10000", "12000", "11400")
        volumes.volumes[company.id] = Decimal("100")

        [result] = engine.execute_price_adjustment().results

        assert result.outcome == UnitOutcome.CREATED
        assert result.performance.score == Decimal("0.3850")
        assert result.new_price == Decimal("12.00")
        assert result.change_percent == Decimal("20.00")
        assert db.get(Company, company.id).current_price == Decimal("12.00")
        assert broadcaster.updates == [
            (company.id, Decimal("12.00"), Decimal("10.00"), Decimal("20.00")),
        ]

    def test_snapshot_recorded_at_start_of_target_month(self, engine, make_company, two_months, db):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")

        [result] = engine.execute_price_adjustment().results

        expected = datetime(2026, 2, 1, 3, 0, tzinfo=UTC)
        assert result.snapshot_at == expected
        snapshot = db.one(PriceSnapshot, PriceSnapshot.company_id == company.id)
        assert as_utc(snapshot.snapshot_at) == expected
        assert snapshot.price == Decimal("10.30")
        assert snapshot.previous_price == Decimal("10.00")
        assert snapshot.performance_score == Decimal("0.03")

    def test_falling_revenue_lowers_price(self, engine, make_company, two_months):
        company = make_company()
        two_months(company.id, "10000", "5000", "250")

        [result] = engine.execute_price_adjustment().results

        assert result.performance.score == Decimal("-0.1850")
        assert result.new_price == Decimal("8.15")
        assert result.change_percent == Decimal("-18.50")

    def test_volume_queried_for_target_month(self, engine, make_company, two_months, volumes):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")
        engine.execute_price_adjustment()
        assert volumes.calls == [(company.id, TARGET_PERIOD.start, TARGET_PERIOD.end)]

    def test_recent_dividends_raise_score(
        self, engine, make_company, two_months, session_factory,
    ):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")
        paid_at = RUN_TIME - timedelta(days=1)
        with transaction_scope(session_factory) as session:
            session.add(Dividend(
                id=uuid4(),
                company_id=company.id,
                revenue_report_id=uuid4(),
                report_month=2,
                report_year=2026,
                total_dividend_pool=Decimal("1.00"),
                total_shares_eligible=Decimal("1000"),
                amount_per_share=Decimal("0.001"),
                payment_status="completed",
                distribution_mode="inline",
                expected_payout_count=0,
                distribution_date=paid_at,
                created_at=paid_at,
                updated_at=paid_at,
            ))

        [result] = engine.execute_price_adjustment().results

        assert result.performance.dividend_score == Decimal("0.1")
        assert result.new_price == Decimal("10.40")

    def test_rerun_is_a_noop(self, engine, make_company, two_months, broadcaster, db):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")
        engine.execute_price_adjustment()

        [result] = engine.execute_price_adjustment().results

        assert result.outcome == UnitOutcome.SKIPPED
        assert result.note == "Price snapshot already exists"
        assert db.get(Company, company.id).current_price == Decimal("10.30")
        assert db.count(PriceSnapshot) == 1
        assert len(broadcaster.updates) == 1

    def test_duplicate_snapshot_insert_is_a_skip(
        self, engine, make_company, two_months, broadcaster, monkeypatch, db,
    ):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")
        monkeypatch.setattr(IdempotencySelector, "price_snapshot_exists", lambda self, *args: False)

        first = engine.manually_adjust_stock_price(company.id, month=2, year=2026)
        second = engine.manually_adjust_stock_price(company.id, month=2, year=2026)

        assert first.outcome == UnitOutcome.CREATED
        assert second.outcome == UnitOutcome.SKIPPED
        assert second.note == "Price snapshot already exists"
        assert second.new_price == Decimal("10.30")
        assert db.get(Company, company.id).current_price == Decimal("10.30")
        assert db.count(PriceSnapshot) == 1
        assert len(broadcaster.updates) == 1

    def test_insufficient_history(self, engine, make_company, make_report, db):
        company = make_company()
        make_report(company.id)

        run = engine.execute_price_adjustment()

        [result] = run.results
        assert result.outcome == UnitOutcome.PRECONDITION_UNMET
        assert result.note == "Insufficient revenue history (need at least 2 months)"
        assert run.counts.skipped == 1
        assert db.count(PriceSnapshot) == 0

    def test_later_reports_are_ignored(self, engine, make_company, make_report, two_months):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")
        make_report(company.id, period=ReportingPeriod(2026, 3), net_revenue="99999", net_profit="1")

        [result] = engine.execute_price_adjustment().results
        assert result.new_price == Decimal("10.30")

    def test_broadcast_failure_is_swallowed(
        self, session_factory, clock, make_company, two_months, captured_logs,
    ):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")
        engine = PriceAdjustmentEngine(
            session_factory, broadcaster=RecordingBroadcaster(fail=True), clock=clock,
        )

        [result] = engine.execute_price_adjustment().results

        assert result.outcome == UnitOutcome.CREATED
        assert any(r["message"] == "price_broadcast_failed" for r in captured_logs())

    def test_company_failure_is_isolated(self, session_factory, clock, make_company, two_months):
        broken = make_company()
        healthy = make_company()
        for company in (broken, healthy):
            two_months(company.id, "10000", "10000", "1000")

        class FlakyVolumes:
            def volume_for(self, company_id, start, end):
                if company_id == broken.id:
                    raise RuntimeError("market data unavailable")
                return Decimal("0")

        engine = PriceAdjustmentEngine(session_factory, volume_source=FlakyVolumes(), clock=clock)
        run = engine.execute_price_adjustment()

        outcomes = {r.company_id: r.outcome for r in run.results}
        assert outcomes == {broken.id: UnitOutcome.FAILED, healthy.id: UnitOutcome.CREATED}


class TestManualPriceAdjustment:
    def test_manual_adjustment(self, engine, make_company, two_months):
        company = make_company()
        two_months(company.id, "10000", "10000", "1000")
        result = engine.manually_adjust_stock_price(company.id, month=2, year=2026)
        assert result.new_price == Decimal("10.30")

    def test_unknown_company(self, engine):
        with pytest.raises(CompanyNotFoundError):
            engine.manually_adjust_stock_price(uuid4(), month=2, year=2026)
