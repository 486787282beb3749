"""
Tests for payout_batch.orchestrator.AutomationOrchestrator.

End-to-end monthly automation through the wired engines: revenue report,
dividend distribution and price adjustment run by job name, manual
corrections and health reporting.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from payout_automation.types import UnitOutcome
from payout_batch.domain.types import RunStatus
from payout_batch.orchestrator import AutomationOrchestrator, ManualJobOptions
from payout_config.schema import DIVIDEND_JOB, PRICE_JOB, REVENUE_JOB, AutomationSettings
from payout_kernel.db.engine import reset_engine
from payout_kernel.domain.period import ReportingPeriod
from payout_kernel.exceptions import (
    AutomationJobNotFoundError,
    BankAuthError,
    ManualJobOptionsError,
    RevenueReportNotFoundError,
)
from payout_kernel.models.company import UserWallet
from payout_kernel.models.dividend import Dividend
from payout_kernel.models.revenue import RevenueReport, TransactionType
from tests.fakes import TARGET_PERIOD, bank_txn


@pytest.fixture
def orchestrator(session_factory, bank, clock, notifier, fast_retry):
    orchestrator = AutomationOrchestrator.from_session_factory(
        session_factory,
        bank,
        clock=clock,
        notifier=notifier,
        retry=fast_retry,
        lock_owner="orchestrator-a",
    )
    yield orchestrator
    orchestrator.close()


@pytest.fixture
def bakery(make_company, make_holding, bank):
    company = make_company(name="Acme Bakery", total_shares=1000)
    holdings = [make_holding(company.id, 600), make_holding(company.id, 400)]
    account = company.bank_account_number
    bank.transactions[account] = [
        bank_txn(TransactionType.CREDIT, "30000.00", f"{account}-dep-1", day=3),
        bank_txn(TransactionType.CREDIT, "20000.00", f"{account}-dep-2", day=14),
        bank_txn(TransactionType.DEBIT, "20000.00", f"{account}-wd-1", day=20),
    ]
    return company, holdings


class TestMonthlyRun:
    def test_revenue_then_dividends(self, orchestrator, bakery, notifier, db):
        company, (big, small) = bakery

        revenue_run = orchestrator.run_job(REVENUE_JOB)
        assert revenue_run.status == RunStatus.COMPLETED
        assert revenue_run.succeeded_items == 1

        dividend_run = orchestrator.run_job(DIVIDEND_JOB)
        assert dividend_run.status == RunStatus.COMPLETED
        assert dividend_run.succeeded_items == 1

        report = db.one(RevenueReport, RevenueReport.company_id == company.id)
        assert report.dividend_pool == Decimal("17100.00")
        dividend = db.one(Dividend, Dividend.revenue_report_id == report.id)
        assert dividend.amount_per_share == Decimal("17.1")
        assert db.one(UserWallet, UserWallet.user_id == big.user_id).balance == Decimal("10260.00")
        assert db.one(UserWallet, UserWallet.user_id == small.user_id).balance == Decimal("6840.00")
        assert len(notifier.sent) == 2

    def test_price_without_history_is_a_skip(self, orchestrator, bakery):
        orchestrator.run_job(REVENUE_JOB)
        run = orchestrator.run_job(PRICE_JOB)

        assert run.status == RunStatus.COMPLETED
        assert (run.total_items, run.skipped_items) == (1, 1)

    def test_rerun_of_completed_month_is_skipped(self, orchestrator, bakery, bank):
        first = orchestrator.run_job(REVENUE_JOB)
        second = orchestrator.run_job(REVENUE_JOB)

        assert second.run_id == first.run_id
        assert len(bank.calls) == 1

    def test_all_companies_failing_fails_run(self, orchestrator, make_company, bank):
        company = make_company()
        bank.failures[company.bank_account_number] = [
            BankAuthError(company.bank_account_number, "token revoked"),
        ]

        run = orchestrator.run_job(REVENUE_JOB)

        assert run.status == RunStatus.FAILED
        assert run.error_summary == "1 of 1 units failed"

    def test_explicit_period(self, orchestrator, make_company, db):
        company = make_company()
        run = orchestrator.run_job(REVENUE_JOB, ReportingPeriod(2025, 12))

        assert run.idempotency_key == "MonthlyRevenueCalculation:2025-12"
        report = db.one(RevenueReport, RevenueReport.company_id == company.id)
        assert (report.report_month, report.report_year) == (12, 2025)

    def test_unknown_job(self, orchestrator):
        with pytest.raises(AutomationJobNotFoundError):
            orchestrator.run_job("QuarterlyBonus")

    def test_registered_jobs(self, orchestrator):
        assert orchestrator.scheduler.job_names == sorted([REVENUE_JOB, DIVIDEND_JOB, PRICE_JOB])


class TestQueuedDistribution:
    def test_worker_drains_distribution(self, orchestrator, bakery, db):
        company, (big, _) = bakery
        orchestrator.run_job(REVENUE_JOB)

        job_ids = orchestrator.dividend_engine.enqueue_dividend_distribution(None, orchestrator.queue)
        assert len(job_ids) == 1

        assert orchestrator.create_worker().drain() == 3
        assert db.one(UserWallet, UserWallet.user_id == big.user_id).balance == Decimal("10260.00")
        assert orchestrator.queue_health().healthy


# =============================================================================
# Manual jobs
# =============================================================================


class TestManualJobs:
    def test_manual_revenue_defaults_to_last_month(self, orchestrator, bakery, db):
        company, _ = bakery
        result = orchestrator.execute_manual_job("revenue", ManualJobOptions(company_id=company.id))

        assert result.outcome == UnitOutcome.CREATED
        report = db.one(RevenueReport, RevenueReport.company_id == company.id)
        assert (report.report_month, report.report_year) == (TARGET_PERIOD.month, TARGET_PERIOD.year)

    def test_manual_dividend(self, orchestrator, bakery, make_report):
        company, _ = bakery
        report = make_report(company.id, dividend_pool="100.00")

        result = orchestrator.execute_manual_job(
            "dividend", ManualJobOptions(revenue_report_id=report.id),
        )

        assert result.outcome == UnitOutcome.CREATED
        assert result.total_distributed == Decimal("100.00")

    def test_manual_price_for_explicit_month(self, orchestrator, make_company, make_report):
        company = make_company()
        make_report(company.id, period=ReportingPeriod(2026, 1), net_revenue="10000", net_profit="10000")
        make_report(company.id, net_revenue="10000", net_profit="1000")

        result = orchestrator.execute_manual_job(
            "price", ManualJobOptions(company_id=company.id, month=2, year=2026),
        )

        assert result.new_price == Decimal("10.30")

    def test_unknown_report(self, orchestrator):
        with pytest.raises(RevenueReportNotFoundError):
            orchestrator.execute_manual_job("dividend", ManualJobOptions(revenue_report_id=uuid4()))

    @pytest.mark.parametrize("job_type,message", [
        ("revenue", "companyId is required for revenue calculation"),
        ("dividend", "revenueReportId is required for dividend distribution"),
        ("price", "companyId is required for price adjustment"),
        ("bonus", "Unknown job type: bonus"),
    ])
    def test_missing_options(self, orchestrator, job_type, message):
        with pytest.raises(ManualJobOptionsError, match=message) as exc_info:
            orchestrator.execute_manual_job(job_type)
        assert exc_info.value.job_type == job_type


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    def test_no_runs_is_healthy(self, orchestrator):
        health = orchestrator.automation_health()

        assert health.healthy
        assert [j.job_name for j in health.jobs] == orchestrator.scheduler.job_names
        assert all(j.total_runs == 0 for j in health.jobs)

    def test_failed_run_makes_job_unhealthy(self, orchestrator, make_company, bank, captured_logs):
        company = make_company()
        bank.failures[company.bank_account_number] = [
            BankAuthError(company.bank_account_number, "token revoked"),
        ]
        orchestrator.run_job(REVENUE_JOB)

        health = orchestrator.automation_health()

        assert not health.healthy
        revenue = next(j for j in health.jobs if j.job_name == REVENUE_JOB)
        assert revenue.failure_count == 1
        assert revenue.success_count == 0
        assert revenue.last_run_status == RunStatus.FAILED
        assert revenue.last_error == "1 of 1 units failed"
        checked = [r for r in captured_logs() if r["message"] == "automation_health_checked"]
        assert checked[-1]["unhealthy_jobs"] == [REVENUE_JOB]

    def test_success_tracked(self, orchestrator, make_company):
        make_company()
        orchestrator.run_job(REVENUE_JOB)

        revenue = next(j for j in orchestrator.automation_health().jobs if j.job_name == REVENUE_JOB)
        assert revenue.success_count == 1
        assert revenue.last_success_at is not None
        assert revenue.healthy

    def test_seeded_schedules_report_next_run(self, orchestrator):
        assert orchestrator.seed_schedules() == 3

        health = orchestrator.automation_health()
        assert all(j.next_run_at is not None for j in health.jobs)

    def test_queue_health(self, orchestrator):
        health = orchestrator.queue_health()
        assert health.healthy
        assert health.queue_name == "dividends"
        assert health.failed == 0


class TestFromSettings:
    def test_file_database_with_schema(self, tmp_path, bank, clock):
        settings = AutomationSettings(database_url=f"sqlite:///{tmp_path / 'payout.db'}")
        orchestrator = AutomationOrchestrator.from_settings(
            settings, bank, create_schema=True, clock=clock,
        )
        try:
            assert orchestrator.run_job(REVENUE_JOB).status == RunStatus.COMPLETED
        finally:
            orchestrator.close()
            reset_engine()
