"""Tests for scripts/automation_cli.py against a file database."""

import json
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from payout_kernel.db.engine import reset_engine
from payout_kernel.models.revenue import TransactionType
from scripts.automation_cli import FixtureBankFetcher, main


@pytest.fixture(autouse=True)
def _reset_engine():
    yield
    reset_engine()


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    assert main(["--db-url", url, "init-db"]) == 0
    return url


class TestCommands:
    def test_init_db_seeds_schedules(self, tmp_path, capsys):
        assert main(["--db-url", f"sqlite:///{tmp_path / 'cli.db'}", "init-db"]) == 0
        out = capsys.readouterr().out
        assert "Schedules added: 3" in out
        assert "DividendDistribution" in out

    def test_reinit_adds_nothing(self, db_url, capsys):
        capsys.readouterr()
        assert main(["--db-url", db_url, "init-db"]) == 0
        assert "Schedules added: 0" in capsys.readouterr().out

    def test_run_job_without_companies(self, db_url, capsys):
        assert main(["--db-url", db_url, "run-job", "MonthlyRevenueCalculation", "--period", "2026-02"]) == 0
        out = capsys.readouterr().out
        assert "MonthlyRevenueCalculation:2026-02" in out
        assert "Status:    completed" in out

    def test_unknown_job(self, db_url, capsys):
        assert main(["--db-url", db_url, "run-job", "QuarterlyBonus"]) == 1
        assert "AUTOMATION_JOB_NOT_FOUND" in capsys.readouterr().err

    def test_manual_requires_company(self, db_url, capsys):
        assert main(["--db-url", db_url, "manual", "revenue"]) == 1
        assert "companyId is required for revenue calculation" in capsys.readouterr().err

    def test_queue_metrics(self, db_url, capsys):
        assert main(["--db-url", db_url, "queue", "metrics"]) == 0
        out = capsys.readouterr().out
        assert "Queue dividends" in out
        assert "waiting" in out

    def test_health(self, db_url, capsys):
        assert main(["--db-url", db_url, "health"]) == 0
        assert "Automation health: OK" in capsys.readouterr().out

    def test_missing_config(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "absent.yaml"), "health"]) == 1
        assert "Failed to load settings" in capsys.readouterr().err


class TestFixtureBankFetcher:
    def test_filters_to_requested_window(self, tmp_path):
        path = tmp_path / "bank.json"
        path.write_text(json.dumps({
            "ACCT-0001": [
                {"date": "2026-01-31T23:00:00+00:00", "type": "credit", "amount": "5.00", "reference": "jan"},
                {"date": "2026-02-03T10:00:00+00:00", "type": "credit", "amount": 1250.5, "reference": "feb-1"},
                {
                    "date": "2026-02-20T10:00:00+00:00",
                    "type": "debit",
                    "amount": "200.00",
                    "reference": "feb-2",
                    "balance_after": "1050.50",
                },
            ],
        }))
        fetcher = FixtureBankFetcher(path)

        rows = fetcher.fetch_transactions(
            "ACCT-0001",
            datetime(2026, 2, 1, tzinfo=UTC),
            datetime(2026, 2, 28, 23, 59, 59, tzinfo=UTC),
        )

        assert [r.reference for r in rows] == ["feb-1", "feb-2"]
        assert rows[0].amount == Decimal("1250.5")
        assert rows[0].balance_after is None
        assert rows[1].type == TransactionType.DEBIT
        assert rows[1].balance_after == Decimal("1050.50")

    def test_unknown_account_is_empty(self, tmp_path):
        path = tmp_path / "bank.json"
        path.write_text("{}")
        rows = FixtureBankFetcher(path).fetch_transactions(
            "ACCT-9999", datetime(2026, 2, 1, tzinfo=UTC), datetime(2026, 3, 1, tzinfo=UTC),
        )
        assert rows == []
