"""
Pytest fixtures for the payout automation test suite.

Provides:
- In-memory SQLite database with every table created per test
- A DeterministicClock pinned to 2026-03-01 00:00 UTC (so "last month" is
  February 2026)
- Data factories for companies, holdings and revenue reports
- Fake bank and notification collaborators (see tests/fakes.py)
- Structured log capture

SQLite notes:
- One shared connection (StaticPool) so every session sees the same data.
- SELECT ... FOR UPDATE is ignored; tests that need real concurrency use a
  file database (see tests/job_queue/test_worker.py).
"""

import itertools
import json
import logging
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payout_kernel.db.engine import create_tables
from payout_kernel.db.transaction import transaction_scope
from payout_kernel.domain.clock import DeterministicClock
from payout_kernel.domain.period import ReportingPeriod
from payout_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payout_kernel.models.company import (
    Company,
    CompanyVerificationStatus,
    ListingStatus,
    StockHolding,
)
from payout_kernel.models.revenue import ReportVerificationStatus, RevenueReport
from payout_kernel.services.retry_service import RetryPolicy, RetryService
from tests.fakes import RUN_TIME, TARGET_PERIOD, FakeBankFetcher, RecordingNotifier


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging():
    """Route payout_kernel logs through the structured formatter at DEBUG."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture payout_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, revenue_engine):
            revenue_engine.execute_revenue_calculation()
            logs = captured_logs()
            assert any(r["message"] == "revenue_report_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payout_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


class DbReader:
    """Reads rows through a fresh session so assertions never see stale state."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def all(self, model, *criteria) -> list:
        session = self._session_factory()
        try:
            return list(session.execute(select(model).where(*criteria)).scalars().all())
        finally:
            session.close()

    def one(self, model, *criteria):
        rows = self.all(model, *criteria)
        assert len(rows) == 1, f"expected one {model.__name__}, found {len(rows)}"
        return rows[0]

    def get(self, model, row_id: UUID):
        session = self._session_factory()
        try:
            return session.get(model, row_id)
        finally:
            session.close()

    def count(self, model, *criteria) -> int:
        return len(self.all(model, *criteria))


@pytest.fixture
def db(session_factory) -> DbReader:
    return DbReader(session_factory)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(RUN_TIME)


@pytest.fixture
def period() -> ReportingPeriod:
    return TARGET_PERIOD


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def make_company(session_factory):
    """Create a company; later calls get later created_at (stable ordering)."""
    sequence = itertools.count(1)

    def _make(
        name: str | None = None,
        total_shares: Decimal | int = Decimal("1000"),
        current_price: Decimal = Decimal("10.00"),
        bank_connected: bool = True,
        listing_status: ListingStatus = ListingStatus.ACTIVE,
        verification_status: CompanyVerificationStatus = CompanyVerificationStatus.APPROVED,
    ) -> Company:
        n = next(sequence)
        created = RUN_TIME - timedelta(days=400) + timedelta(seconds=n)
        company = Company(
            id=uuid4(),
            business_name=name or f"Company {n}",
            bank_account_number=f"ACCT-{n:04d}",
            bank_api_connected=bank_connected,
            total_shares=Decimal(total_shares),
            current_price=current_price,
            listing_status=listing_status.value,
            verification_status=verification_status.value,
            created_at=created,
            updated_at=created,
        )
        with transaction_scope(session_factory, "test_create_company") as session:
            session.add(company)
        return company

    return _make


@pytest.fixture
def make_holding(session_factory):
    sequence = itertools.count(1)

    def _make(
        company_id: UUID,
        shares: Decimal | int,
        user_id: UUID | None = None,
    ) -> StockHolding:
        created = RUN_TIME - timedelta(days=200) + timedelta(seconds=next(sequence))
        holding = StockHolding(
            id=uuid4(),
            user_id=user_id or uuid4(),
            company_id=company_id,
            shares_owned=Decimal(shares),
            total_dividends_earned=Decimal("0"),
            created_at=created,
            updated_at=created,
        )
        with transaction_scope(session_factory, "test_create_holding") as session:
            session.add(holding)
        return holding

    return _make


@pytest.fixture
def make_report(session_factory):
    """Create a revenue report with a given pool (other amounts derived loosely)."""
    sequence = itertools.count(1)

    def _make(
        company_id: UUID,
        period: ReportingPeriod = TARGET_PERIOD,
        dividend_pool: Decimal | str = Decimal("600.00"),
        net_revenue: Decimal | str | None = None,
        net_profit: Decimal | str | None = None,
        status: ReportVerificationStatus = ReportVerificationStatus.AUTO_VERIFIED,
    ) -> RevenueReport:
        pool = Decimal(dividend_pool)
        profit = Decimal(net_profit) if net_profit is not None else pool / Decimal("0.6")
        revenue = Decimal(net_revenue) if net_revenue is not None else profit / Decimal("0.95")
        created = RUN_TIME - timedelta(hours=2) + timedelta(seconds=next(sequence))
        report = RevenueReport(
            id=uuid4(),
            company_id=company_id,
            report_month=period.month,
            report_year=period.year,
            period_start=period.start,
            period_end=period.end,
            total_deposits=revenue,
            total_withdrawals=Decimal("0"),
            net_revenue=revenue,
            platform_fee=revenue - profit,
            net_profit=profit,
            dividend_pool=pool,
            reinvestment_amount=profit - pool,
            transaction_count=1,
            verification_status=status.value,
            created_at=created,
            updated_at=created,
        )
        with transaction_scope(session_factory, "test_create_report") as session:
            session.add(report)
        return report

    return _make


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def bank() -> FakeBankFetcher:
    return FakeBankFetcher()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fast_retry(sleeps) -> RetryService:
    """Three attempts, 1s/2s backoff recorded instead of slept."""
    return RetryService(
        RetryPolicy(max_attempts=3, initial_delay_ms=1000, max_delay_ms=30000),
        sleep=sleeps.append,
    )
