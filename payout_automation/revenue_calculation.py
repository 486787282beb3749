"""
RevenueCalculationEngine -- monthly revenue report per company.

Responsibility:
    For a target reporting period (normally the month before the trigger),
    fetches every eligible company's bank transactions, stores them
    idempotently, aggregates credits and debits, derives the platform fee,
    net profit, dividend pool and reinvestment, and persists one
    RevenueReport per company.

Architecture position:
    Automation layer.  Reads and writes through an injected session factory;
    the bank API is an injected ``BankTransactionFetcher`` wrapped in the
    RetryService.  Time comes from the injected Clock.

Invariants enforced:
    - At most one RevenueReport per (company, month, year).  The existence
      pre-check is a fast path; the unique constraint is the guard, and a
      unique violation at insert is reported as a skip.
    - Transactions and the report are written in ONE transaction.
    - Duplicate bank references are ignored, both against stored rows and
      within one fetched batch.
    - All money is Decimal; aggregates are rounded to cents (half up)
      before any further arithmetic.

Failure modes:
    - Per-company errors (fetch exhausted, auth failure, bad data) are
      logged and recorded as FAILED results; other companies still run.
    - Failing to list companies aborts the run and propagates.
"""

from __future__ import annotations

import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payout_config.schema import RevenueSettings
from payout_kernel.db.transaction import nested_scope, run_in_transaction
from payout_kernel.domain.clock import Clock, SystemClock
from payout_kernel.domain.money import ZERO, round_money, to_decimal
from payout_kernel.domain.period import ReportingPeriod, previous_month
from payout_kernel.exceptions import CompanyNotFoundError
from payout_kernel.logging_config import LogContext, get_logger
from payout_kernel.models.company import Company, CompanyVerificationStatus, ListingStatus
from payout_kernel.models.revenue import (
    BankTransaction,
    ReportVerificationStatus,
    RevenueReport,
    TransactionType,
)
from payout_kernel.selectors.idempotency_selector import IdempotencySelector
from payout_kernel.services.retry_service import RetryService

from payout_automation.collaborators import BankTransactionFetcher, FetchedTransaction
from payout_automation.types import (
    CompanySnapshot,
    RevenueCalculationResult,
    RevenueRunResult,
    RevenueSplit,
    UnitOutcome,
)

logger = get_logger("automation.revenue")

REPORT_EXISTS_NOTE = "Revenue report already exists"
BANK_NOT_CONNECTED_NOTE = "Bank API not connected"


# =============================================================================
# Pure calculations
# =============================================================================


def summarize_transactions(
    transactions: Sequence[FetchedTransaction],
) -> tuple[Decimal, Decimal, int]:
    """Return (total_credits, total_debits, count), totals rounded to cents."""
    credits = ZERO
    debits = ZERO
    for txn in transactions:
        amount = to_decimal(txn.amount)
        if TransactionType(txn.type) == TransactionType.CREDIT:
            credits += amount
        else:
            debits += amount
    return round_money(credits), round_money(debits), len(transactions)


def split_revenue(
    total_credits: Decimal,
    total_debits: Decimal,
    settings: RevenueSettings,
    transaction_count: int = 0,
) -> RevenueSplit:
    """Derive fee, profit, dividend pool and reinvestment from the totals.

    >>> s = split_revenue(Decimal("50000"), Decimal("20000"), RevenueSettings())
    >>> (s.net_revenue, s.platform_fee, s.net_profit, s.dividend_pool, s.reinvestment_amount)
    (Decimal('30000.00'), Decimal('1500.00'), Decimal('28500.00'), Decimal('17100.00'), Decimal('11400.00'))
    """
    credits = round_money(total_credits)
    debits = round_money(total_debits)
    net_revenue = round_money(credits - debits)
    platform_fee = round_money(net_revenue * settings.platform_fee_rate)
    net_profit = round_money(net_revenue - platform_fee)
    return RevenueSplit(
        total_deposits=credits,
        total_withdrawals=debits,
        net_revenue=net_revenue,
        platform_fee=platform_fee,
        net_profit=net_profit,
        dividend_pool=round_money(net_profit * settings.dividend_pool_rate),
        reinvestment_amount=round_money(net_profit * settings.reinvestment_rate),
        transaction_count=transaction_count,
    )


# =============================================================================
# Engine
# =============================================================================


class RevenueCalculationEngine:
    """Builds monthly revenue reports."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        bank_fetcher: BankTransactionFetcher,
        clock: Clock | None = None,
        settings: RevenueSettings | None = None,
        retry: RetryService | None = None,
    ):
        self._session_factory = session_factory
        self._bank_fetcher = bank_fetcher
        self._clock = clock or SystemClock()
        self._settings = settings or RevenueSettings()
        self._retry = retry or RetryService(self._settings.fetch_retry.to_policy())

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def execute_revenue_calculation(
        self, period: ReportingPeriod | None = None,
    ) -> RevenueRunResult:
        """Compute reports for every eligible company.

        Args:
            period: Target month.  Defaults to the month before ``clock.now_utc()``.
        """
        period = period or previous_month(self._clock.now_utc())
        start = time.monotonic()

        logger.info(
            "revenue_calculation_started",
            extra={
                "period": period.key,
                "period_start": period.start,
                "period_end": period.end,
            },
        )

        companies = self._load_eligible_companies()
        logger.info("revenue_companies_loaded", extra={"company_count": len(companies)})

        results = []
        for company in companies:
            with LogContext.bind(company_id=company.company_id):
                results.append(self._process_company_isolated(company, period))

        run = RevenueRunResult(period=period, results=tuple(results))
        counts = run.counts
        logger.info(
            "revenue_calculation_completed",
            extra={
                "period": period.key,
                "total_companies": counts.total,
                "succeeded": counts.succeeded,
                "skipped": counts.skipped,
                "failed": counts.failed,
                "duration_ms": int((time.monotonic() - start) * 1000),
            },
        )
        if counts.failed:
            logger.warning(
                "revenue_calculation_failures",
                extra={
                    "failures": [
                        {"company_id": str(r.company_id), "error": r.error}
                        for r in run.results
                        if r.outcome == UnitOutcome.FAILED
                    ],
                },
            )
        return run

    def manually_calculate_revenue(
        self, company_id: UUID, month: int, year: int,
    ) -> RevenueCalculationResult:
        """Recompute one company's report.  Still honors idempotency.

        Raises:
            CompanyNotFoundError: If the company does not exist.
            ValueError: If month/year is not a valid period.
        """
        period = ReportingPeriod(year=year, month=month)
        logger.info(
            "revenue_manual_trigger",
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
            return self.process_company(snapshot, period)

    def process_company(
        self, company: CompanySnapshot, period: ReportingPeriod,
    ) -> RevenueCalculationResult:
        """Compute and persist one company's report.  Errors propagate."""
        existing_id = self._find_report_id(company.company_id, period)
        if existing_id is not None:
            logger.info(
                "revenue_report_exists",
                extra={"report_id": str(existing_id), "period": period.key},
            )
            return RevenueCalculationResult(
                company_id=company.company_id,
                outcome=UnitOutcome.SKIPPED,
                report_id=existing_id,
                note=REPORT_EXISTS_NOTE,
            )

        if not company.bank_api_connected:
            logger.warning("revenue_bank_not_connected", extra={"period": period.key})
            return RevenueCalculationResult(
                company_id=company.company_id,
                outcome=UnitOutcome.PRECONDITION_UNMET,
                note=BANK_NOT_CONNECTED_NOTE,
            )

        transactions = self._retry.run(
            lambda: self._bank_fetcher.fetch_transactions(
                company.bank_account_identifier, period.start, period.end,
            ),
            operation_name="fetch_bank_transactions",
        )
        logger.info(
            "bank_transactions_fetched",
            extra={"transaction_count": len(transactions), "period": period.key},
        )

        credits, debits, count = summarize_transactions(transactions)
        split = split_revenue(credits, debits, self._settings, transaction_count=count)

        try:
            report_id = run_in_transaction(
                self._session_factory,
                lambda session: self._persist(session, company, period, transactions, split),
                "create_revenue_report",
            )
        except IntegrityError:
            existing_id = self._find_report_id(company.company_id, period, pre_check=False)
            if existing_id is None:
                raise
            logger.info(
                "revenue_report_duplicate",
                extra={"report_id": str(existing_id), "period": period.key},
            )
            return RevenueCalculationResult(
                company_id=company.company_id,
                outcome=UnitOutcome.SKIPPED,
                report_id=existing_id,
                note=REPORT_EXISTS_NOTE,
            )

        logger.info(
            "revenue_report_created",
            extra={
                "report_id": str(report_id),
                "period": period.key,
                "net_revenue": split.net_revenue,
                "platform_fee": split.platform_fee,
                "net_profit": split.net_profit,
                "dividend_pool": split.dividend_pool,
                "reinvestment_amount": split.reinvestment_amount,
            },
        )
        return RevenueCalculationResult(
            company_id=company.company_id,
            outcome=UnitOutcome.CREATED,
            report_id=report_id,
            split=split,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _process_company_isolated(
        self, company: CompanySnapshot, period: ReportingPeriod,
    ) -> RevenueCalculationResult:
        try:
            return self.process_company(company, period)
        except Exception as exc:
            logger.exception(
                "revenue_company_failed",
                extra={"business_name": company.business_name, "period": period.key},
            )
            return RevenueCalculationResult(
                company_id=company.company_id,
                outcome=UnitOutcome.FAILED,
                error=str(exc),
            )

    def _load_eligible_companies(self) -> list[CompanySnapshot]:
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

    def _find_report_id(
        self, company_id: UUID, period: ReportingPeriod, pre_check: bool = True,
    ) -> UUID | None:
        """Existing report id.  After a unique violation the row is read directly."""
        session = self._session_factory()
        try:
            if pre_check:
                return IdempotencySelector(session).find_revenue_report_id(
                    company_id, period.month, period.year,
                )
            return session.execute(
                select(RevenueReport.id).where(
                    RevenueReport.company_id == company_id,
                    RevenueReport.report_month == period.month,
                    RevenueReport.report_year == period.year,
                )
            ).scalar_one_or_none()
        finally:
            session.close()

    def _persist(
        self,
        session: Session,
        company: CompanySnapshot,
        period: ReportingPeriod,
        transactions: Sequence[FetchedTransaction],
        split: RevenueSplit,
    ) -> UUID:
        now = self._clock.now_utc()
        self._store_transactions(session, company.company_id, transactions, now)

        report = RevenueReport(
            id=uuid4(),
            company_id=company.company_id,
            report_month=period.month,
            report_year=period.year,
            period_start=period.start,
            period_end=period.end,
            total_deposits=split.total_deposits,
            total_withdrawals=split.total_withdrawals,
            net_revenue=split.net_revenue,
            platform_fee=split.platform_fee,
            net_profit=split.net_profit,
            dividend_pool=split.dividend_pool,
            reinvestment_amount=split.reinvestment_amount,
            transaction_count=split.transaction_count,
            verification_status=ReportVerificationStatus.AUTO_VERIFIED.value,
            created_at=now,
            updated_at=now,
        )
        session.add(report)
        session.flush()
        return report.id

    def _store_transactions(
        self,
        session: Session,
        company_id: UUID,
        transactions: Sequence[FetchedTransaction],
        now: datetime,
    ) -> None:
        """Insert-or-ignore on bank_reference."""
        rows: dict[str, dict] = {}
        for txn in transactions:
            if txn.reference in rows:
                continue
            rows[txn.reference] = {
                "id": uuid4(),
                "company_id": company_id,
                "bank_reference": txn.reference,
                "transaction_date": txn.date,
                "transaction_type": TransactionType(txn.type).value,
                "amount": to_decimal(txn.amount),
                "balance_after": (
                    to_decimal(txn.balance_after) if txn.balance_after is not None else None
                ),
                "description": txn.description,
                "created_at": now,
                "updated_at": now,
            }
        if not rows:
            return

        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(BankTransaction).on_conflict_do_nothing(
                index_elements=["bank_reference"],
            )
            session.execute(stmt, list(rows.values()))
        elif dialect == "sqlite":
            stmt = sqlite.insert(BankTransaction).on_conflict_do_nothing(
                index_elements=["bank_reference"],
            )
            session.execute(stmt, list(rows.values()))
        else:
            for row in rows.values():
                try:
                    with nested_scope(session, "store_bank_transaction"):
                        session.execute(insert(BankTransaction), [row])
                except IntegrityError:
                    logger.debug(
                        "bank_transaction_duplicate",
                        extra={"bank_reference": row["bank_reference"]},
                    )

        logger.debug("bank_transactions_stored", extra={"count": len(rows)})
