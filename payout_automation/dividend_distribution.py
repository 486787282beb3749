"""
DividendDistributionEngine -- turns revenue report pools into shareholder
wallet credits.

Responsibility:
    For every distributable revenue report of the target month, computes
    the per-share amount and credits every shareholder's wallet with
    ``shares_owned * amount_per_share`` (truncated to cents), recording one
    DividendPayout per credited shareholder.

Architecture position:
    Automation layer.  Wallet credit and notification are injected
    collaborators; the queue is passed in for queued mode.

Two modes:
    Inline   One transaction per report: Dividend, every payout, every
             wallet credit and every holding increment commit together or
             not at all.  Holdings are walked in fixed-size batches.
    Queued   One transaction creates the Dividend (``queued``, with its
             expected payout count) and enqueues one PayoutJob per payable
             shareholder.  Each payout job then commits payout, credit and
             holding increment on its own; the Dividend completes when the
             persisted payout count reaches the expected count.

Invariants enforced:
    - At most one Dividend per revenue report; at most one payout per
      (dividend, user).  Both are unique constraints; a violation is a
      benign duplicate and never a failure.
    - The per-share amount is truncated to 9 places and every payout is
      truncated to cents, so the sum of payouts never exceeds the pool.
    - A payout below the minimum threshold is skipped and writes nothing.
    - Notifications go out only after commit and never affect the result.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payout_config.schema import DividendSettings
from payout_kernel.db.transaction import run_in_transaction
from payout_kernel.domain.clock import Clock, SystemClock
from payout_kernel.domain.money import ZERO, compute_amount_per_share, compute_payout
from payout_kernel.domain.period import ReportingPeriod, previous_month
from payout_kernel.exceptions import (
    CompanyNotFoundError,
    DividendNotFoundError,
    RevenueReportNotFoundError,
    RevenueReportNotVerifiedError,
)
from payout_kernel.logging_config import LogContext, get_logger
from payout_kernel.models.company import Company, StockHolding
from payout_kernel.models.dividend import (
    DistributionMode,
    Dividend,
    DividendPayout,
    DividendStatus,
    PaymentMethod,
    PayoutStatus,
)
from payout_kernel.models.revenue import DISTRIBUTABLE_STATUSES, RevenueReport
from payout_kernel.selectors.idempotency_selector import IdempotencySelector
from payout_kernel.services.wallet_service import SqlWalletCredit
from payout_kernel.utils.batching import process_in_batches
from payout_queue.domain.types import DistributionJob, NotificationJob, PayoutJob
from payout_queue.services.queue import JobQueue

from payout_automation.collaborators import (
    NotificationSender,
    NullNotificationSender,
    WalletCredit,
)
from payout_automation.types import (
    DividendDistributionResult,
    DividendRunResult,
    PayoutApplyResult,
    UnitOutcome,
)

logger = get_logger("automation.dividend")

DIVIDEND_EXISTS_NOTE = "Dividend already distributed"
BELOW_MINIMUM_NOTE = "Amount per share below minimum payout"
NO_SHAREHOLDERS_NOTE = "No shareholders"


@dataclass(frozen=True)
class ReportSnapshot:
    """Detached fields of a revenue report and its company."""

    report_id: UUID
    company_id: UUID
    company_name: str
    report_month: int
    report_year: int
    dividend_pool: Decimal
    total_shares: Decimal
    verification_status: str


@dataclass(frozen=True)
class ShareholderPayout:
    """One computed credit for one holding."""

    holding_id: UUID
    user_id: UUID
    shares_owned: Decimal
    amount: Decimal


class DividendDistributionEngine:
    """Distributes dividends inline or through the job queue."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        wallet: WalletCredit | None = None,
        notifier: NotificationSender | None = None,
        clock: Clock | None = None,
        settings: DividendSettings | None = None,
        notification_queue: JobQueue | None = None,
    ):
        self._session_factory = session_factory
        self._wallet = wallet or SqlWalletCredit()
        self._notifier = notifier or NullNotificationSender()
        self._clock = clock or SystemClock()
        self._settings = settings or DividendSettings()
        self._notification_queue = notification_queue

    @property
    def settings(self) -> DividendSettings:
        return self._settings

    # -------------------------------------------------------------------------
    # Inline distribution
    # -------------------------------------------------------------------------

    def execute_dividend_distribution(
        self, period: ReportingPeriod | None = None,
    ) -> DividendRunResult:
        """Distribute every distributable report of ``period`` (default: last month)."""
        period = period or previous_month(self._clock.now_utc())
        start = time.monotonic()
        logger.info("dividend_distribution_started", extra={"period": period.key})

        reports = self._load_distributable_reports(period)
        logger.info("dividend_reports_loaded", extra={"report_count": len(reports)})

        results = []
        for report in reports:
            with LogContext.bind(report_id=report.report_id, company_id=report.company_id):
                results.append(self._distribute_isolated(report))

        run = DividendRunResult(period=period, results=tuple(results))
        counts = run.counts
        logger.info(
            "dividend_distribution_completed",
            extra={
                "period": period.key,
                "total_reports": counts.total,
                "succeeded": counts.succeeded,
                "skipped": counts.skipped,
                "failed": counts.failed,
                "total_distributed": run.total_distributed,
                "duration_ms": int((time.monotonic() - start) * 1000),
            },
        )
        return run

    def manually_distribute_dividend(self, revenue_report_id: UUID) -> DividendDistributionResult:
        """Distribute one report.  Still honors idempotency.

        Raises:
            RevenueReportNotFoundError: Unknown report.
            RevenueReportNotVerifiedError: Report is not auto_verified/verified.
        """
        logger.info(
            "dividend_manual_trigger",
            extra={"revenue_report_id": str(revenue_report_id)},
        )
        report = self._load_report(revenue_report_id)
        with LogContext.bind(report_id=report.report_id, company_id=report.company_id):
            return self.distribute_report(report)

    def distribute_report(self, report: ReportSnapshot) -> DividendDistributionResult:
        """Distribute one report in a single transaction.  Errors propagate."""
        existing = self._existing_result(report, pre_check=True)
        if existing is not None:
            return existing

        amount_per_share = compute_amount_per_share(report.dividend_pool, report.total_shares)
        if amount_per_share < self._settings.minimum_payout:
            return self._record_empty_dividend(report, amount_per_share, BELOW_MINIMUM_NOTE)

        try:
            dividend_id, paid, skipped = run_in_transaction(
                self._session_factory,
                lambda session: self._distribute_inline(session, report, amount_per_share),
                "distribute_dividend",
            )
        except IntegrityError:
            duplicate = self._existing_result(report, pre_check=False)
            if duplicate is None:
                raise
            return duplicate

        total = sum((p.amount for p in paid), ZERO)
        logger.info(
            "dividend_distributed",
            extra={
                "dividend_id": str(dividend_id),
                "amount_per_share": amount_per_share,
                "total_distributed": total,
                "shareholders_paid": len(paid),
                "shareholders_skipped": skipped,
            },
        )
        self._notify(report.company_name, dividend_id, paid)

        return DividendDistributionResult(
            revenue_report_id=report.report_id,
            outcome=UnitOutcome.CREATED,
            dividend_id=dividend_id,
            company_id=report.company_id,
            amount_per_share=amount_per_share,
            total_distributed=total,
            shareholders_paid=len(paid),
            shareholders_skipped=skipped,
            note=None if paid or skipped else NO_SHAREHOLDERS_NOTE,
        )

    # -------------------------------------------------------------------------
    # Queued distribution
    # -------------------------------------------------------------------------

    def enqueue_dividend_distribution(
        self, period: ReportingPeriod | None, queue: JobQueue,
    ) -> list[UUID]:
        """Enqueue one DistributionJob per undistributed report of ``period``."""
        period = period or previous_month(self._clock.now_utc())
        reports = self._load_distributable_reports(period)

        session = self._session_factory()
        try:
            selector = IdempotencySelector(session)
            pending = [r for r in reports if not selector.dividend_exists(r.report_id)]
        finally:
            session.close()

        job_ids = queue.enqueue_bulk(
            [DistributionJob(revenue_report_id=r.report_id) for r in pending],
        )
        logger.info(
            "dividend_distribution_enqueued",
            extra={
                "period": period.key,
                "report_count": len(reports),
                "enqueued": len(job_ids),
            },
        )
        return job_ids

    def distribute_via_queue(
        self, revenue_report_id: UUID, queue: JobQueue,
    ) -> DividendDistributionResult:
        """Create the Dividend and enqueue its payout jobs in one transaction.

        Raises:
            RevenueReportNotFoundError: Unknown report.
            RevenueReportNotVerifiedError: Report is not distributable.
        """
        report = self._load_report(revenue_report_id)
        with LogContext.bind(report_id=report.report_id, company_id=report.company_id):
            existing = self._existing_result(report, pre_check=True)
            if existing is not None:
                return existing

            amount_per_share = compute_amount_per_share(report.dividend_pool, report.total_shares)
            if amount_per_share < self._settings.minimum_payout:
                return self._record_empty_dividend(report, amount_per_share, BELOW_MINIMUM_NOTE)

            try:
                dividend_id, payouts, skipped = run_in_transaction(
                    self._session_factory,
                    lambda session: self._create_queued(session, report, amount_per_share, queue),
                    "distribute_dividend_queued",
                )
            except IntegrityError:
                duplicate = self._existing_result(report, pre_check=False)
                if duplicate is None:
                    raise
                return duplicate

            logger.info(
                "dividend_payouts_enqueued",
                extra={
                    "dividend_id": str(dividend_id),
                    "amount_per_share": amount_per_share,
                    "queued_jobs": len(payouts),
                    "shareholders_skipped": skipped,
                },
            )
            return DividendDistributionResult(
                revenue_report_id=report.report_id,
                outcome=UnitOutcome.CREATED,
                dividend_id=dividend_id,
                company_id=report.company_id,
                amount_per_share=amount_per_share,
                total_distributed=sum((p.amount for p in payouts), ZERO),
                shareholders_skipped=skipped,
                queued_jobs=len(payouts),
            )

    def apply_queued_payout(self, job: PayoutJob) -> PayoutApplyResult:
        """Write one queued payout.  Re-delivery of the same job is a no-op.

        Raises:
            DividendNotFoundError: The job's dividend does not exist.
        """
        with LogContext.bind(dividend_id=job.dividend_id):
            try:
                payout_id, company_name = run_in_transaction(
                    self._session_factory,
                    lambda session: self._apply_payout(session, job),
                    "apply_dividend_payout",
                )
            except IntegrityError:
                payout_id, company_name = None, None
                logger.info("dividend_payout_duplicate", extra={"user_id": str(job.user_id)})

            completed = self._complete_if_drained(job.dividend_id)

            if payout_id is not None:
                logger.info(
                    "dividend_payout_applied",
                    extra={"user_id": str(job.user_id), "amount": job.payout_amount},
                )
                self._notify(
                    company_name,
                    job.dividend_id,
                    [ShareholderPayout(job.holding_id, job.user_id, job.shares_owned, job.payout_amount)],
                )

            return PayoutApplyResult(
                dividend_id=job.dividend_id,
                user_id=job.user_id,
                applied=payout_id is not None,
                payout_id=payout_id,
                dividend_completed=completed,
            )

    # -------------------------------------------------------------------------
    # Transaction bodies
    # -------------------------------------------------------------------------

    def _distribute_inline(
        self, session: Session, report: ReportSnapshot, amount_per_share: Decimal,
    ) -> tuple[UUID, list[ShareholderPayout], int]:
        now = self._clock.now_utc()
        dividend = self._new_dividend(report, amount_per_share, DistributionMode.INLINE, now)
        session.add(dividend)
        session.flush()

        holdings = self._load_holdings(session, report.company_id)
        skipped = 0

        def pay_batch(batch: Sequence[tuple[UUID, UUID, Decimal]]) -> list[ShareholderPayout]:
            nonlocal skipped
            paid: list[ShareholderPayout] = []
            for holding_id, user_id, shares in batch:
                amount = compute_payout(shares, amount_per_share)
                if amount < self._settings.minimum_payout:
                    skipped += 1
                    continue
                payout = ShareholderPayout(holding_id, user_id, shares, amount)
                self._write_payout(session, dividend.id, payout, now)
                paid.append(payout)
            return paid

        paid = process_in_batches(holdings, self._settings.batch_size, pay_batch)

        dividend.payment_status = DividendStatus.COMPLETED.value
        dividend.distribution_date = now
        dividend.updated_at = now
        session.flush()
        return dividend.id, paid, skipped

    def _create_queued(
        self,
        session: Session,
        report: ReportSnapshot,
        amount_per_share: Decimal,
        queue: JobQueue,
    ) -> tuple[UUID, list[ShareholderPayout], int]:
        now = self._clock.now_utc()
        payouts: list[ShareholderPayout] = []
        skipped = 0
        for holding_id, user_id, shares in self._load_holdings(session, report.company_id):
            amount = compute_payout(shares, amount_per_share)
            if amount < self._settings.minimum_payout:
                skipped += 1
                continue
            payouts.append(ShareholderPayout(holding_id, user_id, shares, amount))

        dividend = self._new_dividend(report, amount_per_share, DistributionMode.QUEUED, now)
        dividend.expected_payout_count = len(payouts)
        if not payouts:
            dividend.payment_status = DividendStatus.COMPLETED.value
            dividend.distribution_date = now
        session.add(dividend)
        session.flush()

        queue.enqueue_bulk(
            [
                PayoutJob(
                    dividend_id=dividend.id,
                    holding_id=p.holding_id,
                    user_id=p.user_id,
                    shares_owned=p.shares_owned,
                    payout_amount=p.amount,
                )
                for p in payouts
            ],
            session=session,
        )
        return dividend.id, payouts, skipped

    def _apply_payout(self, session: Session, job: PayoutJob) -> tuple[UUID | None, str | None]:
        dividend = session.get(Dividend, job.dividend_id)
        if dividend is None:
            raise DividendNotFoundError(str(job.dividend_id))
        company = session.get(Company, dividend.company_id)
        company_name = company.business_name if company else ""

        if IdempotencySelector(session).payout_exists(job.dividend_id, job.user_id):
            logger.info("dividend_payout_exists", extra={"user_id": str(job.user_id)})
            return None, company_name

        now = self._clock.now_utc()
        payout = ShareholderPayout(job.holding_id, job.user_id, job.shares_owned, job.payout_amount)
        payout_id = self._write_payout(session, job.dividend_id, payout, now)
        return payout_id, company_name

    def _write_payout(
        self,
        session: Session,
        dividend_id: UUID,
        payout: ShareholderPayout,
        now: datetime,
    ) -> UUID:
        """Payout row, wallet credit and holding increment in the caller's transaction."""
        row = DividendPayout(
            id=uuid4(),
            dividend_id=dividend_id,
            user_id=payout.user_id,
            holding_id=payout.holding_id,
            shares_held=payout.shares_owned,
            payout_amount=payout.amount,
            payment_method=PaymentMethod.WALLET.value,
            status=PayoutStatus.COMPLETED.value,
            paid_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        session.flush()

        self._wallet.credit(session, payout.user_id, payout.amount, credited_at=now)

        session.execute(
            update(StockHolding)
            .where(StockHolding.id == payout.holding_id)
            .values(total_dividends_earned=StockHolding.total_dividends_earned + payout.amount)
            .execution_options(synchronize_session=False)
        )
        return row.id

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _distribute_isolated(self, report: ReportSnapshot) -> DividendDistributionResult:
        try:
            return self.distribute_report(report)
        except Exception as exc:
            logger.exception("dividend_report_failed")
            return DividendDistributionResult(
                revenue_report_id=report.report_id,
                outcome=UnitOutcome.FAILED,
                company_id=report.company_id,
                error=str(exc),
            )

    def _new_dividend(
        self,
        report: ReportSnapshot,
        amount_per_share: Decimal,
        mode: DistributionMode,
        now: datetime,
    ) -> Dividend:
        return Dividend(
            id=uuid4(),
            company_id=report.company_id,
            revenue_report_id=report.report_id,
            report_month=report.report_month,
            report_year=report.report_year,
            total_dividend_pool=report.dividend_pool,
            total_shares_eligible=report.total_shares,
            amount_per_share=amount_per_share,
            payment_status=DividendStatus.PROCESSING.value,
            distribution_mode=mode.value,
            expected_payout_count=0,
            created_at=now,
            updated_at=now,
        )

    def _record_empty_dividend(
        self, report: ReportSnapshot, amount_per_share: Decimal, note: str,
    ) -> DividendDistributionResult:
        """Completed Dividend with no payouts, so the report is never revisited."""
        now = self._clock.now_utc()

        def create(session: Session) -> UUID:
            dividend = self._new_dividend(report, amount_per_share, DistributionMode.INLINE, now)
            dividend.payment_status = DividendStatus.COMPLETED.value
            dividend.distribution_date = now
            session.add(dividend)
            session.flush()
            return dividend.id

        try:
            dividend_id = run_in_transaction(self._session_factory, create, "record_empty_dividend")
        except IntegrityError:
            duplicate = self._existing_result(report, pre_check=False)
            if duplicate is None:
                raise
            return duplicate

        logger.info(
            "dividend_below_minimum",
            extra={
                "dividend_id": str(dividend_id),
                "amount_per_share": amount_per_share,
                "minimum_payout": self._settings.minimum_payout,
            },
        )
        return DividendDistributionResult(
            revenue_report_id=report.report_id,
            outcome=UnitOutcome.CREATED,
            dividend_id=dividend_id,
            company_id=report.company_id,
            amount_per_share=amount_per_share,
            note=note,
        )

    def _existing_result(
        self, report: ReportSnapshot, pre_check: bool,
    ) -> DividendDistributionResult | None:
        """Skip result for a report that already has a Dividend.

        The pre-check goes through the idempotency selector.  After a unique
        violation the winner's row is read directly.
        """
        session = self._session_factory()
        try:
            if pre_check:
                dividend_id = IdempotencySelector(session).find_dividend_id(report.report_id)
            else:
                dividend_id = session.execute(
                    select(Dividend.id).where(Dividend.revenue_report_id == report.report_id)
                ).scalar_one_or_none()
            if dividend_id is None:
                return None

            dividend = session.get(Dividend, dividend_id)
            paid_count, paid_total = session.execute(
                select(
                    func.count(DividendPayout.id),
                    func.coalesce(func.sum(DividendPayout.payout_amount), 0),
                ).where(DividendPayout.dividend_id == dividend_id)
            ).one()
        finally:
            session.close()

        logger.info(
            "dividend_exists" if pre_check else "dividend_duplicate",
            extra={"dividend_id": str(dividend_id)},
        )
        return DividendDistributionResult(
            revenue_report_id=report.report_id,
            outcome=UnitOutcome.SKIPPED,
            dividend_id=dividend_id,
            company_id=report.company_id,
            amount_per_share=Decimal(str(dividend.amount_per_share)),
            total_distributed=Decimal(str(paid_total)),
            shareholders_paid=paid_count,
            note=DIVIDEND_EXISTS_NOTE,
        )

    def _complete_if_drained(self, dividend_id: UUID) -> bool:
        """Mark a queued Dividend completed once every expected payout is stored."""

        def complete(session: Session) -> bool:
            dividend = session.get(Dividend, dividend_id)
            if dividend is None:
                raise DividendNotFoundError(str(dividend_id))
            if dividend.payment_status == DividendStatus.COMPLETED.value:
                return True
            stored = session.execute(
                select(func.count(DividendPayout.id)).where(
                    DividendPayout.dividend_id == dividend_id,
                )
            ).scalar_one()
            if stored < dividend.expected_payout_count:
                return False
            now = self._clock.now_utc()
            result = session.execute(
                update(Dividend)
                .where(
                    Dividend.id == dividend_id,
                    Dividend.payment_status == DividendStatus.PROCESSING.value,
                )
                .values(
                    payment_status=DividendStatus.COMPLETED.value,
                    distribution_date=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                logger.info(
                    "dividend_queued_completed",
                    extra={"dividend_id": str(dividend_id), "payout_count": stored},
                )
            return True

        return run_in_transaction(self._session_factory, complete, "complete_queued_dividend")

    def _load_distributable_reports(self, period: ReportingPeriod) -> list[ReportSnapshot]:
        session = self._session_factory()
        try:
            rows = session.execute(
                select(RevenueReport, Company)
                .join(Company, Company.id == RevenueReport.company_id)
                .where(
                    RevenueReport.report_month == period.month,
                    RevenueReport.report_year == period.year,
                    RevenueReport.verification_status.in_(sorted(DISTRIBUTABLE_STATUSES)),
                    RevenueReport.dividend_pool > 0,
                )
                .order_by(RevenueReport.created_at, RevenueReport.id)
            ).all()
            return [_snapshot(report, company) for report, company in rows]
        finally:
            session.close()

    def _load_report(self, revenue_report_id: UUID) -> ReportSnapshot:
        session = self._session_factory()
        try:
            report = session.get(RevenueReport, revenue_report_id)
            if report is None:
                raise RevenueReportNotFoundError(str(revenue_report_id))
            if not report.is_distributable:
                raise RevenueReportNotVerifiedError(
                    str(revenue_report_id), report.verification_status,
                )
            company = session.get(Company, report.company_id)
            if company is None:
                raise CompanyNotFoundError(str(report.company_id))
            return _snapshot(report, company)
        finally:
            session.close()

    @staticmethod
    def _load_holdings(session: Session, company_id: UUID) -> list[tuple[UUID, UUID, Decimal]]:
        rows = session.execute(
            select(StockHolding.id, StockHolding.user_id, StockHolding.shares_owned)
            .where(
                StockHolding.company_id == company_id,
                StockHolding.shares_owned > 0,
            )
            .order_by(StockHolding.created_at, StockHolding.id)
        ).all()
        return [(holding_id, user_id, shares) for holding_id, user_id, shares in rows]

    def _notify(
        self,
        company_name: str | None,
        dividend_id: UUID,
        paid: Sequence[ShareholderPayout],
    ) -> None:
        """Post-commit notifications.  Failures are logged per user."""
        if not self._settings.notifications_enabled or not paid:
            return

        if self._notification_queue is not None:
            try:
                self._notification_queue.enqueue_bulk([
                    NotificationJob(
                        user_id=p.user_id,
                        company_name=company_name or "",
                        amount=p.amount,
                        shares_owned=p.shares_owned,
                        dividend_id=dividend_id,
                    )
                    for p in paid
                ])
            except Exception:
                logger.warning(
                    "dividend_notification_enqueue_failed",
                    extra={"dividend_id": str(dividend_id), "count": len(paid)},
                    exc_info=True,
                )
            return

        for p in paid:
            try:
                self._notifier.send_dividend_notification(
                    p.user_id, company_name or "", p.amount, p.shares_owned,
                )
            except Exception:
                logger.warning(
                    "dividend_notification_failed",
                    extra={"user_id": str(p.user_id), "dividend_id": str(dividend_id)},
                    exc_info=True,
                )


def _snapshot(report: RevenueReport, company: Company) -> ReportSnapshot:
    return ReportSnapshot(
        report_id=report.id,
        company_id=report.company_id,
        company_name=company.business_name,
        report_month=report.report_month,
        report_year=report.report_year,
        dividend_pool=report.dividend_pool,
        total_shares=company.total_shares,
        verification_status=report.verification_status,
    )
