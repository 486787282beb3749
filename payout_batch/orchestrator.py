"""
AutomationOrchestrator -- DI container for the monthly automation.

Contract:
    Wires settings, the three engines, the job queue, the lock service and
    the scheduler around one session factory and one Clock.  Single place
    where the automation's dependencies are composed; operator entry points
    (CLI, service process) build one orchestrator and call into it.

    - ``run_job()`` runs a scheduled job by name for one period, under the
      job lock and with run-level idempotency.
    - ``execute_manual_job()`` runs one company/report correction through
      the engines' manual operations.
    - ``automation_health()`` / ``queue_health()`` summarize run history and
      queue state.

Architecture: payout_batch (top-level).  Imports the engines, the queue
    and the scheduler; nothing else imports this module.

Non-goals:
    - Does NOT start the scheduler or workers automatically; the caller
      decides.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payout_automation.collaborators import (
    BankTransactionFetcher,
    NotificationSender,
    PaymentProcessor,
    PriceBroadcaster,
    TradingVolumeSource,
    WalletCredit,
)
from payout_automation.dividend_distribution import DividendDistributionEngine
from payout_automation.job_processors import build_dispatcher
from payout_automation.price_adjustment import PriceAdjustmentEngine
from payout_automation.revenue_calculation import RevenueCalculationEngine
from payout_automation.types import (
    DividendDistributionResult,
    PriceAdjustmentResult,
    RevenueCalculationResult,
)
from payout_config.schema import DIVIDEND_JOB, PRICE_JOB, REVENUE_JOB, AutomationSettings
from payout_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from payout_kernel.domain.clock import Clock, SystemClock
from payout_kernel.domain.period import ReportingPeriod, previous_month
from payout_kernel.exceptions import ManualJobOptionsError
from payout_kernel.logging_config import get_logger
from payout_kernel.services.lock_service import LockService
from payout_kernel.services.retry_service import RetryService
from payout_queue.domain.types import JobType, QueueHealth
from payout_queue.services.dispatcher import JobDispatcher
from payout_queue.services.queue import JobQueue
from payout_queue.services.worker import QueueWorker

from payout_batch.domain.types import (
    AutomationHealth,
    AutomationRun,
    JobHealth,
    RunStatus,
    RunTrigger,
)
from payout_batch.models.run import AutomationRunModel, JobScheduleModel
from payout_batch.services.scheduler import AutomationScheduler

logger = get_logger("batch.orchestrator")

MANUAL_JOB_TYPES = ("revenue", "dividend", "price")


@dataclass(frozen=True)
class ManualJobOptions:
    """Arguments of a manual trigger.  Month/year default to last month."""

    month: int | None = None
    year: int | None = None
    company_id: UUID | None = None
    revenue_report_id: UUID | None = None


class AutomationOrchestrator:
    """DI container for engines, queue and scheduler."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: AutomationSettings,
        bank_fetcher: BankTransactionFetcher,
        clock: Clock | None = None,
        wallet: WalletCredit | None = None,
        notifier: NotificationSender | None = None,
        volume_source: TradingVolumeSource | None = None,
        broadcaster: PriceBroadcaster | None = None,
        payment_processor: PaymentProcessor | None = None,
        retry: RetryService | None = None,
        lock_owner: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._payment_processor = payment_processor

        queue_settings = settings.queue
        self._queue = JobQueue(
            session_factory,
            queue_name=queue_settings.queue_name,
            policies=queue_settings.policies,
            clock=self._clock,
            stall_timeout_seconds=queue_settings.stall_timeout_seconds,
            max_stalled_count=queue_settings.max_stalled_count,
        )
        self._lock_service = LockService(session_factory, clock=self._clock, owner=lock_owner)

        self._revenue = RevenueCalculationEngine(
            session_factory,
            bank_fetcher,
            clock=self._clock,
            settings=settings.revenue,
            retry=retry,
        )
        self._dividend = DividendDistributionEngine(
            session_factory,
            wallet=wallet,
            notifier=notifier,
            clock=self._clock,
            settings=settings.dividend,
        )
        self._price = PriceAdjustmentEngine(
            session_factory,
            volume_source=volume_source,
            broadcaster=broadcaster,
            clock=self._clock,
            settings=settings.price,
        )

        self._scheduler = AutomationScheduler(
            session_factory,
            self._lock_service,
            runners={
                REVENUE_JOB: lambda period: self._revenue.execute_revenue_calculation(period).counts,
                DIVIDEND_JOB: lambda period: self._dividend.execute_dividend_distribution(period).counts,
                PRICE_JOB: lambda period: self._price.execute_price_adjustment(period).counts,
            },
            clock=self._clock,
            tick_interval_seconds=settings.scheduler_tick_seconds,
            lock_ttl_seconds=settings.lock_ttl_seconds,
        )

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: AutomationSettings,
        bank_fetcher: BankTransactionFetcher,
        create_schema: bool = False,
        **collaborators,
    ) -> AutomationOrchestrator:
        """Initialize the database engine from ``settings.database_url`` and wire."""
        engine = init_engine_from_url(settings.database_url)
        if create_schema:
            create_tables(engine)
        return cls(get_session_factory(), settings, bank_fetcher, **collaborators)

    @classmethod
    def from_session_factory(
        cls,
        session_factory: Callable[[], Session],
        bank_fetcher: BankTransactionFetcher,
        settings: AutomationSettings | None = None,
        **collaborators,
    ) -> AutomationOrchestrator:
        return cls(session_factory, settings or AutomationSettings(), bank_fetcher, **collaborators)

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def settings(self) -> AutomationSettings:
        return self._settings

    @property
    def queue(self) -> JobQueue:
        return self._queue

    @property
    def scheduler(self) -> AutomationScheduler:
        return self._scheduler

    @property
    def lock_service(self) -> LockService:
        return self._lock_service

    @property
    def revenue_engine(self) -> RevenueCalculationEngine:
        return self._revenue

    @property
    def dividend_engine(self) -> DividendDistributionEngine:
        return self._dividend

    @property
    def price_engine(self) -> PriceAdjustmentEngine:
        return self._price

    def create_dispatcher(self) -> JobDispatcher:
        return build_dispatcher(
            self._dividend, self._queue, self._notifier, self._payment_processor,
        )

    def create_worker(self, concurrency: dict[JobType, int] | None = None) -> QueueWorker:
        return QueueWorker(
            self._queue,
            self.create_dispatcher(),
            concurrency=concurrency,
            poll_interval_seconds=self._settings.queue.poll_interval_seconds,
        )

    def seed_schedules(self) -> int:
        return self._scheduler.seed_schedules(self._settings.schedules)

    def close(self) -> None:
        self._scheduler.stop()
        self._queue.close()

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def run_job(
        self,
        job_name: str,
        period: ReportingPeriod | None = None,
        trigger: RunTrigger = RunTrigger.MANUAL,
    ) -> AutomationRun | None:
        """Run a registered job.  None when the job lock is held elsewhere.

        Raises:
            AutomationJobNotFoundError: Unknown ``job_name``.
        """
        return self._scheduler.run_job(job_name, period, trigger)

    def execute_manual_job(
        self,
        job_type: str,
        options: ManualJobOptions | None = None,
    ) -> RevenueCalculationResult | DividendDistributionResult | PriceAdjustmentResult:
        """Manual correction for one company or one report.

        Raises:
            ManualJobOptionsError: Unknown job type or a missing id.
        """
        options = options or ManualJobOptions()
        default_period = previous_month(self._clock.now_utc())
        month = options.month or default_period.month
        year = options.year or default_period.year

        logger.info(
            "manual_job_requested",
            extra={
                "job_type": job_type,
                "month": month,
                "year": year,
                "company_id": str(options.company_id) if options.company_id else None,
                "revenue_report_id": (
                    str(options.revenue_report_id) if options.revenue_report_id else None
                ),
            },
        )

        if job_type == "revenue":
            if options.company_id is None:
                raise ManualJobOptionsError(
                    job_type, "companyId is required for revenue calculation",
                )
            return self._revenue.manually_calculate_revenue(options.company_id, month, year)

        if job_type == "dividend":
            if options.revenue_report_id is None:
                raise ManualJobOptionsError(
                    job_type, "revenueReportId is required for dividend distribution",
                )
            return self._dividend.manually_distribute_dividend(options.revenue_report_id)

        if job_type == "price":
            if options.company_id is None:
                raise ManualJobOptionsError(
                    job_type, "companyId is required for price adjustment",
                )
            return self._price.manually_adjust_stock_price(options.company_id, month, year)

        raise ManualJobOptionsError(job_type, f"Unknown job type: {job_type}")

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def automation_health(self) -> AutomationHealth:
        """Per-job run history summary."""
        session = self._session_factory()
        try:
            jobs = tuple(
                self._job_health(session, job_name)
                for job_name in self._scheduler.job_names
            )
        finally:
            session.close()
        health = AutomationHealth(jobs=jobs)
        logger.info(
            "automation_health_checked",
            extra={
                "healthy": health.healthy,
                "unhealthy_jobs": [j.job_name for j in jobs if not j.healthy],
            },
        )
        return health

    def queue_health(self) -> QueueHealth:
        return self._queue.health(self._settings.queue.max_failed_jobs)

    def _job_health(self, session: Session, job_name: str) -> JobHealth:
        counts = dict(
            session.execute(
                select(AutomationRunModel.status, func.count(AutomationRunModel.id))
                .where(AutomationRunModel.job_name == job_name)
                .group_by(AutomationRunModel.status)
            ).all()
        )
        last = session.execute(
            select(AutomationRunModel)
            .where(AutomationRunModel.job_name == job_name)
            .order_by(AutomationRunModel.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        last_success = session.execute(
            select(AutomationRunModel)
            .where(
                AutomationRunModel.job_name == job_name,
                AutomationRunModel.status == RunStatus.COMPLETED.value,
            )
            .order_by(AutomationRunModel.completed_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        schedule = session.execute(
            select(JobScheduleModel).where(JobScheduleModel.job_name == job_name)
        ).scalar_one_or_none()

        last_dto = last.to_dto() if last else None
        return JobHealth(
            job_name=job_name,
            total_runs=sum(counts.values()),
            success_count=counts.get(RunStatus.COMPLETED.value, 0),
            failure_count=(
                counts.get(RunStatus.FAILED.value, 0)
                + counts.get(RunStatus.PARTIALLY_COMPLETED.value, 0)
            ),
            last_run_at=last_dto.started_at if last_dto else None,
            last_run_status=last_dto.status if last_dto else None,
            last_success_at=last_success.to_dto().completed_at if last_success else None,
            last_error=last_dto.error_summary if last_dto else None,
            next_run_at=schedule.to_dto().next_run_at if schedule else None,
        )
