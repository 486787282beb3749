"""
AutomationScheduler -- In-process polling scheduler for the monthly jobs.

Contract:
    ``tick()`` loads active schedules, evaluates ``should_fire()`` (pure)
    and fires each due job for the month before the tick.  ``run_job()``
    runs one registered job for one period; it is also the manual entry
    point.  ``start()`` / ``stop()`` run ``tick()`` on a background thread.

    Every firing runs under the distributed lock ``automation:<job_name>``,
    so at most one instance executes a job at a time; an instance that
    finds the lock held skips the firing.

    Each logical trigger maps to one AutomationRun row keyed
    ``<job_name>:<YYYY-MM>``.  A COMPLETED run is never repeated for the
    same period; a FAILED or PARTIALLY_COMPLETED run is executed again in
    place with ``attempt_count`` incremented.  Units already done are
    skipped by the engines' own idempotency guards.

Architecture: payout_batch/services.  Runners are plain callables
    ``(ReportingPeriod) -> RunCounts`` registered by the orchestrator, so
    this module never imports the engines.

Non-goals:
    - NOT a leader-elected scheduler; the lock only serializes executions.
    - Does NOT handle timezone conversions (expects UTC).
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from payout_config.schema import ScheduleSettings
from payout_kernel.db.transaction import transaction_scope
from payout_kernel.domain.clock import Clock, SystemClock
from payout_kernel.domain.period import ReportingPeriod, previous_month
from payout_kernel.exceptions import AutomationJobNotFoundError
from payout_kernel.logging_config import LogContext, get_logger
from payout_kernel.services.lock_service import LockService, with_lock
from payout_kernel.utils.idempotency import generate_idempotency_key

from payout_batch.domain.schedule import compute_next_run, should_fire
from payout_batch.domain.types import (
    RERUNNABLE_RUN_STATUSES,
    AutomationRun,
    JobSchedule,
    RunCounts,
    RunStatus,
    RunTrigger,
)
from payout_batch.models.run import AutomationRunModel, JobScheduleModel

logger = get_logger("batch.scheduler")

JobRunner = Callable[[ReportingPeriod], RunCounts]

DEFAULT_LOCK_TTL_SECONDS = 3600


def run_key(job_name: str, period: ReportingPeriod) -> str:
    """Idempotency key of one logical run: ``<job_name>:<YYYY-MM>``."""
    return f"{job_name}:{period.key}"


def lock_key(job_name: str) -> str:
    """Lock name serializing one job: ``automation:<job_name>``."""
    return generate_idempotency_key("automation", job_name)


class AutomationScheduler:
    """Cron-driven runner of the registered automation jobs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        lock_service: LockService,
        runners: dict[str, JobRunner] | None = None,
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ):
        self._session_factory = session_factory
        self._lock_service = lock_service
        self._runners: dict[str, JobRunner] = dict(runners or {})
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._lock_ttl = lock_ttl_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, job_name: str, runner: JobRunner) -> None:
        self._runners[job_name] = runner

    @property
    def job_names(self) -> list[str]:
        return sorted(self._runners)

    def seed_schedules(self, schedules: Sequence[ScheduleSettings]) -> int:
        """Insert schedule rows that do not exist yet.  Returns rows added.

        Existing rows keep their state; only the cron expression, the
        description and the active flag are refreshed from settings.
        """
        now = self._clock.now_utc()
        added = 0
        with transaction_scope(self._session_factory, "seed_schedules") as session:
            for settings in schedules:
                row = session.execute(
                    select(JobScheduleModel).where(
                        JobScheduleModel.job_name == settings.job_name,
                    )
                ).scalar_one_or_none()
                next_run = compute_next_run(settings.cron_expression, now)
                if row is None:
                    session.add(JobScheduleModel(
                        id=uuid4(),
                        job_name=settings.job_name,
                        cron_expression=settings.cron_expression,
                        description=settings.description,
                        is_active=settings.is_active,
                        next_run_at=next_run,
                        created_at=now,
                        updated_at=now,
                    ))
                    added += 1
                    continue
                if row.cron_expression != settings.cron_expression:
                    row.next_run_at = next_run
                row.cron_expression = settings.cron_expression
                row.description = settings.description
                row.is_active = settings.is_active
                row.updated_at = now

        logger.info(
            "schedules_seeded",
            extra={"added": added, "total": len(schedules)},
        )
        return added

    def list_schedules(self) -> list[JobSchedule]:
        session = self._session_factory()
        try:
            rows = session.execute(
                select(JobScheduleModel).order_by(JobScheduleModel.job_name)
            ).scalars().all()
            return [row.to_dto() for row in rows]
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Evaluate and fire due schedules (public for testing).

        Returns the number of schedules that were fired.
        """
        now = self._clock.now_utc()
        due = [s for s in self.list_schedules() if should_fire(s, now)]

        fired = 0
        for schedule in due:
            if self._stop_event.is_set():
                break
            try:
                self._fire(schedule)
                fired += 1
            except Exception:
                logger.exception(
                    "schedule_fire_failed",
                    extra={"job_name": schedule.job_name},
                )
        return fired

    def run_job(
        self,
        job_name: str,
        period: ReportingPeriod | None = None,
        trigger: RunTrigger = RunTrigger.MANUAL,
    ) -> AutomationRun | None:
        """Run one job for ``period`` (default: the month before now).

        Returns the run record, or None when another instance holds the
        job's lock.

        Raises:
            AutomationJobNotFoundError: ``job_name`` has no runner.
        """
        run, _ = self._run(job_name, period, trigger)
        return run

    def get_run(self, job_name: str, period: ReportingPeriod) -> AutomationRun | None:
        session = self._session_factory()
        try:
            row = session.execute(
                select(AutomationRunModel).where(
                    AutomationRunModel.idempotency_key == run_key(job_name, period),
                )
            ).scalar_one_or_none()
            return row.to_dto() if row else None
        finally:
            session.close()

    def list_runs(self, job_name: str | None = None, limit: int = 50) -> list[AutomationRun]:
        """Most recent runs first."""
        session = self._session_factory()
        try:
            stmt = select(AutomationRunModel)
            if job_name is not None:
                stmt = stmt.where(AutomationRunModel.job_name == job_name)
            rows = session.execute(
                stmt.order_by(
                    AutomationRunModel.started_at.desc(),
                    AutomationRunModel.created_at.desc(),
                ).limit(limit)
            ).scalars().all()
            return [row.to_dto() for row in rows]
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Background thread
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="automation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current firing to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _fire(self, schedule: JobSchedule) -> None:
        now = self._clock.now_utc()
        run, executed = self._run(schedule.job_name, previous_month(now), RunTrigger.SCHEDULE)

        if run is None or not executed:
            last_status = RunStatus.SKIPPED
        else:
            last_status = run.status
        next_run = compute_next_run(schedule.cron_expression, now)

        with transaction_scope(self._session_factory, "schedule_update") as session:
            row = session.get(JobScheduleModel, schedule.schedule_id)
            if row is not None:
                row.last_run_at = now
                row.last_run_status = last_status.value
                row.next_run_at = next_run
                row.updated_at = now

        logger.info(
            "schedule_fired",
            extra={
                "job_name": schedule.job_name,
                "status": last_status.value,
                "next_run_at": next_run,
            },
        )

    def _run(
        self,
        job_name: str,
        period: ReportingPeriod | None,
        trigger: RunTrigger,
    ) -> tuple[AutomationRun | None, bool]:
        """Returns (run, executed).  ``executed`` is False for a skip."""
        runner = self._runners.get(job_name)
        if runner is None:
            raise AutomationJobNotFoundError(job_name, self.job_names)
        period = period or previous_month(self._clock.now_utc())

        outcome = with_lock(
            self._lock_service,
            lock_key(job_name),
            lambda: self._run_locked(job_name, runner, period, trigger),
            ttl_seconds=self._lock_ttl,
        )
        if outcome is None:
            logger.info(
                "automation_run_lock_held",
                extra={"job_name": job_name, "period": period.key},
            )
            return None, False
        return outcome

    def _run_locked(
        self,
        job_name: str,
        runner: JobRunner,
        period: ReportingPeriod,
        trigger: RunTrigger,
    ) -> tuple[AutomationRun, bool]:
        key = run_key(job_name, period)

        with LogContext.bind(job_name=job_name, correlation_id=key):
            run_id, previous = self._begin_run(job_name, key, period, trigger)
            if previous is not None:
                logger.info(
                    "automation_run_already_completed",
                    extra={"idempotency_key": key, "run_id": str(run_id)},
                )
                return previous, False

            logger.info(
                "automation_run_started",
                extra={"idempotency_key": key, "trigger": trigger.value},
            )
            start = time.monotonic()
            error: str | None = None
            try:
                counts = runner(period)
                status = counts.status
            except Exception as exc:
                logger.exception("automation_run_failed", extra={"idempotency_key": key})
                counts = RunCounts()
                status = RunStatus.FAILED
                error = f"{type(exc).__name__}: {exc}"

            duration_ms = int((time.monotonic() - start) * 1000)
            if status != RunStatus.COMPLETED and error is None:
                error = f"{counts.failed} of {counts.total} units failed"

            with transaction_scope(self._session_factory, "automation_run_finish") as session:
                row = session.get(AutomationRunModel, run_id)
                row.status = status.value
                row.total_items = counts.total
                row.succeeded_items = counts.succeeded
                row.failed_items = counts.failed
                row.skipped_items = counts.skipped
                row.completed_at = self._clock.now_utc()
                row.duration_ms = duration_ms
                row.error_summary = error
                row.updated_at = row.completed_at
                session.flush()
                run = row.to_dto()

            logger.info(
                "automation_run_finished",
                extra={
                    "idempotency_key": key,
                    "status": status.value,
                    "total": counts.total,
                    "succeeded": counts.succeeded,
                    "skipped": counts.skipped,
                    "failed": counts.failed,
                    "attempt": run.attempt_count,
                    "duration_ms": duration_ms,
                },
            )
            return run, True

    def _begin_run(
        self,
        job_name: str,
        key: str,
        period: ReportingPeriod,
        trigger: RunTrigger,
    ):
        """Create or reopen the run row for ``key``.

        Returns (run_id, previous) where ``previous`` is the completed run's
        DTO when the period is already done, else None.
        """
        now = self._clock.now_utc()
        with transaction_scope(self._session_factory, "automation_run_begin") as session:
            row = session.execute(
                select(AutomationRunModel)
                .where(AutomationRunModel.idempotency_key == key)
                .with_for_update()
            ).scalar_one_or_none()

            if row is None:
                row = AutomationRunModel(
                    id=uuid4(),
                    job_name=job_name,
                    idempotency_key=key,
                    period_month=period.month,
                    period_year=period.year,
                    status=RunStatus.RUNNING.value,
                    trigger=trigger.value,
                    attempt_count=1,
                    started_at=now,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                return row.id, None

            if RunStatus(row.status) not in RERUNNABLE_RUN_STATUSES:
                return row.id, row.to_dto()

            row.status = RunStatus.RUNNING.value
            row.trigger = trigger.value
            row.attempt_count += 1
            row.started_at = now
            row.completed_at = None
            row.error_summary = None
            row.updated_at = now
            logger.info(
                "automation_run_retry",
                extra={"idempotency_key": key, "attempt": row.attempt_count},
            )
            return row.id, None
