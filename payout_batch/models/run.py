"""
ORM models for automation run history and cron schedules.

Contract:
    AutomationRunModel persists one run of one automation job for one
    reporting period.  JobScheduleModel persists the cron schedule of one
    automation job.  Both expose ``to_dto()``.

Architecture: payout_batch/models.  Imports from payout_kernel.db.base only.

Invariants enforced:
    - ``idempotency_key`` (``<job_name>:<YYYY-MM>``) is UNIQUE on
      AutomationRunModel: a re-fired trigger for the same period reuses the
      existing row instead of creating a second run.
    - ``job_name`` is UNIQUE on JobScheduleModel.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payout_kernel.db.base import TrackedBase
from payout_kernel.utils.datetimes import as_utc

if TYPE_CHECKING:
    from payout_batch.domain.types import AutomationRun, JobSchedule


class AutomationRunModel(TrackedBase):
    """Persistent automation run record."""

    __tablename__ = "automation_runs"

    __table_args__ = (
        Index("ix_automation_runs_job_started", "job_name", "started_at"),
        Index("ix_automation_runs_status", "status"),
    )

    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True,
    )
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    succeeded_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> AutomationRun:
        from payout_batch.domain.types import AutomationRun, RunStatus, RunTrigger

        return AutomationRun(
            run_id=self.id,
            job_name=self.job_name,
            idempotency_key=self.idempotency_key,
            period_month=self.period_month,
            period_year=self.period_year,
            status=RunStatus(self.status),
            trigger=RunTrigger(self.trigger),
            total_items=self.total_items,
            succeeded_items=self.succeeded_items,
            failed_items=self.failed_items,
            skipped_items=self.skipped_items,
            attempt_count=self.attempt_count,
            started_at=as_utc(self.started_at),
            completed_at=as_utc(self.completed_at),
            duration_ms=self.duration_ms,
            error_summary=self.error_summary,
        )

    def __repr__(self) -> str:
        return f"<AutomationRun {self.idempotency_key} {self.status}>"


class JobScheduleModel(TrackedBase):
    """Cron schedule of one automation job."""

    __tablename__ = "job_schedules"

    __table_args__ = (
        Index("ix_job_schedules_active", "is_active"),
        Index("ix_job_schedules_next_run", "next_run_at"),
    )

    job_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    cron_expression: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_dto(self) -> JobSchedule:
        from payout_batch.domain.types import JobSchedule, RunStatus

        return JobSchedule(
            schedule_id=self.id,
            job_name=self.job_name,
            cron_expression=self.cron_expression,
            next_run_at=as_utc(self.next_run_at),
            last_run_at=as_utc(self.last_run_at),
            last_run_status=(
                RunStatus(self.last_run_status)
                if self.last_run_status
                else None
            ),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<JobSchedule {self.job_name} '{self.cron_expression}'>"
