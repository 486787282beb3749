"""
payout_batch.domain.types -- Pure frozen dataclasses for scheduled automation.

ZERO I/O.

Invariants enforced:
    - All DTOs are frozen dataclasses.
    - AutomationRun carries an idempotency_key ``<job_name>:<YYYY-MM>``; one
      logical monthly trigger maps to one run row.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class RunStatus(str, Enum):
    """Lifecycle status of one automation run."""

    RUNNING = "running"
    COMPLETED = "completed"  # No unit failed
    PARTIALLY_COMPLETED = "partially_completed"  # Some units failed, some succeeded
    FAILED = "failed"  # Run-level error, or every attempted unit failed
    SKIPPED = "skipped"  # Already completed for the period, or lock held


# A run in one of these states may run again for the same period.  RUNNING
# only survives a crashed holder, whose lock has expired by the time a new
# run can acquire it.
RERUNNABLE_RUN_STATUSES: frozenset[RunStatus] = frozenset({
    RunStatus.RUNNING,
    RunStatus.PARTIALLY_COMPLETED,
    RunStatus.FAILED,
})


class RunTrigger(str, Enum):
    SCHEDULE = "schedule"
    MANUAL = "manual"


# =============================================================================
# Run DTOs
# =============================================================================


@dataclass(frozen=True)
class RunCounts:
    """Unit counts reported by an engine run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def status(self) -> RunStatus:
        if self.failed == 0:
            return RunStatus.COMPLETED
        if self.succeeded > 0 or self.skipped > 0:
            return RunStatus.PARTIALLY_COMPLETED
        return RunStatus.FAILED


@dataclass(frozen=True)
class AutomationRun:
    """Immutable snapshot of one automation run."""

    run_id: UUID
    job_name: str
    idempotency_key: str
    period_month: int
    period_year: int
    status: RunStatus
    trigger: RunTrigger
    total_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    attempt_count: int = 1
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    error_summary: str | None = None


# =============================================================================
# Schedule DTOs
# =============================================================================


@dataclass(frozen=True)
class JobSchedule:
    """Immutable snapshot of a cron schedule for one automation job."""

    schedule_id: UUID
    job_name: str
    cron_expression: str
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: RunStatus | None = None
    is_active: bool = True


# =============================================================================
# Health DTOs
# =============================================================================


@dataclass(frozen=True)
class JobHealth:
    """Run history summary of one automation job."""

    job_name: str
    total_runs: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_run_at: datetime | None = None
    last_run_status: RunStatus | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    next_run_at: datetime | None = None

    @property
    def healthy(self) -> bool:
        return self.last_run_status not in (RunStatus.FAILED, RunStatus.PARTIALLY_COMPLETED)


@dataclass(frozen=True)
class AutomationHealth:
    jobs: tuple[JobHealth, ...] = ()

    @property
    def healthy(self) -> bool:
        return all(job.healthy for job in self.jobs)
