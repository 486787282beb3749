"""
ORM models for the durable job queue.

Contract:
    QueueJobModel persists one job with its state machine fields.
    QueueStateModel persists per-queue flags (paused) so that every worker
    process observes pause/resume.

Architecture: payout_queue/models.  Imports from payout_kernel.db.base only.

Invariants enforced:
    - ``state`` is one of JobState; transitions are owned by JobQueue.
    - ``distribution_id`` is denormalized from the payload so drain and
      progress queries never parse JSON.
    - One QueueStateModel row per queue_name.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payout_kernel.db.base import TrackedBase, UUIDString
from payout_kernel.utils.datetimes import as_utc

if TYPE_CHECKING:
    from payout_queue.domain.types import QueuedJob


class QueueJobModel(TrackedBase):
    """Persistent queue job."""

    __tablename__ = "queue_jobs"

    __table_args__ = (
        Index("ix_queue_jobs_claim", "queue_name", "state", "job_type", "priority", "run_at"),
        Index("ix_queue_jobs_distribution", "distribution_id", "state"),
        Index("ix_queue_jobs_heartbeat", "state", "heartbeat_at"),
    )

    queue_name: Mapped[str] = mapped_column(String(100), nullable=False)
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)

    attempts_made: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    backoff_delay_ms: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    backoff_type: Mapped[str] = mapped_column(String(20), default="exponential", nullable=False)

    # When a WAITING job became ready, or when a DELAYED job becomes due
    run_at: Mapped[datetime] = mapped_column(nullable=False)

    locked_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(nullable=True)
    stalled_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    distribution_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> QueuedJob:
        from payout_queue.domain.types import JobState, JobType, QueuedJob, payload_from_dict

        return QueuedJob(
            job_id=self.id,
            queue_name=self.queue_name,
            job_type=JobType(self.job_type),
            payload=payload_from_dict(self.job_type, self.payload),
            state=JobState(self.state),
            priority=self.priority,
            attempts_made=self.attempts_made,
            max_attempts=self.max_attempts,
            run_at=as_utc(self.run_at),
            stalled_count=self.stalled_count,
            progress=self.progress,
            locked_by=self.locked_by,
            last_error=self.last_error,
            result=self.result,
            created_at=as_utc(self.created_at),
            finished_at=as_utc(self.finished_at),
        )

    def __repr__(self) -> str:
        return f"<QueueJob {self.job_type} {self.state} attempts={self.attempts_made}/{self.max_attempts}>"


class QueueStateModel(TrackedBase):
    """Per-queue operational flags."""

    __tablename__ = "queue_states"

    __table_args__ = (
        UniqueConstraint("queue_name", name="uq_queue_state_name"),
    )

    queue_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
