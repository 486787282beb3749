"""
JobQueue -- durable, SQL-backed job queue with per-type policies.

Contract:
    An explicitly constructed queue client.  Producers ``enqueue()`` typed
    payloads (optionally inside their own transaction, so a job exists iff
    the producer's writes commit).  Consumers ``claim()`` one job of a type,
    then ``complete()`` or ``fail()`` it.  Operators read ``metrics()``,
    inspect and ``retry_job()`` failed jobs, ``pause()`` / ``resume()``
    claiming, ``clean()`` old jobs, and follow a dividend through
    ``distribution_progress()``.

State machine::

    enqueue ----------------> WAITING --claim--> ACTIVE --complete--> COMPLETED
    enqueue(delay) -> DELAYED --due--^            |
                        ^                         +--fail, attempts left--> DELAYED
                        |                         +--fail, exhausted------> FAILED
    STALLED <--missed heartbeat-- ACTIVE          FAILED --retry_job--> WAITING
    STALLED --claim--> ACTIVE;  stalled too often --> FAILED

Invariants enforced:
    - Claiming uses SELECT ... FOR UPDATE SKIP LOCKED plus a state-guarded
      UPDATE, so two workers never claim the same job.
    - complete()/fail()/heartbeat() require the caller to still own the
      job; a worker whose job was re-claimed after a stall cannot
      overwrite the new owner's outcome.
    - A paused queue hands out no jobs; active jobs run to completion.
    - All timestamps come from the injected Clock.

Non-goals:
    - Does NOT execute handlers.  That is QueueWorker's job.
    - Exactly-once side effects are NOT a queue guarantee.  Handlers are
      at-least-once and rely on storage-level unique constraints.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Iterable
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from payout_kernel.db.transaction import transaction_scope
from payout_kernel.domain.clock import Clock, SystemClock
from payout_kernel.exceptions import (
    InvalidJobStateError,
    JobNotFoundError,
    QueueClosedError,
)
from payout_kernel.logging_config import get_logger

from payout_queue.domain.types import (
    CLAIMABLE_STATES,
    DEFAULT_JOB_POLICIES,
    PENDING_STATES,
    BackoffType,
    DistributionProgress,
    JobOptions,
    JobPayload,
    JobPolicy,
    JobState,
    JobType,
    QueuedJob,
    QueueHealth,
    QueueMetrics,
    distribution_id_of,
)
from payout_queue.models.job import QueueJobModel, QueueStateModel

logger = get_logger("queue.jobs")

DEFAULT_STALL_TIMEOUT_SECONDS = 30
DEFAULT_MAX_STALLED_COUNT = 3
CLAIM_ATTEMPTS = 3


class JobQueue:
    """Durable job queue client.

    Args:
        session_factory: Opens a session per queue operation.
        queue_name: Namespace for jobs and the paused flag.
        policies: Per-job-type policy overrides (merged over defaults).
        clock: Time source.
        stall_timeout_seconds: Heartbeat age after which an ACTIVE job stalls.
        max_stalled_count: Stalls tolerated before the job is FAILED.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        queue_name: str = "dividends",
        policies: dict[JobType, JobPolicy] | None = None,
        clock: Clock | None = None,
        stall_timeout_seconds: float = DEFAULT_STALL_TIMEOUT_SECONDS,
        max_stalled_count: int = DEFAULT_MAX_STALLED_COUNT,
    ):
        self._session_factory = session_factory
        self._queue_name = queue_name
        self._policies = {**DEFAULT_JOB_POLICIES, **(policies or {})}
        self._clock = clock or SystemClock()
        self._stall_timeout = timedelta(seconds=stall_timeout_seconds)
        self._max_stalled_count = max_stalled_count
        self._closed = False

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def stall_timeout_seconds(self) -> float:
        return self._stall_timeout.total_seconds()

    def policy_for(self, job_type: JobType) -> JobPolicy:
        return self._policies[JobType(job_type)]

    def close(self) -> None:
        """Stop accepting operations.  Idempotent."""
        if not self._closed:
            self._closed = True
            logger.info("queue_closed", extra={"queue_name": self._queue_name})

    @property
    def is_closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        payload: JobPayload,
        options: JobOptions | None = None,
        session: Session | None = None,
    ) -> UUID:
        """Add one job.  Returns its id.

        With ``session`` the job is written in the caller's transaction and
        becomes visible when the caller commits.
        """
        return self.enqueue_bulk([payload], options, session)[0]

    def enqueue_bulk(
        self,
        payloads: Iterable[JobPayload],
        options: JobOptions | None = None,
        session: Session | None = None,
    ) -> list[UUID]:
        """Add many jobs in one transaction.  Returns ids in input order."""
        self._ensure_open()
        options = options or JobOptions()
        now = self._clock.now_utc()
        models = [self._build_job(p, options, now) for p in payloads]

        if session is not None:
            session.add_all(models)
            session.flush()
        else:
            with transaction_scope(self._session_factory, "queue_enqueue") as own:
                own.add_all(models)

        logger.info(
            "jobs_enqueued",
            extra={
                "queue_name": self._queue_name,
                "count": len(models),
                "job_types": sorted({m.job_type for m in models}),
                "delay_seconds": options.delay_seconds,
            },
        )
        return [m.id for m in models]

    # -------------------------------------------------------------------------
    # Consume
    # -------------------------------------------------------------------------

    def claim(self, worker_id: str, job_type: JobType | None = None) -> QueuedJob | None:
        """Claim the next ready job (lowest priority value, oldest first).

        Returns None when the queue is paused or nothing is ready.
        """
        self._ensure_open()
        now = self._clock.now_utc()

        with transaction_scope(self._session_factory, "queue_claim") as session:
            if self._is_paused(session):
                return None

            self._promote_due(session, now)

            stmt = (
                select(QueueJobModel)
                .where(
                    QueueJobModel.queue_name == self._queue_name,
                    QueueJobModel.state.in_([s.value for s in CLAIMABLE_STATES]),
                )
                .order_by(
                    QueueJobModel.priority,
                    QueueJobModel.run_at,
                    QueueJobModel.created_at,
                    QueueJobModel.id,
                )
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            if job_type is not None:
                stmt = stmt.where(QueueJobModel.job_type == JobType(job_type).value)

            for _ in range(CLAIM_ATTEMPTS):
                job = session.execute(stmt).scalar_one_or_none()
                if job is None:
                    return None

                # Guarded on the observed state: without SKIP LOCKED (SQLite)
                # two claimers can select the same row.
                claimed = session.execute(
                    update(QueueJobModel)
                    .where(
                        QueueJobModel.id == job.id,
                        QueueJobModel.state == job.state,
                    )
                    .values(
                        state=JobState.ACTIVE.value,
                        locked_by=worker_id,
                        heartbeat_at=now,
                        started_at=now,
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount
                if claimed:
                    session.refresh(job)
                    dto = job.to_dto()
                    break
                session.expire(job)
            else:
                return None

        logger.info(
            "job_claimed",
            extra={
                "job_id": str(dto.job_id),
                "job_type": dto.job_type.value,
                "worker_id": worker_id,
                "attempt": dto.attempts_made + 1,
            },
        )
        return dto

    def heartbeat(self, job_id: UUID, worker_id: str) -> bool:
        """Refresh the liveness timestamp.  False if the job is no longer ours."""
        now = self._clock.now_utc()
        with transaction_scope(self._session_factory, "queue_heartbeat") as session:
            result = session.execute(
                update(QueueJobModel)
                .where(
                    QueueJobModel.id == job_id,
                    QueueJobModel.state == JobState.ACTIVE.value,
                    QueueJobModel.locked_by == worker_id,
                )
                .values(heartbeat_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def update_progress(self, job_id: UUID, worker_id: str, progress: int) -> None:
        with transaction_scope(self._session_factory, "queue_progress") as session:
            job = self._owned_active(session, job_id, worker_id, "update progress of")
            job.progress = max(0, min(100, int(progress)))
            job.heartbeat_at = self._clock.now_utc()

    def complete(
        self,
        job_id: UUID,
        worker_id: str,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Mark an owned ACTIVE job COMPLETED.

        Raises:
            JobNotFoundError: Unknown job.
            InvalidJobStateError: Job is not ACTIVE or owned by someone else.
        """
        now = self._clock.now_utc()
        with transaction_scope(self._session_factory, "queue_complete") as session:
            job = self._owned_active(session, job_id, worker_id, "complete")
            job.state = JobState.COMPLETED.value
            job.result = result
            job.progress = 100
            job.locked_by = None
            job.finished_at = now
            job_type = job.job_type

        logger.info(
            "job_completed",
            extra={"job_id": str(job_id), "job_type": job_type, "worker_id": worker_id},
        )

    def fail(self, job_id: UUID, worker_id: str, error: str) -> JobState:
        """Record a failed attempt.

        Returns DELAYED when the job will be retried after backoff, FAILED
        when attempts are exhausted.
        """
        now = self._clock.now_utc()
        with transaction_scope(self._session_factory, "queue_fail") as session:
            job = self._owned_active(session, job_id, worker_id, "fail")
            job.attempts_made += 1
            job.last_error = error
            job.locked_by = None

            if job.attempts_made < job.max_attempts:
                policy = JobPolicy(
                    max_attempts=job.max_attempts,
                    backoff_delay_ms=job.backoff_delay_ms,
                    backoff_type=BackoffType(job.backoff_type),
                )
                delay_ms = policy.backoff_ms(job.attempts_made)
                job.state = JobState.DELAYED.value
                job.run_at = now + timedelta(milliseconds=delay_ms)
            else:
                delay_ms = None
                job.state = JobState.FAILED.value
                job.finished_at = now

            new_state = JobState(job.state)
            attempts_made = job.attempts_made
            max_attempts = job.max_attempts
            job_type = job.job_type

        log = logger.warning if new_state == JobState.DELAYED else logger.error
        log(
            "job_failed",
            extra={
                "job_id": str(job_id),
                "job_type": job_type,
                "worker_id": worker_id,
                "attempts_made": attempts_made,
                "max_attempts": max_attempts,
                "next_state": new_state.value,
                "retry_in_ms": delay_ms,
                "error": error,
            },
        )
        return new_state

    def check_stalled(self) -> int:
        """Move ACTIVE jobs with an expired heartbeat to STALLED (or FAILED).

        Returns the number of jobs affected.
        """
        now = self._clock.now_utc()
        cutoff = now - self._stall_timeout
        affected = 0

        with transaction_scope(self._session_factory, "queue_check_stalled") as session:
            stale = session.execute(
                select(QueueJobModel)
                .where(
                    QueueJobModel.queue_name == self._queue_name,
                    QueueJobModel.state == JobState.ACTIVE.value,
                    QueueJobModel.heartbeat_at < cutoff,
                )
                .with_for_update(skip_locked=True)
            ).scalars().all()

            for job in stale:
                job.stalled_count += 1
                previous_owner = job.locked_by
                job.locked_by = None
                if job.stalled_count > self._max_stalled_count:
                    job.state = JobState.FAILED.value
                    job.last_error = (
                        f"job stalled more than allowable limit ({self._max_stalled_count})"
                    )
                    job.finished_at = now
                else:
                    job.state = JobState.STALLED.value
                affected += 1
                logger.warning(
                    "job_stalled",
                    extra={
                        "job_id": str(job.id),
                        "job_type": job.job_type,
                        "previous_owner": previous_owner,
                        "stalled_count": job.stalled_count,
                        "next_state": job.state,
                    },
                )

        return affected

    def promote_delayed(self) -> int:
        """Move due DELAYED jobs to WAITING.  Claim does this implicitly."""
        with transaction_scope(self._session_factory, "queue_promote") as session:
            return self._promote_due(session, self._clock.now_utc())

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_job(self, job_id: UUID) -> QueuedJob:
        session = self._session_factory()
        try:
            job = self._get_model(session, job_id)
            return job.to_dto()
        finally:
            session.close()

    def metrics(self) -> QueueMetrics:
        session = self._session_factory()
        try:
            rows = session.execute(
                select(QueueJobModel.state, func.count(QueueJobModel.id))
                .where(QueueJobModel.queue_name == self._queue_name)
                .group_by(QueueJobModel.state)
            ).all()
            counts = {state: count for state, count in rows}
            paused = self._is_paused(session)
        finally:
            session.close()

        return QueueMetrics(
            queue_name=self._queue_name,
            waiting=counts.get(JobState.WAITING.value, 0),
            active=counts.get(JobState.ACTIVE.value, 0),
            delayed=counts.get(JobState.DELAYED.value, 0),
            completed=counts.get(JobState.COMPLETED.value, 0),
            failed=counts.get(JobState.FAILED.value, 0),
            stalled=counts.get(JobState.STALLED.value, 0),
            paused=paused,
        )

    def get_failed(self, limit: int = 100) -> list[QueuedJob]:
        """Most recently failed jobs first."""
        session = self._session_factory()
        try:
            jobs = session.execute(
                select(QueueJobModel)
                .where(
                    QueueJobModel.queue_name == self._queue_name,
                    QueueJobModel.state == JobState.FAILED.value,
                )
                .order_by(QueueJobModel.finished_at.desc(), QueueJobModel.id)
                .limit(limit)
            ).scalars().all()
            return [j.to_dto() for j in jobs]
        finally:
            session.close()

    def health(self, max_failed: int) -> QueueHealth:
        metrics = self.metrics()
        return QueueHealth(
            queue_name=self._queue_name,
            healthy=metrics.failed < max_failed,
            failed=metrics.failed,
            max_failed=max_failed,
            paused=metrics.paused,
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    def retry_job(self, job_id: UUID) -> None:
        """Return a FAILED job to WAITING with its attempt count reset.

        Raises:
            InvalidJobStateError: If the job is not FAILED.
        """
        now = self._clock.now_utc()
        with transaction_scope(self._session_factory, "queue_retry_job") as session:
            job = self._get_model(session, job_id, for_update=True)
            if job.state != JobState.FAILED.value:
                raise InvalidJobStateError(str(job_id), job.state, "retry")
            self._reset_for_retry(job, now)

        logger.info("job_retried", extra={"job_id": str(job_id)})

    def retry_all_failed(self, limit: int = 100) -> int:
        """Retry up to ``limit`` FAILED jobs.  Returns how many were retried."""
        now = self._clock.now_utc()
        with transaction_scope(self._session_factory, "queue_retry_all") as session:
            jobs = session.execute(
                select(QueueJobModel)
                .where(
                    QueueJobModel.queue_name == self._queue_name,
                    QueueJobModel.state == JobState.FAILED.value,
                )
                .order_by(QueueJobModel.finished_at, QueueJobModel.id)
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).scalars().all()
            for job in jobs:
                self._reset_for_retry(job, now)
            count = len(jobs)

        logger.info("jobs_retried", extra={"queue_name": self._queue_name, "count": count})
        return count

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def pause(self) -> None:
        self._set_paused(True)

    def resume(self) -> None:
        self._set_paused(False)

    def is_paused(self) -> bool:
        session = self._session_factory()
        try:
            return self._is_paused(session)
        finally:
            session.close()

    def clean(self, keep_completed: int = 200, keep_failed: int = 100) -> int:
        """Delete the oldest finished jobs beyond the retention counts."""
        removed = 0
        with transaction_scope(self._session_factory, "queue_clean") as session:
            for state, keep in (
                (JobState.COMPLETED, keep_completed),
                (JobState.FAILED, keep_failed),
            ):
                keep_ids = select(QueueJobModel.id).where(
                    QueueJobModel.queue_name == self._queue_name,
                    QueueJobModel.state == state.value,
                ).order_by(
                    QueueJobModel.finished_at.desc(), QueueJobModel.id,
                ).limit(keep)
                kept = set(session.execute(keep_ids).scalars().all())

                doomed = [
                    job_id for job_id in session.execute(
                        select(QueueJobModel.id).where(
                            QueueJobModel.queue_name == self._queue_name,
                            QueueJobModel.state == state.value,
                        )
                    ).scalars().all()
                    if job_id not in kept
                ]
                if doomed:
                    session.execute(
                        delete(QueueJobModel)
                        .where(QueueJobModel.id.in_(doomed))
                        .execution_options(synchronize_session=False)
                    )
                removed += len(doomed)

        logger.info("queue_cleaned", extra={"queue_name": self._queue_name, "removed": removed})
        return removed

    # -------------------------------------------------------------------------
    # Distribution tracking
    # -------------------------------------------------------------------------

    def is_distribution_drained(self, dividend_id: UUID) -> bool:
        """True when no pending job references ``dividend_id``."""
        session = self._session_factory()
        try:
            pending = session.execute(
                select(func.count(QueueJobModel.id)).where(
                    QueueJobModel.queue_name == self._queue_name,
                    QueueJobModel.distribution_id == dividend_id,
                    QueueJobModel.state.in_([s.value for s in PENDING_STATES]),
                )
            ).scalar_one()
            return pending == 0
        finally:
            session.close()

    def distribution_progress(self, dividend_id: UUID, total_payouts: int) -> DistributionProgress:
        """Completed/failed/pending payout jobs of one distribution."""
        session = self._session_factory()
        try:
            rows = session.execute(
                select(QueueJobModel.state, func.count(QueueJobModel.id))
                .where(
                    QueueJobModel.queue_name == self._queue_name,
                    QueueJobModel.distribution_id == dividend_id,
                    QueueJobModel.job_type == JobType.PAYOUT.value,
                )
                .group_by(QueueJobModel.state)
            ).all()
        finally:
            session.close()

        counts = {state: count for state, count in rows}
        completed = counts.get(JobState.COMPLETED.value, 0)
        failed = counts.get(JobState.FAILED.value, 0)
        pending = sum(counts.get(s.value, 0) for s in PENDING_STATES)
        # Whole percent, halves rounded up; no payouts reads as 0%.
        percentage = (completed * 200 + total_payouts) // (2 * total_payouts) if total_payouts > 0 else 0

        return DistributionProgress(
            dividend_id=dividend_id,
            total_payouts=total_payouts,
            completed=completed,
            failed=failed,
            pending=pending,
            percentage=percentage,
            is_drained=pending == 0,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise QueueClosedError(self._queue_name)

    def _build_job(self, payload: JobPayload, options: JobOptions, now: datetime) -> QueueJobModel:
        policy = self._policies[payload.job_type]
        delayed = options.delay_seconds > 0
        return QueueJobModel(
            id=uuid4(),
            queue_name=self._queue_name,
            job_type=payload.job_type.value,
            payload=payload.to_dict(),
            state=(JobState.DELAYED if delayed else JobState.WAITING).value,
            priority=options.priority if options.priority is not None else policy.priority,
            attempts_made=0,
            max_attempts=options.max_attempts or policy.max_attempts,
            backoff_delay_ms=policy.backoff_delay_ms,
            backoff_type=policy.backoff_type.value,
            run_at=now + timedelta(seconds=options.delay_seconds) if delayed else now,
            stalled_count=0,
            progress=0,
            distribution_id=distribution_id_of(payload),
            created_at=now,
            updated_at=now,
        )

    def _promote_due(self, session: Session, now: datetime) -> int:
        result = session.execute(
            update(QueueJobModel)
            .where(
                QueueJobModel.queue_name == self._queue_name,
                QueueJobModel.state == JobState.DELAYED.value,
                QueueJobModel.run_at <= now,
            )
            .values(state=JobState.WAITING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _get_model(self, session: Session, job_id: UUID, for_update: bool = False) -> QueueJobModel:
        stmt = select(QueueJobModel).where(QueueJobModel.id == job_id)
        if for_update:
            stmt = stmt.with_for_update()
        job = session.execute(stmt).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job

    def _owned_active(
        self, session: Session, job_id: UUID, worker_id: str, operation: str,
    ) -> QueueJobModel:
        job = self._get_model(session, job_id, for_update=True)
        if job.state != JobState.ACTIVE.value or job.locked_by != worker_id:
            raise InvalidJobStateError(str(job_id), job.state, operation)
        return job

    def _reset_for_retry(self, job: QueueJobModel, now: datetime) -> None:
        job.state = JobState.WAITING.value
        job.attempts_made = 0
        job.stalled_count = 0
        job.last_error = None
        job.locked_by = None
        job.finished_at = None
        job.run_at = now

    def _is_paused(self, session: Session) -> bool:
        paused = session.execute(
            select(QueueStateModel.is_paused).where(
                QueueStateModel.queue_name == self._queue_name,
            )
        ).scalar_one_or_none()
        return bool(paused)

    def _set_paused(self, paused: bool) -> None:
        self._ensure_open()
        with transaction_scope(self._session_factory, "queue_set_paused") as session:
            state = session.execute(
                select(QueueStateModel)
                .where(QueueStateModel.queue_name == self._queue_name)
                .with_for_update()
            ).scalar_one_or_none()
            if state is None:
                session.add(QueueStateModel(queue_name=self._queue_name, is_paused=paused))
            else:
                state.is_paused = paused

        logger.info(
            "queue_paused" if paused else "queue_resumed",
            extra={"queue_name": self._queue_name},
        )
