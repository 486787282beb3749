"""
QueueWorker -- pulls jobs from a JobQueue and runs them through a dispatcher.

Contract:
    ``run_once(job_type)`` claims at most one job, dispatches it, and
    completes or fails it.  ``drain()`` repeats ``run_once`` until nothing is
    claimable.  Both are synchronous and used by tests and operator CLIs.

    ``start()`` launches one daemon thread per concurrency slot per job type
    (slots come from the queue's JobPolicy unless overridden) plus one
    maintenance thread that detects stalled jobs and promotes due delayed
    jobs.  ``stop(timeout)`` signals all threads and joins them; in-flight
    jobs finish first.

    While a handler runs, a heartbeat thread refreshes the job's liveness
    timestamp so long jobs are not reported as stalled.

Failure modes:
    - Handler exception -> ``queue.fail()`` (retry per policy).
    - Lost ownership (job re-claimed after a stall) -> the late
      ``complete()``/``fail()`` raises InvalidJobStateError, which is logged
      and dropped; the new owner's outcome stands.
"""

from __future__ import annotations

import threading
from uuid import uuid4

from payout_kernel.exceptions import InvalidJobStateError
from payout_kernel.logging_config import LogContext, get_logger

from payout_queue.domain.types import JobType, QueuedJob
from payout_queue.services.dispatcher import JobDispatcher
from payout_queue.services.queue import JobQueue

logger = get_logger("queue.worker")

DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_MAINTENANCE_INTERVAL_SECONDS = 5.0


class QueueWorker:
    """Thread-pool consumer of one JobQueue."""

    def __init__(
        self,
        queue: JobQueue,
        dispatcher: JobDispatcher,
        concurrency: dict[JobType, int] | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        maintenance_interval_seconds: float = DEFAULT_MAINTENANCE_INTERVAL_SECONDS,
        worker_id: str | None = None,
    ):
        self._queue = queue
        self._dispatcher = dispatcher
        self._concurrency = concurrency or {}
        self._poll_interval = poll_interval_seconds
        self._maintenance_interval = maintenance_interval_seconds
        self._worker_id = worker_id or f"worker-{uuid4().hex[:8]}"
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def slots_for(self, job_type: JobType) -> int:
        if job_type in self._concurrency:
            return self._concurrency[job_type]
        return self._queue.policy_for(job_type).concurrency

    # -------------------------------------------------------------------------
    # Synchronous processing
    # -------------------------------------------------------------------------

    def run_once(self, job_type: JobType | None = None, slot_id: str | None = None) -> QueuedJob | None:
        """Claim and process one job.  Returns the claimed job, or None."""
        owner = slot_id or self._worker_id
        job = self._queue.claim(owner, job_type)
        if job is None:
            return None

        with LogContext.bind(job_id=job.job_id):
            self._process(job, owner)
        return job

    def drain(self, job_type: JobType | None = None, max_jobs: int | None = None) -> int:
        """Process jobs until none is claimable.  Returns the number processed.

        Delayed jobs that are not yet due are left alone.
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if self.run_once(job_type) is None:
                break
            processed += 1
        return processed

    # -------------------------------------------------------------------------
    # Threaded processing
    # -------------------------------------------------------------------------

    def start(self, job_types: list[JobType] | None = None) -> None:
        """Start consumer threads for ``job_types`` (default: every registered type)."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._threads = []
        types = job_types or self._dispatcher.registered_types()

        for job_type in types:
            for slot in range(self.slots_for(job_type)):
                slot_id = f"{self._worker_id}:{job_type.value}:{slot}"
                thread = threading.Thread(
                    target=self._consume_loop,
                    args=(job_type, slot_id),
                    daemon=True,
                    name=slot_id,
                )
                self._threads.append(thread)

        self._threads.append(threading.Thread(
            target=self._maintenance_loop,
            daemon=True,
            name=f"{self._worker_id}:maintenance",
        ))

        for thread in self._threads:
            thread.start()

        logger.info(
            "queue_worker_started",
            extra={
                "worker_id": self._worker_id,
                "queue_name": self._queue.queue_name,
                "threads": len(self._threads),
                "job_types": [t.value for t in types],
            },
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal all threads to stop and wait for in-flight jobs."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("queue_worker_stopped", extra={"worker_id": self._worker_id})

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _consume_loop(self, job_type: JobType, slot_id: str) -> None:
        while not self._stop_event.is_set():
            try:
                job = self.run_once(job_type, slot_id)
            except Exception:
                logger.exception(
                    "queue_worker_poll_error",
                    extra={"worker_id": slot_id, "job_type": job_type.value},
                )
                job = None
            if job is None:
                self._stop_event.wait(self._poll_interval)

    def _maintenance_loop(self) -> None:
        while not self._stop_event.wait(self._maintenance_interval):
            try:
                self._queue.check_stalled()
                self._queue.promote_delayed()
            except Exception:
                logger.exception(
                    "queue_maintenance_error", extra={"worker_id": self._worker_id},
                )

    def _process(self, job: QueuedJob, owner: str) -> None:
        heartbeat_stop = threading.Event()
        heartbeat = threading.Thread(
            target=self._heartbeat_loop,
            args=(job, owner, heartbeat_stop),
            daemon=True,
            name=f"{owner}:heartbeat",
        )
        heartbeat.start()

        try:
            try:
                result = self._dispatcher.dispatch(job.payload)
            except Exception as exc:
                heartbeat_stop.set()
                logger.warning(
                    "job_handler_failed",
                    extra={
                        "job_id": str(job.job_id),
                        "job_type": job.job_type.value,
                        "error": str(exc),
                    },
                    exc_info=True,
                )
                self._queue.fail(job.job_id, owner, f"{type(exc).__name__}: {exc}")
            else:
                heartbeat_stop.set()
                self._queue.complete(job.job_id, owner, result)
        except InvalidJobStateError as exc:
            logger.warning(
                "job_ownership_lost",
                extra={"job_id": str(job.job_id), "worker_id": owner, "error": str(exc)},
            )
        finally:
            heartbeat_stop.set()
            heartbeat.join(timeout=5)

    def _heartbeat_loop(self, job: QueuedJob, owner: str, stop: threading.Event) -> None:
        interval = max(self._queue.stall_timeout_seconds / 3, 0.1)
        while not stop.wait(interval):
            try:
                if not self._queue.heartbeat(job.job_id, owner):
                    return
            except Exception:
                logger.exception("job_heartbeat_error", extra={"job_id": str(job.job_id)})
                return
