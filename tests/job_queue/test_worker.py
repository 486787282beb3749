"""
Tests for payout_queue.services.worker.QueueWorker.

Synchronous processing (run_once / drain) runs on the shared in-memory
database.  The threaded pool test uses a file database so every slot gets
its own connection.
"""

import threading
import time
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from payout_kernel.db.engine import create_tables
from payout_queue.domain.types import (
    DistributionJob,
    JobOptions,
    JobState,
    JobType,
    PayoutJob,
)
from payout_queue.services.dispatcher import JobDispatcher
from payout_queue.services.queue import JobQueue
from payout_queue.services.worker import QueueWorker


def _payout() -> PayoutJob:
    return PayoutJob(
        dividend_id=uuid4(),
        holding_id=uuid4(),
        user_id=uuid4(),
        shares_owned=Decimal("10"),
        payout_amount=Decimal("1.00"),
    )


@pytest.fixture
def queue(session_factory, clock):
    return JobQueue(session_factory, clock=clock)


class TestSynchronousProcessing:
    def test_run_once_completes_job(self, queue):
        handled = []
        worker = QueueWorker(
            queue,
            JobDispatcher(payout=lambda job: handled.append(job) or {"credited": str(job.payout_amount)}),
            worker_id="w1",
        )
        job_id = queue.enqueue(_payout())

        processed = worker.run_once()
        assert processed.job_id == job_id
        assert len(handled) == 1

        job = queue.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.result == {"credited": "1.00"}

    def test_run_once_on_empty_queue(self, queue):
        assert QueueWorker(queue, JobDispatcher()).run_once() is None

    def test_handler_failure_schedules_retry(self, queue, captured_logs):
        def explode(job):
            raise RuntimeError("wallet ledger unavailable")

        worker = QueueWorker(queue, JobDispatcher(payout=explode))
        job_id = queue.enqueue(_payout())
        worker.run_once()

        job = queue.get_job(job_id)
        assert job.state == JobState.DELAYED
        assert job.last_error == "RuntimeError: wallet ledger unavailable"
        assert any(r["message"] == "job_handler_failed" for r in captured_logs())

    def test_missing_handler_fails_job(self, queue):
        worker = QueueWorker(queue, JobDispatcher(payout=lambda job: None))
        job_id = queue.enqueue(DistributionJob(revenue_report_id=uuid4()), JobOptions(max_attempts=1))
        worker.run_once()

        job = queue.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.last_error.startswith("HandlerNotRegisteredError")

    def test_drain_processes_until_empty(self, queue):
        worker = QueueWorker(queue, JobDispatcher(payout=lambda job: None))
        queue.enqueue_bulk([_payout() for _ in range(4)])
        assert worker.drain() == 4
        assert queue.metrics().completed == 4

    def test_drain_respects_max_jobs_and_type(self, queue):
        worker = QueueWorker(
            queue,
            JobDispatcher(payout=lambda job: None, distribution=lambda job: None),
        )
        queue.enqueue_bulk([_payout() for _ in range(3)])
        queue.enqueue(DistributionJob(revenue_report_id=uuid4()))

        assert worker.drain(JobType.PAYOUT, max_jobs=2) == 2
        assert worker.drain(JobType.PAYOUT) == 1
        assert queue.metrics().waiting == 1

    def test_lost_ownership_is_logged_not_raised(self, queue, clock, captured_logs):
        def stall_and_steal(job):
            clock.advance(31)
            queue.check_stalled()
            queue.claim("worker-b")

        worker = QueueWorker(queue, JobDispatcher(payout=stall_and_steal), worker_id="w1")
        job_id = queue.enqueue(_payout())
        worker.run_once()

        job = queue.get_job(job_id)
        assert job.state == JobState.ACTIVE
        assert job.locked_by == "worker-b"
        assert any(r["message"] == "job_ownership_lost" for r in captured_logs())

    def test_slots_follow_policy_unless_overridden(self, queue):
        worker = QueueWorker(queue, JobDispatcher(), concurrency={JobType.PAYOUT: 3})
        assert worker.slots_for(JobType.PAYOUT) == 3
        assert worker.slots_for(JobType.DISTRIBUTION) == 2


class TestThreadedPool:
    @pytest.fixture
    def file_queue(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'queue.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        create_tables(engine)
        yield JobQueue(sessionmaker(bind=engine, expire_on_commit=False))
        engine.dispose()

    def test_pool_processes_every_job_once(self, file_queue):
        handled = []
        lock = threading.Lock()

        def handle(job):
            with lock:
                handled.append(job.holding_id)

        worker = QueueWorker(
            file_queue,
            JobDispatcher(payout=handle),
            concurrency={JobType.PAYOUT: 2},
            poll_interval_seconds=0.05,
            maintenance_interval_seconds=0.05,
        )
        payloads = [_payout() for _ in range(6)]
        file_queue.enqueue_bulk(payloads)

        worker.start()
        try:
            assert worker.is_running
            deadline = time.monotonic() + 20
            while file_queue.metrics().completed < 6 and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            worker.stop(timeout=10)

        assert not worker.is_running
        assert file_queue.metrics().completed == 6
        assert sorted(handled) == sorted(p.holding_id for p in payloads)
