"""
Durable SQL-backed job queue.

Typed job payloads, per-type retry/concurrency policies, a pull-based
worker pool and operator introspection (metrics, pause, replay).
"""

from payout_queue.domain.types import (
    DEFAULT_JOB_POLICIES,
    DepositJob,
    DistributionJob,
    DistributionProgress,
    FeeJob,
    JobOptions,
    JobPayload,
    JobPolicy,
    JobState,
    JobType,
    NotificationJob,
    PayoutJob,
    QueuedJob,
    QueueHealth,
    QueueMetrics,
    TradeSettlementJob,
    WithdrawalJob,
)
from payout_queue.services.dispatcher import JobDispatcher
from payout_queue.services.queue import JobQueue
from payout_queue.services.worker import QueueWorker

__all__ = [
    "DEFAULT_JOB_POLICIES",
    "DepositJob",
    "DistributionJob",
    "DistributionProgress",
    "FeeJob",
    "JobDispatcher",
    "JobOptions",
    "JobPayload",
    "JobPolicy",
    "JobQueue",
    "JobState",
    "JobType",
    "NotificationJob",
    "PayoutJob",
    "QueuedJob",
    "QueueHealth",
    "QueueMetrics",
    "QueueWorker",
    "TradeSettlementJob",
    "WithdrawalJob",
]
