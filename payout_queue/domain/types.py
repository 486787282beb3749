"""
payout_queue.domain.types -- Pure frozen dataclasses for the job queue.

ZERO I/O.

Job payloads are a tagged variant: one frozen dataclass per job type, each
carrying its ``JobType`` tag as a class variable.  Producers build a payload
object; the queue persists ``job_type`` plus ``to_dict()``; consumers get
the same payload class back through ``payload_from_dict()`` and dispatch
on its type.  No consumer ever reads an untyped dict.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union, get_args, get_type_hints
from uuid import UUID

from payout_kernel.exceptions import UnknownJobTypeError


# =============================================================================
# Enums
# =============================================================================


class JobState(str, Enum):
    """Lifecycle state of a queued job."""

    WAITING = "waiting"  # Ready to be claimed
    ACTIVE = "active"  # Claimed by a worker
    DELAYED = "delayed"  # Scheduled for later (initial delay or retry backoff)
    COMPLETED = "completed"
    FAILED = "failed"  # Attempts exhausted; terminal until manual retry
    STALLED = "stalled"  # Worker missed its heartbeat; claimable again


PENDING_STATES: frozenset[JobState] = frozenset({
    JobState.WAITING,
    JobState.ACTIVE,
    JobState.DELAYED,
    JobState.STALLED,
})

CLAIMABLE_STATES: frozenset[JobState] = frozenset({
    JobState.WAITING,
    JobState.STALLED,
})


class JobType(str, Enum):
    """Tag of a job payload variant."""

    DISTRIBUTION = "dividend.distribution"
    PAYOUT = "dividend.payout"
    NOTIFICATION = "dividend.notification"
    DEPOSIT = "payment.deposit"
    WITHDRAWAL = "payment.withdrawal"
    FEE = "payment.fee"
    TRADE_SETTLEMENT = "payment.trade_settlement"


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


# =============================================================================
# Policies
# =============================================================================


@dataclass(frozen=True)
class JobPolicy:
    """Per-job-type concurrency, retry and priority.

    Lower ``priority`` values are claimed first.
    """

    concurrency: int = 1
    max_attempts: int = 3
    backoff_delay_ms: int = 1000
    backoff_type: BackoffType = BackoffType.EXPONENTIAL
    priority: int = 5

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_delay_ms < 0:
            raise ValueError(f"backoff_delay_ms must be >= 0, got {self.backoff_delay_ms}")

    def backoff_ms(self, attempts_made: int) -> int:
        """Delay before the next attempt after ``attempts_made`` failures."""
        if self.backoff_type == BackoffType.FIXED:
            return self.backoff_delay_ms
        return self.backoff_delay_ms * (2 ** max(attempts_made - 1, 0))


DEFAULT_JOB_POLICIES: dict[JobType, JobPolicy] = {
    # Dividend jobs: more attempts, slower backoff
    JobType.DISTRIBUTION: JobPolicy(concurrency=2, max_attempts=5, backoff_delay_ms=2000, priority=1),
    JobType.PAYOUT: JobPolicy(concurrency=20, max_attempts=5, backoff_delay_ms=2000, priority=2),
    JobType.NOTIFICATION: JobPolicy(concurrency=5, max_attempts=5, backoff_delay_ms=2000, priority=3),
    JobType.DEPOSIT: JobPolicy(concurrency=5, max_attempts=3, backoff_delay_ms=1000, priority=5),
    JobType.WITHDRAWAL: JobPolicy(concurrency=3, max_attempts=3, backoff_delay_ms=1000, priority=5),
    JobType.FEE: JobPolicy(concurrency=5, max_attempts=3, backoff_delay_ms=1000, priority=5),
    JobType.TRADE_SETTLEMENT: JobPolicy(concurrency=5, max_attempts=3, backoff_delay_ms=1000, priority=5),
}


@dataclass(frozen=True)
class JobOptions:
    """Per-enqueue overrides of the job type's policy."""

    priority: int | None = None
    delay_seconds: float = 0
    max_attempts: int | None = None


# =============================================================================
# Payload variants
# =============================================================================


def _encode(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _decode(annotation: Any, raw: Any) -> Any:
    if raw is None:
        return None
    candidates = [a for a in get_args(annotation) if a is not type(None)]
    target = candidates[0] if candidates else annotation
    if target is UUID:
        return UUID(str(raw))
    if target is Decimal:
        return Decimal(str(raw))
    if target is datetime:
        return datetime.fromisoformat(raw)
    return raw


class _PayloadCodec:
    """Mixin giving frozen payload dataclasses a JSON-safe dict form."""

    job_type: ClassVar[JobType]

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _encode(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        hints = get_type_hints(cls)
        kwargs = {
            f.name: _decode(hints[f.name], data.get(f.name))
            for f in fields(cls)
            if f.name in data
        }
        return cls(**kwargs)


@dataclass(frozen=True)
class DistributionJob(_PayloadCodec):
    """Distribute the dividend of one revenue report through payout jobs."""

    job_type: ClassVar[JobType] = JobType.DISTRIBUTION

    revenue_report_id: UUID


@dataclass(frozen=True)
class PayoutJob(_PayloadCodec):
    """Credit one shareholder for one dividend."""

    job_type: ClassVar[JobType] = JobType.PAYOUT

    dividend_id: UUID
    holding_id: UUID
    user_id: UUID
    shares_owned: Decimal
    payout_amount: Decimal


@dataclass(frozen=True)
class NotificationJob(_PayloadCodec):
    """Tell one shareholder about a dividend credit."""

    job_type: ClassVar[JobType] = JobType.NOTIFICATION

    user_id: UUID
    company_name: str
    amount: Decimal
    shares_owned: Decimal
    dividend_id: UUID | None = None


@dataclass(frozen=True)
class DepositJob(_PayloadCodec):
    job_type: ClassVar[JobType] = JobType.DEPOSIT

    transaction_id: UUID
    user_id: UUID
    amount: Decimal
    payment_method: str = "bank_transfer"


@dataclass(frozen=True)
class WithdrawalJob(_PayloadCodec):
    job_type: ClassVar[JobType] = JobType.WITHDRAWAL

    transaction_id: UUID
    user_id: UUID
    amount: Decimal
    destination: str = ""


@dataclass(frozen=True)
class FeeJob(_PayloadCodec):
    job_type: ClassVar[JobType] = JobType.FEE

    transaction_id: UUID
    user_id: UUID
    amount: Decimal
    fee_type: str = "platform"


@dataclass(frozen=True)
class TradeSettlementJob(_PayloadCodec):
    job_type: ClassVar[JobType] = JobType.TRADE_SETTLEMENT

    trade_id: UUID
    buyer_id: UUID
    seller_id: UUID
    company_id: UUID
    shares: Decimal
    price_per_share: Decimal


JobPayload = Union[
    DistributionJob,
    PayoutJob,
    NotificationJob,
    DepositJob,
    WithdrawalJob,
    FeeJob,
    TradeSettlementJob,
]

PAYLOAD_TYPES: dict[JobType, type] = {
    JobType.DISTRIBUTION: DistributionJob,
    JobType.PAYOUT: PayoutJob,
    JobType.NOTIFICATION: NotificationJob,
    JobType.DEPOSIT: DepositJob,
    JobType.WITHDRAWAL: WithdrawalJob,
    JobType.FEE: FeeJob,
    JobType.TRADE_SETTLEMENT: TradeSettlementJob,
}


def payload_from_dict(job_type: str | JobType, data: dict[str, Any]) -> JobPayload:
    """Rebuild the payload variant for a persisted job.

    Raises:
        UnknownJobTypeError: If ``job_type`` has no variant.
    """
    try:
        tag = JobType(job_type)
    except ValueError:
        raise UnknownJobTypeError(str(job_type)) from None
    return PAYLOAD_TYPES[tag].from_dict(data)


def distribution_id_of(payload: JobPayload) -> UUID | None:
    """Dividend a job belongs to, for drain and progress queries."""
    match payload:
        case PayoutJob(dividend_id=dividend_id):
            return dividend_id
        case NotificationJob(dividend_id=dividend_id):
            return dividend_id
        case _:
            return None


# =============================================================================
# Query DTOs
# =============================================================================


@dataclass(frozen=True)
class QueuedJob:
    """Immutable snapshot of a persisted job."""

    job_id: UUID
    queue_name: str
    job_type: JobType
    payload: JobPayload
    state: JobState
    priority: int
    attempts_made: int
    max_attempts: int
    run_at: datetime
    stalled_count: int = 0
    progress: int = 0
    locked_by: str | None = None
    last_error: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass(frozen=True)
class QueueMetrics:
    """Job counts per state."""

    queue_name: str
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
    stalled: int = 0
    paused: bool = False

    @property
    def total(self) -> int:
        return (
            self.waiting + self.active + self.delayed
            + self.completed + self.failed + self.stalled
        )


@dataclass(frozen=True)
class DistributionProgress:
    """Payout progress of one queued dividend distribution."""

    dividend_id: UUID
    total_payouts: int
    completed: int
    failed: int
    pending: int
    percentage: int
    is_drained: bool


@dataclass(frozen=True)
class QueueHealth:
    queue_name: str
    healthy: bool
    failed: int
    max_failed: int
    paused: bool
    metrics: QueueMetrics | None = field(default=None, repr=False)
