"""
JobDispatcher -- routes a typed payload to its handler.

Every payload variant has exactly one handler slot.  ``dispatch()`` is an
exhaustive ``match`` over the variant classes; adding a variant to
``JobPayload`` without a case here is caught by the type checker through
``assert_never``.  A slot left empty raises ``HandlerNotRegisteredError``
when a job of that type arrives, which the worker records as a job failure.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, assert_never

from payout_kernel.exceptions import HandlerNotRegisteredError
from payout_kernel.logging_config import get_logger

from payout_queue.domain.types import (
    DepositJob,
    DistributionJob,
    FeeJob,
    JobPayload,
    JobType,
    NotificationJob,
    PayoutJob,
    TradeSettlementJob,
    WithdrawalJob,
)

logger = get_logger("queue.dispatcher")

Handler = Callable[[Any], Optional[dict]]


class JobDispatcher:
    """Handler table keyed by payload variant."""

    def __init__(
        self,
        *,
        distribution: Callable[[DistributionJob], dict | None] | None = None,
        payout: Callable[[PayoutJob], dict | None] | None = None,
        notification: Callable[[NotificationJob], dict | None] | None = None,
        deposit: Callable[[DepositJob], dict | None] | None = None,
        withdrawal: Callable[[WithdrawalJob], dict | None] | None = None,
        fee: Callable[[FeeJob], dict | None] | None = None,
        trade_settlement: Callable[[TradeSettlementJob], dict | None] | None = None,
    ):
        self._handlers: dict[JobType, Handler | None] = {
            JobType.DISTRIBUTION: distribution,
            JobType.PAYOUT: payout,
            JobType.NOTIFICATION: notification,
            JobType.DEPOSIT: deposit,
            JobType.WITHDRAWAL: withdrawal,
            JobType.FEE: fee,
            JobType.TRADE_SETTLEMENT: trade_settlement,
        }

    def registered_types(self) -> list[JobType]:
        return [job_type for job_type, handler in self._handlers.items() if handler is not None]

    def dispatch(self, payload: JobPayload) -> dict | None:
        """Run the handler for ``payload`` and return its result dict.

        Raises:
            HandlerNotRegisteredError: No handler for the payload's type.
        """
        match payload:
            case DistributionJob():
                return self._call(JobType.DISTRIBUTION, payload)
            case PayoutJob():
                return self._call(JobType.PAYOUT, payload)
            case NotificationJob():
                return self._call(JobType.NOTIFICATION, payload)
            case DepositJob():
                return self._call(JobType.DEPOSIT, payload)
            case WithdrawalJob():
                return self._call(JobType.WITHDRAWAL, payload)
            case FeeJob():
                return self._call(JobType.FEE, payload)
            case TradeSettlementJob():
                return self._call(JobType.TRADE_SETTLEMENT, payload)
            case _:
                assert_never(payload)

    def _call(self, job_type: JobType, payload: JobPayload) -> dict | None:
        handler = self._handlers[job_type]
        if handler is None:
            raise HandlerNotRegisteredError(
                job_type.value, [t.value for t in self.registered_types()],
            )
        logger.debug("job_dispatched", extra={"job_type": job_type.value})
        return handler(payload)
