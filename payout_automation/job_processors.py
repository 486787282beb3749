"""
Queue job handlers for the dividend and payment job types.

``build_dispatcher()`` wires one handler per payload variant:

    DistributionJob   -> DividendDistributionEngine.distribute_via_queue
    PayoutJob         -> DividendDistributionEngine.apply_queued_payout
    NotificationJob   -> NotificationSender.send_dividend_notification
    Deposit/Withdrawal/Fee/TradeSettlement -> PaymentProcessor

Handlers return a JSON-safe dict stored as the job result.  Exceptions
propagate to the worker, which fails the job and retries it per policy.
Payment handlers are only registered when a processor is supplied.
"""

from __future__ import annotations

from payout_kernel.logging_config import get_logger
from payout_queue.domain.types import (
    DepositJob,
    DistributionJob,
    FeeJob,
    NotificationJob,
    PayoutJob,
    TradeSettlementJob,
    WithdrawalJob,
)
from payout_queue.services.dispatcher import JobDispatcher
from payout_queue.services.queue import JobQueue

from payout_automation.collaborators import (
    NotificationSender,
    NullNotificationSender,
    PaymentProcessor,
)
from payout_automation.dividend_distribution import DividendDistributionEngine

logger = get_logger("automation.jobs")


def build_dispatcher(
    dividend_engine: DividendDistributionEngine,
    queue: JobQueue,
    notifier: NotificationSender | None = None,
    payment_processor: PaymentProcessor | None = None,
) -> JobDispatcher:
    notifier = notifier or NullNotificationSender()

    def handle_distribution(job: DistributionJob) -> dict:
        result = dividend_engine.distribute_via_queue(job.revenue_report_id, queue)
        return {
            "outcome": result.outcome.value,
            "dividend_id": str(result.dividend_id) if result.dividend_id else None,
            "queued_jobs": result.queued_jobs,
            "amount_per_share": str(result.amount_per_share),
        }

    def handle_payout(job: PayoutJob) -> dict:
        result = dividend_engine.apply_queued_payout(job)
        return {
            "applied": result.applied,
            "payout_id": str(result.payout_id) if result.payout_id else None,
            "dividend_completed": result.dividend_completed,
        }

    def handle_notification(job: NotificationJob) -> dict:
        notifier.send_dividend_notification(
            job.user_id, job.company_name, job.amount, job.shares_owned,
        )
        logger.debug("dividend_notification_sent", extra={"user_id": str(job.user_id)})
        return {"sent": True}

    if payment_processor is None:
        return JobDispatcher(
            distribution=handle_distribution,
            payout=handle_payout,
            notification=handle_notification,
        )

    def handle_deposit(job: DepositJob) -> dict:
        return payment_processor.process_deposit(
            job.transaction_id, job.user_id, job.amount, job.payment_method,
        )

    def handle_withdrawal(job: WithdrawalJob) -> dict:
        return payment_processor.process_withdrawal(
            job.transaction_id, job.user_id, job.amount, job.destination,
        )

    def handle_fee(job: FeeJob) -> dict:
        return payment_processor.process_fee(
            job.transaction_id, job.user_id, job.amount, job.fee_type,
        )

    def handle_trade(job: TradeSettlementJob) -> dict:
        return payment_processor.settle_trade(
            job.trade_id,
            job.buyer_id,
            job.seller_id,
            job.company_id,
            job.shares,
            job.price_per_share,
        )

    return JobDispatcher(
        distribution=handle_distribution,
        payout=handle_payout,
        notification=handle_notification,
        deposit=handle_deposit,
        withdrawal=handle_withdrawal,
        fee=handle_fee,
        trade_settlement=handle_trade,
    )
