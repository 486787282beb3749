"""Tests for payout_automation.job_processors.build_dispatcher."""

from decimal import Decimal
from uuid import uuid4

import pytest

from payout_automation.dividend_distribution import DividendDistributionEngine
from payout_automation.job_processors import build_dispatcher
from payout_kernel.exceptions import HandlerNotRegisteredError
from payout_queue.domain.types import (
    DepositJob,
    FeeJob,
    JobType,
    NotificationJob,
    TradeSettlementJob,
    WithdrawalJob,
)
from payout_queue.services.queue import JobQueue


class RecordingPaymentProcessor:
    def __init__(self):
        self.calls = []

    def process_deposit(self, transaction_id, user_id, amount, payment_method):
        self.calls.append(("deposit", transaction_id, amount, payment_method))
        return {"status": "settled"}

    def process_withdrawal(self, transaction_id, user_id, amount, destination):
        self.calls.append(("withdrawal", transaction_id, amount, destination))
        return {"status": "sent"}

    def process_fee(self, transaction_id, user_id, amount, fee_type):
        self.calls.append(("fee", transaction_id, amount, fee_type))
        return {"status": "charged"}

    def settle_trade(self, trade_id, buyer_id, seller_id, company_id, shares, price_per_share):
        self.calls.append(("trade", trade_id, shares, price_per_share))
        return {"status": "settled"}


@pytest.fixture
def queue(session_factory, clock):
    return JobQueue(session_factory, clock=clock)


@pytest.fixture
def engine(session_factory, clock):
    return DividendDistributionEngine(session_factory, clock=clock)


class TestBuildDispatcher:
    def test_dividend_handlers_only_without_processor(self, engine, queue):
        dispatcher = build_dispatcher(engine, queue)
        assert dispatcher.registered_types() == [
            JobType.DISTRIBUTION, JobType.PAYOUT, JobType.NOTIFICATION,
        ]
        with pytest.raises(HandlerNotRegisteredError):
            dispatcher.dispatch(DepositJob(transaction_id=uuid4(), user_id=uuid4(), amount=Decimal("1")))

    def test_notification_handler_sends(self, engine, queue, notifier):
        dispatcher = build_dispatcher(engine, queue, notifier=notifier)
        user_id = uuid4()
        result = dispatcher.dispatch(NotificationJob(
            user_id=user_id,
            company_name="Acme Bakery",
            amount=Decimal("12.50"),
            shares_owned=Decimal("5"),
        ))
        assert result == {"sent": True}
        assert notifier.sent == [(user_id, "Acme Bakery", Decimal("12.50"), Decimal("5"))]

    def test_notification_failure_propagates_for_retry(self, engine, queue):
        from tests.fakes import RecordingNotifier

        dispatcher = build_dispatcher(engine, queue, notifier=RecordingNotifier(fail=True))
        with pytest.raises(RuntimeError, match="mail gateway down"):
            dispatcher.dispatch(NotificationJob(
                user_id=uuid4(),
                company_name="Acme",
                amount=Decimal("1.00"),
                shares_owned=Decimal("1"),
            ))

    def test_payment_jobs_route_to_processor(self, engine, queue):
        processor = RecordingPaymentProcessor()
        dispatcher = build_dispatcher(engine, queue, payment_processor=processor)
        txn = uuid4()

        assert dispatcher.dispatch(DepositJob(transaction_id=txn, user_id=uuid4(), amount=Decimal("50"))) == {"status": "settled"}
        dispatcher.dispatch(WithdrawalJob(transaction_id=txn, user_id=uuid4(), amount=Decimal("20"), destination="iban"))
        dispatcher.dispatch(FeeJob(transaction_id=txn, user_id=uuid4(), amount=Decimal("0.50")))
        dispatcher.dispatch(TradeSettlementJob(
            trade_id=txn,
            buyer_id=uuid4(),
            seller_id=uuid4(),
            company_id=uuid4(),
            shares=Decimal("10"),
            price_per_share=Decimal("12.34"),
        ))

        assert [c[0] for c in processor.calls] == ["deposit", "withdrawal", "fee", "trade"]
        assert processor.calls[0][3] == "bank_transfer"
        assert processor.calls[2][3] == "platform"
        assert len(dispatcher.registered_types()) == 7
