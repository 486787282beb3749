"""Tests for payout_queue.services.dispatcher.JobDispatcher."""

from decimal import Decimal
from uuid import uuid4

import pytest

from payout_kernel.exceptions import HandlerNotRegisteredError
from payout_queue.domain.types import (
    DistributionJob,
    FeeJob,
    JobType,
    NotificationJob,
    WithdrawalJob,
)
from payout_queue.services.dispatcher import JobDispatcher


class TestJobDispatcher:
    def test_routes_each_variant_to_its_handler(self):
        seen = []
        dispatcher = JobDispatcher(
            distribution=lambda job: seen.append(("distribution", job)) or {"ok": True},
            notification=lambda job: seen.append(("notification", job)),
        )
        distribution = DistributionJob(revenue_report_id=uuid4())
        notification = NotificationJob(
            user_id=uuid4(),
            company_name="Acme",
            amount=Decimal("5.00"),
            shares_owned=Decimal("10"),
        )

        assert dispatcher.dispatch(distribution) == {"ok": True}
        assert dispatcher.dispatch(notification) is None
        assert seen == [("distribution", distribution), ("notification", notification)]

    def test_registered_types(self):
        dispatcher = JobDispatcher(fee=lambda job: None, withdrawal=lambda job: None)
        assert dispatcher.registered_types() == [JobType.WITHDRAWAL, JobType.FEE]

    def test_missing_handler_raises(self):
        dispatcher = JobDispatcher(fee=lambda job: None)
        job = WithdrawalJob(transaction_id=uuid4(), user_id=uuid4(), amount=Decimal("1.00"))
        with pytest.raises(HandlerNotRegisteredError) as excinfo:
            dispatcher.dispatch(job)
        assert excinfo.value.code == "HANDLER_NOT_REGISTERED"

    def test_handler_errors_propagate(self):
        def explode(job: FeeJob):
            raise RuntimeError("fee ledger down")

        dispatcher = JobDispatcher(fee=explode)
        job = FeeJob(transaction_id=uuid4(), user_id=uuid4(), amount=Decimal("0.50"))
        with pytest.raises(RuntimeError, match="fee ledger down"):
            dispatcher.dispatch(job)
