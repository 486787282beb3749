"""
Collaborator doubles and shared constants for the payout test suite.

The doubles satisfy the Protocols in payout_automation.collaborators and
record every call so tests can assert on them.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from payout_automation.collaborators import FetchedTransaction
from payout_kernel.domain.period import ReportingPeriod
from payout_kernel.models.revenue import TransactionType
from payout_kernel.services.wallet_service import SqlWalletCredit

RUN_TIME = datetime(2026, 3, 1, 0, 0, 0, tzinfo=UTC)
TARGET_PERIOD = ReportingPeriod(year=2026, month=2)


def bank_txn(
    kind: TransactionType | str,
    amount: Decimal | str,
    reference: str,
    day: int = 10,
) -> FetchedTransaction:
    return FetchedTransaction(
        date=datetime(2026, 2, day, 12, 0, tzinfo=UTC),
        type=TransactionType(kind),
        amount=Decimal(amount),
        reference=reference,
        balance_after=None,
        description=f"{kind} {reference}",
    )


class FakeBankFetcher:
    """Bank fetch double keyed by account identifier.

    ``failures[account]`` is a list of exceptions raised (in order) before
    the transactions are returned.
    """

    def __init__(self):
        self.transactions: dict[str, list[FetchedTransaction]] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.calls: list[tuple[str, datetime, datetime]] = []

    def fetch_transactions(self, account_identifier, start_date, end_date):
        self.calls.append((account_identifier, start_date, end_date))
        pending = self.failures.get(account_identifier)
        if pending:
            raise pending.pop(0)
        return list(self.transactions.get(account_identifier, []))


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[UUID, str, Decimal, Decimal]] = []

    def send_dividend_notification(self, user_id, company_name, amount, shares_owned):
        if self.fail:
            raise RuntimeError("mail gateway down")
        self.sent.append((user_id, company_name, amount, shares_owned))


class FixedVolumeSource:
    def __init__(self, volumes: dict[UUID, Decimal] | None = None):
        self.volumes = volumes or {}
        self.calls: list[tuple[UUID, datetime, datetime]] = []

    def volume_for(self, company_id, start, end):
        self.calls.append((company_id, start, end))
        return self.volumes.get(company_id, Decimal("0"))


class RecordingBroadcaster:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.updates: list[tuple[Any, ...]] = []

    def broadcast_price_update(self, company_id, price, previous_price, change_percent):
        if self.fail:
            raise RuntimeError("socket closed")
        self.updates.append((company_id, price, previous_price, change_percent))


class FailingWallet:
    """Wallet credit that fails on the Nth call (1-based).

    Every other call credits through SqlWalletCredit, so a failed
    transaction has real wallet writes to roll back.
    """

    def __init__(self, fail_on_call: int):
        self.fail_on_call = fail_on_call
        self.calls = 0
        self._wallet = SqlWalletCredit()

    def credit(self, session, user_id, amount, credited_at=None):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise RuntimeError("wallet ledger unavailable")
        return self._wallet.credit(session, user_id, amount, credited_at)
