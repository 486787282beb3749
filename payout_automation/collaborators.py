"""
External collaborator contracts consumed by the automation engines.

Each collaborator is a ``typing.Protocol``; production adapters (bank API
client, e-mail gateway, market data, websocket broadcaster, payment rails)
live outside this package and are injected.  Only the wallet credit has an
in-tree default (``payout_kernel.services.SqlWalletCredit``).

Contracts:
    - ``BankTransactionFetcher.fetch_transactions`` raises
      ``BankConnectionError`` (transient, retried) or ``BankAuthError``
      (fatal, never retried).
    - ``WalletCredit.credit`` must be called inside the caller's open
      transaction and never commits.
    - ``NotificationSender`` and ``PriceBroadcaster`` are best-effort; the
      engines log and swallow their failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from payout_kernel.logging_config import get_logger
from payout_kernel.models.revenue import TransactionType

logger = get_logger("automation.collaborators")


@dataclass(frozen=True)
class FetchedTransaction:
    """One bank ledger line as returned by the bank API."""

    date: datetime
    type: TransactionType
    amount: Decimal
    reference: str
    balance_after: Decimal | None = None
    description: str | None = None


@runtime_checkable
class BankTransactionFetcher(Protocol):
    def fetch_transactions(
        self,
        account_identifier: str,
        start_date: datetime,
        end_date: datetime,
    ) -> list[FetchedTransaction]:
        ...


@runtime_checkable
class WalletCredit(Protocol):
    def credit(
        self,
        session: Session,
        user_id: UUID,
        amount: Decimal,
        credited_at: datetime | None = None,
    ) -> None:
        ...


@runtime_checkable
class NotificationSender(Protocol):
    def send_dividend_notification(
        self,
        user_id: UUID,
        company_name: str,
        amount: Decimal,
        shares_owned: Decimal,
    ) -> None:
        ...


@runtime_checkable
class TradingVolumeSource(Protocol):
    def volume_for(self, company_id: UUID, start: datetime, end: datetime) -> Decimal:
        """Shares traded for ``company_id`` between ``start`` and ``end``."""
        ...


@runtime_checkable
class PriceBroadcaster(Protocol):
    def broadcast_price_update(
        self,
        company_id: UUID,
        price: Decimal,
        previous_price: Decimal,
        change_percent: Decimal,
    ) -> None:
        ...


@runtime_checkable
class PaymentProcessor(Protocol):
    """Payment rail operations behind the payment job types."""

    def process_deposit(self, transaction_id: UUID, user_id: UUID, amount: Decimal, payment_method: str) -> dict:
        ...

    def process_withdrawal(self, transaction_id: UUID, user_id: UUID, amount: Decimal, destination: str) -> dict:
        ...

    def process_fee(self, transaction_id: UUID, user_id: UUID, amount: Decimal, fee_type: str) -> dict:
        ...

    def settle_trade(
        self,
        trade_id: UUID,
        buyer_id: UUID,
        seller_id: UUID,
        company_id: UUID,
        shares: Decimal,
        price_per_share: Decimal,
    ) -> dict:
        ...


class NullNotificationSender:
    """Logs instead of sending."""

    def send_dividend_notification(
        self,
        user_id: UUID,
        company_name: str,
        amount: Decimal,
        shares_owned: Decimal,
    ) -> None:
        logger.debug(
            "dividend_notification_skipped",
            extra={"user_id": str(user_id), "company_name": company_name, "amount": str(amount)},
        )


class NullPriceBroadcaster:
    def broadcast_price_update(
        self,
        company_id: UUID,
        price: Decimal,
        previous_price: Decimal,
        change_percent: Decimal,
    ) -> None:
        return None


class ZeroVolumeSource:
    """Volume source for deployments without market data."""

    def volume_for(self, company_id: UUID, start: datetime, end: datetime) -> Decimal:
        return Decimal("0")
