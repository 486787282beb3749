"""
SqlWalletCredit -- additive wallet balance increment.

Contract:
    ``credit(session, user_id, amount)`` adds ``amount`` to the user's
    wallet in the caller's transaction.  It flushes but never commits; the
    caller's transaction scope decides the outcome together with the payout
    record and the holding increment.

    The increment is a single ``UPDATE ... SET balance = balance + :amount``
    so concurrent credits to the same wallet never lose an update.  A user
    without a wallet row gets one.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from payout_kernel.domain.money import ZERO, to_decimal
from payout_kernel.logging_config import get_logger
from payout_kernel.models.company import UserWallet

logger = get_logger("services.wallet")


class SqlWalletCredit:
    """Wallet credit backed by the ``user_wallets`` table."""

    def credit(
        self,
        session: Session,
        user_id: UUID,
        amount: Decimal,
        credited_at: datetime | None = None,
    ) -> None:
        """Increment the wallet balance.

        Raises:
            ValueError: If ``amount`` is not positive.
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise ValueError(f"Wallet credit must be positive, got {amount}")

        result = session.execute(
            update(UserWallet)
            .where(UserWallet.user_id == user_id)
            .values(
                balance=UserWallet.balance + amount,
                last_credited_at=credited_at,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            session.add(UserWallet(
                user_id=user_id,
                balance=amount,
                last_credited_at=credited_at,
            ))

        session.flush()
        logger.debug(
            "wallet_credited",
            extra={"user_id": str(user_id), "amount": str(amount)},
        )
