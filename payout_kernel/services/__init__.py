"""Kernel services: retry strategy, distributed lock, wallet credit."""

from payout_kernel.services.lock_service import LockService, with_lock
from payout_kernel.services.retry_service import RetryPolicy, RetryResult, RetryService
from payout_kernel.services.wallet_service import SqlWalletCredit

__all__ = [
    "LockService",
    "RetryPolicy",
    "RetryResult",
    "RetryService",
    "SqlWalletCredit",
    "with_lock",
]
