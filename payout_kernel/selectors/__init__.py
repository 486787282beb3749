"""Read-only query selectors."""

from payout_kernel.selectors.base import BaseSelector
from payout_kernel.selectors.idempotency_selector import IdempotencySelector

__all__ = ["BaseSelector", "IdempotencySelector"]
