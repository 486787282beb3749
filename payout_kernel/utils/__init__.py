"""Kernel utilities."""

from payout_kernel.utils.batching import chunked, process_in_batches
from payout_kernel.utils.datetimes import as_utc
from payout_kernel.utils.idempotency import generate_idempotency_key, parse_idempotency_key

__all__ = [
    "as_utc",
    "chunked",
    "generate_idempotency_key",
    "parse_idempotency_key",
    "process_in_batches",
]
