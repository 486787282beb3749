"""
Batch processor -- sequential fixed-size chunking.

Contract:
    ``process_in_batches(items, batch_size, processor)`` splits an ordered
    sequence into consecutive chunks of ``batch_size`` (the last chunk may
    be shorter), calls ``processor(chunk)`` on each chunk in order, and
    returns the concatenation of the per-chunk results.  Chunks are never
    processed concurrently; ordering and peak memory are bounded by the
    chunk size.
"""

from __future__ import annotations

from typing import Callable, Iterable, Iterator, Sequence, TypeVar

from payout_kernel.logging_config import get_logger

logger = get_logger("utils.batching")

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], batch_size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of ``items``.

    Raises:
        ValueError: If ``batch_size`` is not positive.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    for start in range(0, len(items), batch_size):
        yield items[start:start + batch_size]


def process_in_batches(
    items: Sequence[T],
    batch_size: int,
    processor: Callable[[Sequence[T]], Iterable[R]],
) -> list[R]:
    """Apply ``processor`` to each chunk sequentially and concatenate results."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    total = len(items)
    batch_count = (total + batch_size - 1) // batch_size
    results: list[R] = []

    for batch_number, chunk in enumerate(chunked(items, batch_size), start=1):
        logger.debug(
            "batch_processing",
            extra={
                "batch_number": batch_number,
                "batch_count": batch_count,
                "batch_size": len(chunk),
                "total_items": total,
            },
        )
        results.extend(processor(chunk))

    return results
