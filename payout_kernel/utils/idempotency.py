"""
Idempotency key generation utilities.

Keys name one logical unit of work.  They are stored under a unique
constraint (automation runs) or used as lock names, so the same logical
trigger always maps to the same key.
"""

from uuid import UUID


def generate_idempotency_key(producer: str, operation: str, *parts: UUID | str | int) -> str:
    """
    Build an idempotency key.

    Format: producer:operation[:part...]

    Example:
        >>> generate_idempotency_key("automation", "DividendDistribution", "2026-02")
        "automation:DividendDistribution:2026-02"
    """
    segments = [producer, operation, *(str(p) for p in parts)]
    return ":".join(segments)


def parse_idempotency_key(key: str) -> tuple[str, str, tuple[str, ...]]:
    """
    Split a key into (producer, operation, parts).

    Raises:
        ValueError: If key has fewer than two segments.
    """
    segments = key.split(":")
    if len(segments) < 2 or not all(segments[:2]):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return segments[0], segments[1], tuple(segments[2:])
