"""
Decimal money arithmetic for revenue and dividend computation.

All amounts are ``Decimal``.  Floats are rejected at the boundary because a
float that reaches a monetary sum has already lost precision.

Rounding rules:
    - Aggregates (credits, debits, fee, pool, reinvestment) are rounded to
      cents with ROUND_HALF_UP before any further arithmetic.
    - The per-share amount is truncated (ROUND_DOWN) to 9 places, the
      storage scale of Numeric(38, 9).
    - A single payout is truncated to cents.  Truncation on both steps
      means the sum of payouts can never exceed the dividend pool.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
PER_SHARE_QUANTUM = Decimal("0.000000001")
ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Convert to Decimal, refusing floats.

    Raises:
        TypeError: If ``value`` is a float.
        ValueError: If ``value`` is not a valid number.
    """
    if isinstance(value, float):
        raise TypeError(f"Refusing float for monetary value: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid decimal value: {value!r}") from exc


def round_money(value: Decimal | int | str) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def truncate_money(value: Decimal | int | str) -> Decimal:
    """Truncate to cents (never rounds up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_DOWN)


def compute_amount_per_share(pool: Decimal, total_shares: Decimal | int) -> Decimal:
    """Per-share amount for a dividend pool.

    Raises:
        ValueError: If ``total_shares`` is not positive.
    """
    shares = to_decimal(total_shares)
    if shares <= ZERO:
        raise ValueError(f"total_shares must be positive, got {shares}")
    return (to_decimal(pool) / shares).quantize(PER_SHARE_QUANTUM, rounding=ROUND_DOWN)


def compute_payout(shares_owned: Decimal | int, amount_per_share: Decimal) -> Decimal:
    """Payout for one holding: ``shares_owned * amount_per_share`` truncated to cents."""
    return truncate_money(to_decimal(shares_owned) * to_decimal(amount_per_share))
