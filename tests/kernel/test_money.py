"""
Tests for payout_kernel.domain.money.

Rounding rules: aggregates half-up to cents, per-share amount truncated to
9 places, payouts truncated to cents.  The property test checks that the
sum of payouts never exceeds the pool for arbitrary holdings.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from payout_kernel.domain.money import (
    compute_amount_per_share,
    compute_payout,
    round_money,
    to_decimal,
    truncate_money,
)


class TestRounding:
    def test_round_money_is_half_up(self):
        assert round_money(Decimal("1.005")) == Decimal("1.01")
        assert round_money(Decimal("1.004")) == Decimal("1.00")
        assert round_money(Decimal("-1.005")) == Decimal("-1.01")

    def test_truncate_money_never_rounds_up(self):
        assert truncate_money(Decimal("1.019")) == Decimal("1.01")
        assert truncate_money(Decimal("0.009")) == Decimal("0.00")

    def test_to_decimal_refuses_float(self):
        with pytest.raises(TypeError):
            to_decimal(0.1)

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_decimal("ten dollars")

    def test_to_decimal_accepts_int_and_str(self):
        assert to_decimal(5) == Decimal("5")
        assert to_decimal("17100.00") == Decimal("17100.00")


class TestPerShare:
    def test_even_split(self):
        assert compute_amount_per_share(Decimal("10000"), Decimal("1000")) == Decimal("10")

    def test_truncates_to_nine_places(self):
        aps = compute_amount_per_share(Decimal("100"), Decimal("3"))
        assert aps == Decimal("33.333333333")

    def test_zero_shares_rejected(self):
        with pytest.raises(ValueError, match="total_shares must be positive"):
            compute_amount_per_share(Decimal("100"), Decimal("0"))

    def test_payout_truncates_to_cents(self):
        # 3 * 33.333333333 = 99.999999999 -> 99.99
        assert compute_payout(Decimal("3"), Decimal("33.333333333")) == Decimal("99.99")

    def test_payout_for_fractional_shares(self):
        assert compute_payout(Decimal("2.5"), Decimal("10")) == Decimal("25.00")


# =============================================================================
# Conservation property
# =============================================================================


pools = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("1000000"), places=2)
share_lists = st.lists(st.integers(min_value=1, max_value=100000), min_size=1, max_size=40)


class TestConservation:
    @settings(max_examples=200, deadline=None)
    @given(pool=pools, holdings=share_lists, extra_shares=st.integers(min_value=0, max_value=10000))
    def test_sum_of_payouts_never_exceeds_pool(self, pool, holdings, extra_shares):
        total_shares = Decimal(sum(holdings) + extra_shares)
        aps = compute_amount_per_share(pool, total_shares)
        paid = sum((compute_payout(Decimal(h), aps) for h in holdings), Decimal("0"))
        assert paid <= pool

    @settings(max_examples=100, deadline=None)
    @given(pool=pools, holdings=share_lists)
    def test_rounding_loss_is_bounded_by_a_cent_per_holder(self, pool, holdings):
        total_shares = Decimal(sum(holdings))
        aps = compute_amount_per_share(pool, total_shares)
        paid = sum((compute_payout(Decimal(h), aps) for h in holdings), Decimal("0"))
        # Truncating aps loses < 1e-9 per share; each payout loses < 1 cent.
        max_loss = Decimal("0.01") * len(holdings) + total_shares * Decimal("0.000000001")
        assert pool - paid <= max_loss
