"""
Tests for escrow_kernel.domain.commission.

The commission split is computed once at completion and never again, so
these tests pin down its rounding and its identity
``commission + provider_amount == total``.
"""

from decimal import Decimal

import pytest

from escrow_kernel.domain.commission import (
    compute_commission,
    projected_provider_amount,
    split_earnings,
    validate_commission_rate,
)
from escrow_kernel.domain.values import Money
from escrow_kernel.exceptions import InvalidAmountError


def ghs(amount: str) -> Money:
    return Money.of(amount, "GHS")


class TestSplitEarnings:

    def test_default_five_percent(self):
        split = split_earnings(ghs("100"), Decimal("0.05"))
        assert split.commission_amount == ghs("5.00")
        assert split.provider_amount == ghs("95.00")
        assert split.total_amount == ghs("100.00")

    def test_commission_rounds_half_up(self):
        # 10.10 * 0.05 = 0.505
        split = split_earnings(ghs("10.10"), Decimal("0.05"))
        assert split.commission_amount == ghs("0.51")
        assert split.provider_amount == ghs("9.59")

    def test_zero_rate_pays_everything_to_provider(self):
        split = split_earnings(ghs("60.00"), Decimal("0"))
        assert split.commission_amount == ghs("0.00")
        assert split.provider_amount == ghs("60.00")

    def test_zero_total(self):
        split = split_earnings(ghs("0"), Decimal("0.05"))
        assert split.commission_amount.is_zero
        assert split.provider_amount.is_zero

    def test_rate_from_string(self):
        split = split_earnings(ghs("200"), "0.10")  # type: ignore[arg-type]
        assert split.commission_rate == Decimal("0.10")
        assert split.provider_amount == ghs("180.00")

    def test_negative_total_rejected(self):
        with pytest.raises(InvalidAmountError, match="negative"):
            compute_commission(ghs("-1"), Decimal("0.05"))


class TestValidateCommissionRate:

    @pytest.mark.parametrize("rate", ["0", "0.05", "0.5", "0.9999"])
    def test_valid(self, rate):
        assert validate_commission_rate(rate) == Decimal(rate)

    @pytest.mark.parametrize("rate", ["1", "1.5", "-0.01"])
    def test_out_of_range(self, rate):
        with pytest.raises(InvalidAmountError, match=r"\[0, 1\)"):
            validate_commission_rate(rate)

    def test_float_rejected(self):
        with pytest.raises(InvalidAmountError, match="float"):
            validate_commission_rate(0.05)  # type: ignore[arg-type]

    def test_not_a_number(self):
        with pytest.raises(InvalidAmountError, match="not a number"):
            validate_commission_rate("five percent")


class TestProjectedProviderAmount:

    def test_locked_amount_wins(self):
        assert projected_provider_amount(
            ghs("100"), ghs("90.00"), ghs("10.00"), Decimal("0.05"),
        ) == ghs("90.00")

    def test_locked_commission_only(self):
        assert projected_provider_amount(
            ghs("100"), None, ghs("7.00"), Decimal("0.05"),
        ) == ghs("93.00")

    def test_projected_from_rate(self):
        assert projected_provider_amount(
            ghs("50"), None, None, Decimal("0.05"),
        ) == ghs("47.50")
