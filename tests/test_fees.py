"""
Tests for the platform fee split and amount parsing.
"""

from decimal import Decimal

import pytest

from orrbit.core.exceptions import ValidationError
from orrbit.services.fees import compute_fee_split
from orrbit.utils.validation import StellarValidator


class TestFeeSplit:

    def test_two_percent_of_ten(self):
        split = compute_fee_split(Decimal("10"), Decimal("2"))
        assert split.fee == Decimal("0.2000000")
        assert split.net == Decimal("9.8000000")

    def test_fee_rounds_half_up_and_net_is_remainder(self):
        split = compute_fee_split(Decimal("0.0000025"), Decimal("2"))
        # 0.00000005 rounds half-up to one stroop
        assert split.fee == Decimal("0.0000001")
        assert split.fee + split.net == split.gross

    @pytest.mark.parametrize("gross", ["1", "3.3333333", "12345.6789012", "0.0000001"])
    def test_fee_plus_net_equals_gross(self, gross):
        split = compute_fee_split(Decimal(gross), Decimal("2.5"))
        assert split.fee + split.net == Decimal(gross)
        assert split.fee >= 0

    def test_zero_fee_percent(self):
        split = compute_fee_split(Decimal("7"), Decimal("0"))
        assert split.fee == 0
        assert split.net == Decimal("7")


class TestAmountParsing:

    def test_parses_string_amounts(self):
        assert StellarValidator.parse_amount("10.5") == Decimal("10.5000000")

    @pytest.mark.parametrize("value", ["0", "-1", "abc", "NaN", "1.00000001"])
    def test_rejects_invalid_amounts(self, value):
        with pytest.raises(ValidationError):
            StellarValidator.parse_amount(value)

    def test_normalizes_hash_case(self):
        assert StellarValidator.normalize_tx_hash("AB" * 32) == "ab" * 32

    def test_rejects_short_hash(self):
        with pytest.raises(ValidationError):
            StellarValidator.normalize_tx_hash("abc")

    def test_account_validation(self):
        assert StellarValidator.is_valid_account("G" + "A" * 55)
        assert not StellarValidator.is_valid_account("G" + "a" * 55)
        assert not StellarValidator.is_valid_account("S" + "A" * 55)
        assert not StellarValidator.is_valid_account(None)
