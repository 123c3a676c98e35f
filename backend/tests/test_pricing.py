"""
Amount-due arithmetic tests.

Verifies:
- discount -> tax -> tip order of operations
- FIXED discounts clamp to the subtotal, PERCENTAGE > 100 is rejected
- half-up rounding to whole currency units
"""

from decimal import Decimal

import pytest

from caja.errors import ValidationError
from caja.services.pricing import compute_amount_due, compute_discount_amount, compute_tip


class TestAmountDue:
    def test_discount_then_tax_then_tip(self):
        due = compute_amount_due(50000, 5000, 8, tip=4500)
        assert due.taxable_base == 45000
        assert due.tax == 3600
        assert due.tip == 4500
        assert due.amount_due == 45000 + 3600 + 4500

    def test_tax_rounds_half_up(self):
        # 8% of 12345 = 987.6 -> 988
        assert compute_amount_due(12345, 0, 8).tax == 988
        # 8.5% of 100 = 8.5 -> 9
        assert compute_amount_due(100, 0, Decimal("8.5")).tax == 9

    def test_zero_rate_means_no_tax(self):
        due = compute_amount_due(25000, 0, 0)
        assert due.tax == 0
        assert due.amount_due == 25000

    def test_negative_rate_is_treated_as_zero(self):
        assert compute_amount_due(10000, 0, -5).tax == 0

    def test_same_inputs_same_result(self):
        assert compute_amount_due(33333, 333, 8, 1000) == compute_amount_due(33333, 333, 8, 1000)

    def test_discount_above_subtotal_is_rejected(self):
        with pytest.raises(ValidationError):
            compute_amount_due(1000, 1001, 8)

    def test_negative_tip_is_rejected(self):
        with pytest.raises(ValidationError):
            compute_amount_due(1000, 0, 8, tip=-1)

    def test_to_dict_is_json_friendly(self):
        data = compute_amount_due(10000, 0, Decimal("8")).to_dict()
        assert data["tax_rate"] == 8.0
        assert data["amount_due"] == 10800


class TestDiscountAmount:
    def test_fixed_discount_clamps_to_subtotal(self):
        assert compute_discount_amount(30000, "FIXED", 9000000) == 30000

    def test_clamped_fixed_discount_leaves_nothing_to_tax(self):
        discount = compute_discount_amount(30000, "FIXED", 9000000)
        due = compute_amount_due(30000, discount, 8)
        assert due.taxable_base == 0
        assert due.tax == 0
        assert due.amount_due == 0

    def test_percentage_discount(self):
        assert compute_discount_amount(45000, "PERCENTAGE", 10) == 4500

    def test_percentage_of_100_is_the_whole_subtotal(self):
        assert compute_discount_amount(45000, "PERCENTAGE", 100) == 45000

    def test_percentage_above_100_is_rejected_not_clamped(self):
        with pytest.raises(ValidationError) as exc:
            compute_discount_amount(45000, "PERCENTAGE", 101)
        assert exc.value.field == "value"

    def test_negative_value_is_rejected(self):
        with pytest.raises(ValidationError):
            compute_discount_amount(45000, "FIXED", -1)

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError):
            compute_discount_amount(45000, "BOGO", 1)


class TestTip:
    def test_explicit_amount(self):
        assert compute_tip(40000, tip_amount=3000) == 3000

    def test_percentage_of_subtotal(self):
        assert compute_tip(40000, tip_percent=10) == 4000

    def test_no_tip(self):
        assert compute_tip(40000) == 0

    def test_both_forms_are_rejected(self):
        with pytest.raises(ValidationError):
            compute_tip(40000, tip_amount=1000, tip_percent=10)

    def test_percentage_out_of_range(self):
        with pytest.raises(ValidationError):
            compute_tip(40000, tip_percent=150)
