"""
Amount-due arithmetic

WHY: Discount, tax and tip math must give the same answer on the cashier's
preview screen and in the settlement that is finally written. Everything here
is pure (no DB access) so both paths share one implementation.

ORDER OF OPERATIONS (fixed):
1. taxable_base = subtotal - discount_amount
2. tax = round_half_up(taxable_base * tax_rate / 100)
3. amount_due = taxable_base + tax + tip

All amounts are integers in the smallest currency unit. Percentages are
Decimals so 8.5% is representable; results are rounded half-up once.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..errors import ValidationError
from ..models.discounts import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE
from ..validation import round_money

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class AmountDue:
    subtotal: int
    discount_amount: int
    taxable_base: int
    tax_rate: Decimal
    tax: int
    tip: int
    amount_due: int

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "taxable_base": self.taxable_base,
            "tax_rate": float(self.tax_rate),
            "tax": self.tax,
            "tip": self.tip,
            "amount_due": self.amount_due,
        }


def compute_discount_amount(subtotal: int, discount_type: str, value) -> int:
    """
    PERCENTAGE: value in [0, 100]; above 100 is rejected, not clamped.
    FIXED: value >= 0; a value above the subtotal clamps to the subtotal.
    """
    if subtotal < 0:
        raise ValidationError("subtotal cannot be negative", field="subtotal")
    value = Decimal(str(value))
    if value < 0:
        raise ValidationError("Discount value cannot be negative", field="value")

    if discount_type == DISCOUNT_PERCENTAGE:
        if value > HUNDRED:
            raise ValidationError("Percentage discount cannot exceed 100", field="value")
        return min(round_money(Decimal(subtotal) * value / HUNDRED), subtotal)
    if discount_type == DISCOUNT_FIXED:
        return min(round_money(value), subtotal)
    raise ValidationError(f"Invalid discount_type: {discount_type}", field="discount_type")


def compute_tip(subtotal: int, *, tip_amount: int | None = None, tip_percent=None) -> int:
    """Tip as an explicit amount, or as a percentage of the subtotal."""
    if tip_amount is not None and tip_percent is not None:
        raise ValidationError("Give tip or tip_percent, not both", field="tip")
    if tip_amount is not None:
        if tip_amount < 0:
            raise ValidationError("tip cannot be negative", field="tip")
        return tip_amount
    if tip_percent is not None:
        pct = Decimal(str(tip_percent))
        if pct < 0 or pct > HUNDRED:
            raise ValidationError("tip_percent must be between 0 and 100", field="tip_percent")
        return round_money(Decimal(subtotal) * pct / HUNDRED)
    return 0


def compute_amount_due(subtotal: int, discount_amount: int, tax_rate, tip: int = 0) -> AmountDue:
    if subtotal < 0:
        raise ValidationError("subtotal cannot be negative", field="subtotal")
    if discount_amount < 0 or discount_amount > subtotal:
        raise ValidationError("discount_amount must be between 0 and the subtotal", field="discount_amount")
    if tip < 0:
        raise ValidationError("tip cannot be negative", field="tip")

    rate = max(Decimal(str(tax_rate)), Decimal(0))
    taxable_base = subtotal - discount_amount
    tax = round_money(Decimal(taxable_base) * rate / HUNDRED)
    return AmountDue(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable_base=taxable_base,
        tax_rate=rate,
        tax=tax,
        tip=tip,
        amount_due=taxable_base + tax + tip,
    )
