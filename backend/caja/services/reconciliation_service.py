"""
Cash count reconciliation (arqueo)

WHY: At the end of a shift the cashier counts the drawer bill by bill. The
counted figure is compared against what the shift's payments say should be
there, and the signed difference is shown before the shift is closed.

DESIGN PRINCIPLES:
- reconcile() is pure: same counts and totals, same answer, no DB access
- Only raw per-denomination counts are accepted, never a pre-summed total
- Differences keep their sign (shortage negative, overage positive)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..errors import ValidationError
from ..extensions import db
from ..models import CashCount, CashCountLine, Shift
from ..validation import coerce_int, MAX_AMOUNT

# Colombian peso denominations in circulation (the 1000 note and coin both exist)
DEFAULT_BILLS = (100000, 50000, 20000, 10000, 5000, 2000, 1000)
DEFAULT_COINS = (1000, 500, 200, 100, 50)

STATUS_OVER = "OVER"
STATUS_SHORT = "SHORT"
STATUS_BALANCED = "BALANCED"

KIND_BILL = "BILL"
KIND_COIN = "COIN"


@dataclass(frozen=True)
class ReconciliationResult:
    bills: dict[int, int]
    coins: dict[int, int]
    cash_total: int
    counted_card: int
    counted_transfer: int
    counted_total: int
    expected_cash: int
    expected_total: int
    difference: int
    cash_difference: int
    status: str
    breakdown: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "cash_total": self.cash_total,
            "counted_card": self.counted_card,
            "counted_transfer": self.counted_transfer,
            "counted_total": self.counted_total,
            "expected_cash": self.expected_cash,
            "expected_total": self.expected_total,
            "difference": self.difference,
            "cash_difference": self.cash_difference,
            "status": self.status,
            "breakdown": self.breakdown,
        }


def default_denominations() -> dict:
    return {"bills": list(DEFAULT_BILLS), "coins": list(DEFAULT_COINS)}


def normalize_counts(raw: Any, field_name: str) -> dict[int, int]:
    """
    Accepts {"100000": 2, ...} or [{"denomination": 100000, "quantity": 2}, ...].
    Denominations must be > 0 and quantities >= 0. Repeated denominations add up.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        pairs = []
        for entry in raw:
            if not isinstance(entry, Mapping):
                raise ValidationError(f"{field_name} entries must be objects", field=field_name)
            pairs.append((entry.get("denomination"), entry.get("quantity")))
    else:
        raise ValidationError(f"{field_name} must be an object or a list", field=field_name)

    counts: dict[int, int] = {}
    for denom_raw, qty_raw in pairs:
        denom = coerce_int(denom_raw, f"{field_name}.denomination")
        qty = coerce_int(qty_raw, f"{field_name}.quantity")
        if denom <= 0:
            raise ValidationError(f"{field_name}: denomination must be > 0", field=field_name)
        if qty < 0:
            raise ValidationError(f"{field_name}: quantity cannot be negative", field=field_name)
        counts[denom] = counts.get(denom, 0) + qty
    return counts


def _non_negative(value: int, name: str) -> int:
    value = coerce_int(value, name)
    if value < 0:
        raise ValidationError(f"{name} cannot be negative", field=name)
    if value > MAX_AMOUNT:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT}", field=name)
    return value


def reconcile(
    bills,
    coins,
    counted_card: int = 0,
    counted_transfer: int = 0,
    *,
    opening_amount: int,
    cash_sales: int,
    card_sales: int = 0,
    transfer_sales: int = 0,
    cash_refunds: int = 0,
) -> ReconciliationResult:
    bill_counts = normalize_counts(bills, "bills")
    coin_counts = normalize_counts(coins, "coins")
    counted_card = _non_negative(counted_card, "counted_card")
    counted_transfer = _non_negative(counted_transfer, "counted_transfer")

    breakdown = []
    cash_total = 0
    for kind, counts in ((KIND_BILL, bill_counts), (KIND_COIN, coin_counts)):
        for denom in sorted(counts, reverse=True):
            subtotal = denom * counts[denom]
            cash_total += subtotal
            breakdown.append({
                "kind": kind,
                "denomination": denom,
                "quantity": counts[denom],
                "subtotal": subtotal,
            })

    counted_total = cash_total + counted_card + counted_transfer
    expected_cash = opening_amount + cash_sales - cash_refunds
    expected_total = expected_cash + card_sales + transfer_sales
    difference = counted_total - expected_total

    if difference > 0:
        status = STATUS_OVER
    elif difference < 0:
        status = STATUS_SHORT
    else:
        status = STATUS_BALANCED

    return ReconciliationResult(
        bills=bill_counts,
        coins=coin_counts,
        cash_total=cash_total,
        counted_card=counted_card,
        counted_transfer=counted_transfer,
        counted_total=counted_total,
        expected_cash=expected_cash,
        expected_total=expected_total,
        difference=difference,
        cash_difference=cash_total - expected_cash,
        status=status,
        breakdown=breakdown,
    )


def reconcile_shift(shift: Shift, counts: Mapping, totals: Mapping | None = None) -> ReconciliationResult:
    """
    Run reconcile() against a shift's running totals, or against freshly
    computed totals when given (preview without touching the shift row).
    """
    if not isinstance(counts, Mapping):
        raise ValidationError("counts must be an object", field="counts")
    source = totals if totals is not None else {
        "cash_sales": shift.cash_sales or 0,
        "card_sales": shift.card_sales or 0,
        "transfer_sales": shift.transfer_sales or 0,
        "cash_refunds": shift.cash_refunds or 0,
    }
    return reconcile(
        counts.get("bills"),
        counts.get("coins"),
        counts.get("counted_card", 0) or 0,
        counts.get("counted_transfer", 0) or 0,
        opening_amount=shift.opening_amount or 0,
        cash_sales=source["cash_sales"],
        card_sales=source["card_sales"],
        transfer_sales=source["transfer_sales"],
        cash_refunds=source["cash_refunds"],
    )


def record_cash_count(shift: Shift, result: ReconciliationResult, *, counted_by: str) -> CashCount:
    """Persist the count lines next to the computed totals. Does not commit."""
    count = CashCount(
        shift_id=shift.id,
        cash_total=result.cash_total,
        counted_card=result.counted_card,
        counted_transfer=result.counted_transfer,
        counted_total=result.counted_total,
        expected_total=result.expected_total,
        difference=result.difference,
        counted_by=counted_by,
    )
    for line in result.breakdown:
        count.lines.append(CashCountLine(
            kind=line["kind"],
            denomination=line["denomination"],
            quantity=line["quantity"],
        ))
    db.session.add(count)
    db.session.flush()
    return count
