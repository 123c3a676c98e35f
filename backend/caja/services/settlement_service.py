"""
Order Settlement Service

WHY: Settling is the moment money is taken for an order. The status change,
the payment rows and the shift totals must land together or not at all, and a
client retrying after a network failure must not pay twice.

FLOW (one transaction):
1. Lock the order; PAID replays or fails, CANCELLED fails
2. Find the terminal's OPEN shift
3. Apply the requested discount (manual overrides preset, replaces existing)
4. amount_due = (subtotal - discount) + tax + tip
5. Check the tendered legs against amount_due (within MONEY_TOLERANCE)
6. Write Settlement + Payment rows, mark the order PAID, release the table,
   recompute shift totals, append ledger events, commit
7. Outside the transaction: open the cash drawer when cash was taken

TENDER RULES:
- CASH may be over-tendered; the excess is change
- CARD / TRANSFER must match amount_due (no change possible)
- Split: two or more legs, each > 0, summing to amount_due
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy import Integer, cast, func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyPaidError,
    InsufficientPaymentError,
    NotFoundError,
    OrderStateError,
    OverpaymentError,
    StoreUnavailableError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, Payment, Settlement
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_IN_KITCHEN,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PENDING,
)
from ..models.discounts import DISCOUNT_TYPES
from ..models.payments import METHOD_CASH, METHOD_SPLIT, PAYMENT_METHODS
from ..time_utils import local_today, utcnow
from ..validation import check_amount, coerce_decimal, get_payload, require_choice
from . import discount_service, print_service, settings_service
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .order_service import get_order, refresh_order_totals, release_table_if_free
from .pricing import AmountDue, compute_amount_due, compute_discount_amount, compute_tip
from .shift_service import recompute_shift_totals, require_open_shift

CANCELLABLE_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_IN_KITCHEN)


@dataclass
class PaymentLeg:
    method: str
    amount: int | None = None
    received_amount: int | None = None
    change_amount: int | None = None
    reference: str | None = None


@dataclass
class SettlementRequest:
    legs: list[PaymentLeg]
    is_split: bool = False
    tip_amount: int | None = None
    tip_percent: Decimal | None = None
    discount: dict | None = None
    preset_id: int | None = None
    discount_reason: str | None = None


@dataclass
class PaymentPlan:
    legs: list[PaymentLeg] = field(default_factory=list)
    amount_paid: int = 0
    change_amount: int = 0
    summary_method: str | None = None

    @property
    def takes_cash(self) -> bool:
        return any(leg.method == METHOD_CASH for leg in self.legs) or self.summary_method == METHOD_CASH


# =============================================================================
# REQUEST PARSING
# =============================================================================

def _parse_leg(raw: Any, *, split: bool) -> PaymentLeg:
    if not isinstance(raw, dict):
        raise ValidationError("Each payment must be an object", field="payments")
    method = require_choice(raw.get("method"), "method", PAYMENT_METHODS)

    amount = raw.get("amount")
    if split:
        if amount is None:
            raise ValidationError("Each split payment needs an amount", field="amount")
        amount = check_amount(amount, "amount", minimum=1)
    elif amount is not None:
        amount = check_amount(amount, "amount", minimum=0)

    received = raw.get("received_amount")
    if received is not None:
        if method != METHOD_CASH:
            raise ValidationError("received_amount only applies to CASH payments", field="received_amount")
        received = check_amount(received, "received_amount", minimum=0)
        if split and received < amount:
            raise ValidationError(
                "received_amount cannot be less than the cash amount",
                field="received_amount",
            )

    reference = (raw.get("reference") or "").strip() or None
    if reference and len(reference) > 128:
        raise ValidationError("reference exceeds max length 128", field="reference")

    return PaymentLeg(method=method, amount=amount, received_amount=received, reference=reference)


def parse_settlement_request(data: Any) -> SettlementRequest:
    """
    Simple:  {"method": "CASH", "received_amount": 30000}
             {"method": "CARD", "amount": 25000, "reference": "..."}
    Split:   {"payments": [{"method": "CASH", "amount": 20000}, {"method": "CARD", "amount": 30000}]}
    Extras:  "tip" (amount) or "tip_percent"; "discount": {"discount_type", "value",
             "reason"} or "preset_id" (+ optional "discount_reason").
    """
    payload = get_payload(data)

    if payload.get("payments") is not None:
        raw_legs = payload["payments"]
        if not isinstance(raw_legs, list) or len(raw_legs) < 2:
            raise ValidationError("A split payment needs at least two payments", field="payments")
        legs = [_parse_leg(raw, split=True) for raw in raw_legs]
        is_split = True
    else:
        legs = [_parse_leg(payload, split=False)]
        is_split = False

    tip_amount = None
    if payload.get("tip") is not None:
        tip_amount = check_amount(payload["tip"], "tip", minimum=0)
    tip_percent = None
    if payload.get("tip_percent") is not None:
        tip_percent = coerce_decimal(payload["tip_percent"], "tip_percent")
    if tip_amount is not None and tip_percent is not None:
        raise ValidationError("Give tip or tip_percent, not both", field="tip")

    discount = payload.get("discount")
    if discount is not None and not isinstance(discount, dict):
        raise ValidationError("discount must be an object", field="discount")

    preset_id = payload.get("preset_id")
    if preset_id is not None:
        preset_id = check_amount(preset_id, "preset_id", minimum=1)

    return SettlementRequest(
        legs=legs,
        is_split=is_split,
        tip_amount=tip_amount,
        tip_percent=tip_percent,
        discount=discount,
        preset_id=preset_id,
        discount_reason=payload.get("discount_reason"),
    )


# =============================================================================
# TENDER CHECKS (pure)
# =============================================================================

def plan_payments(request: SettlementRequest, amount_due: int, tolerance: int = 1) -> PaymentPlan:
    """
    Decide the Payment rows for a settlement, or raise.

    Raises:
        InsufficientPaymentError: tendered less than amount_due - tolerance
        OverpaymentError: non-cash (or split) tender above amount_due + tolerance
        ValidationError: CASH payment without a received amount
    """
    if request.is_split:
        total = sum(leg.amount for leg in request.legs)
        if total < amount_due - tolerance:
            raise InsufficientPaymentError(amount_due, total)
        if total > amount_due + tolerance:
            raise OverpaymentError(amount_due, total, "Split payments must add up to the amount due")
        legs = []
        change_total = 0
        for leg in request.legs:
            change = None
            if leg.method == METHOD_CASH and leg.received_amount is not None:
                change = leg.received_amount - leg.amount
                change_total += change
            legs.append(PaymentLeg(
                method=leg.method,
                amount=leg.amount,
                received_amount=leg.received_amount if leg.method == METHOD_CASH else None,
                change_amount=change if leg.method == METHOD_CASH else None,
                reference=leg.reference,
            ))
        return PaymentPlan(legs=legs, amount_paid=total, change_amount=change_total, summary_method=METHOD_SPLIT)

    leg = request.legs[0]
    if leg.method == METHOD_CASH:
        received = leg.received_amount if leg.received_amount is not None else leg.amount
        if received is None:
            raise ValidationError("received_amount is required for CASH payments", field="received_amount")
        if received < amount_due - tolerance:
            raise InsufficientPaymentError(amount_due, received)
        applied = min(received, amount_due)
        change = max(received - amount_due, 0)
        legs = []
        if applied > 0:
            legs.append(PaymentLeg(
                method=METHOD_CASH,
                amount=applied,
                received_amount=received,
                change_amount=change,
                reference=leg.reference,
            ))
        return PaymentPlan(legs=legs, amount_paid=applied, change_amount=change, summary_method=METHOD_CASH)

    amount = leg.amount if leg.amount is not None else amount_due
    if amount < amount_due - tolerance:
        raise InsufficientPaymentError(amount_due, amount)
    if amount > amount_due + tolerance:
        raise OverpaymentError(amount_due, amount, f"{leg.method} payments cannot exceed the amount due")
    legs = [PaymentLeg(method=leg.method, amount=amount, reference=leg.reference)] if amount > 0 else []
    return PaymentPlan(legs=legs, amount_paid=amount, change_amount=0, summary_method=leg.method)


# =============================================================================
# HELPERS
# =============================================================================

def next_invoice_number() -> str:
    """INV-YYYYMMDD-NNNN, sequential per local calendar day."""
    day = local_today(current_app.config.get("LOCAL_TIMEZONE", "America/Bogota"))
    prefix = f"INV-{day:%Y%m%d}-"
    # Compare the suffix as a number: "-9999" sorts after "-10000" as text
    last = (
        db.session.query(func.max(cast(func.substr(Settlement.invoice_number, len(prefix) + 1), Integer)))
        .filter(Settlement.invoice_number.like(f"{prefix}%"))
        .scalar()
    )
    seq = int(last or 0) + 1
    return f"{prefix}{seq:04d}"


def settlement_for_key(idempotency_key: str) -> Settlement | None:
    return db.session.query(Settlement).filter_by(idempotency_key=idempotency_key).first()


def _replay(settlement: Settlement) -> dict:
    return {
        "settlement": settlement.to_dict(),
        "order": settlement.order.to_dict(),
        "replayed": True,
        "change_amount": settlement.change_amount,
        "warnings": [],
    }


def _paid_outcome(order: Order, idempotency_key: str | None) -> dict:
    settlement = order.settlement
    if idempotency_key and settlement is not None and settlement.idempotency_key == idempotency_key:
        return _replay(settlement)
    raise AlreadyPaidError(
        f"Order {order.order_number} is already paid",
        order_id=order.id,
        invoice_number=settlement.invoice_number if settlement else None,
    )


def _resolve_discount(order: Order, request: SettlementRequest, operator_id: str) -> None:
    if request.discount is not None:
        d = request.discount
        discount_service.apply_discount_locked(
            order,
            discount_type=d.get("discount_type") or d.get("type"),
            value=d.get("value"),
            reason=d.get("reason"),
            applied_by=operator_id,
        )
    elif request.preset_id is not None:
        discount_service.apply_discount_locked(
            order,
            discount_type=None,
            reason=request.discount_reason,
            applied_by=operator_id,
            preset_id=request.preset_id,
        )


# =============================================================================
# SETTLE
# =============================================================================

def settle_order(
    order_id: int,
    data: Any,
    *,
    operator_id: str,
    terminal_id: str,
    idempotency_key: str | None = None,
) -> dict:
    """
    Settle an order in one transaction.

    Returns a dict with the settlement, the updated order and shift, the
    change to hand back and any non-blocking print warnings. Replaying a
    settled order with the same idempotency key returns the original
    settlement with replayed=True and writes nothing.
    """
    request = parse_settlement_request(data)
    idempotency_key = (idempotency_key or "").strip() or None
    if idempotency_key and len(idempotency_key) > 128:
        raise ValidationError("Idempotency-Key exceeds max length 128", field="idempotency_key")
    tolerance = current_app.config.get("MONEY_TOLERANCE", 1)

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status == ORDER_STATUS_PAID:
            return _paid_outcome(order, idempotency_key)
        if order.status == ORDER_STATUS_CANCELLED:
            raise OrderStateError("Cannot settle a cancelled order", order_id=order.id, status=order.status)

        if idempotency_key and settlement_for_key(idempotency_key) is not None:
            raise ValidationError(
                "Idempotency-Key was already used for another order",
                field="idempotency_key",
            )

        shift = require_open_shift(terminal_id, lock=True)

        refresh_order_totals(order)
        if not order.items:
            raise ValidationError("Cannot settle an order with no items")
        _resolve_discount(order, request, operator_id)

        tip = compute_tip(order.subtotal, tip_amount=request.tip_amount, tip_percent=request.tip_percent)
        policy = settings_service.get_tax_policy()
        due: AmountDue = compute_amount_due(order.subtotal, order.discount_amount or 0, policy.effective_rate, tip)
        plan = plan_payments(request, due.amount_due, tolerance)

        now = utcnow()
        settlement = Settlement(
            order_id=order.id,
            shift_id=shift.id,
            idempotency_key=idempotency_key,
            invoice_number=next_invoice_number(),
            subtotal=due.subtotal,
            discount_amount=due.discount_amount,
            taxable_base=due.taxable_base,
            tax_rate=due.tax_rate,
            tax=due.tax,
            tip=due.tip,
            amount_due=due.amount_due,
            amount_paid=plan.amount_paid,
            change_amount=plan.change_amount,
            created_by=operator_id,
            created_at=now,
        )
        db.session.add(settlement)
        db.session.flush()

        for leg in plan.legs:
            payment = Payment(
                order_id=order.id,
                shift_id=shift.id,
                settlement_id=settlement.id,
                method=leg.method,
                amount=leg.amount,
                received_amount=leg.received_amount,
                change_amount=leg.change_amount,
                reference=leg.reference,
                created_by=operator_id,
                created_at=now,
            )
            db.session.add(payment)
            db.session.flush()
            append_ledger_event(
                event_type="PAYMENT_RECORDED",
                event_category="payment",
                entity_type="payment",
                entity_id=payment.id,
                actor_id=operator_id,
                terminal_id=terminal_id,
                shift_id=shift.id,
                order_id=order.id,
                occurred_at=now,
                payload={"method": leg.method, "amount": leg.amount, "change": leg.change_amount},
            )

        order.tax = due.tax
        order.tip = due.tip
        order.total = due.amount_due
        order.payment_method = plan.summary_method
        order.status = ORDER_STATUS_PAID
        order.paid_at = now
        if order.shift_id is None:
            order.shift_id = shift.id

        table_released = release_table_if_free(order)
        recompute_shift_totals(shift)

        append_ledger_event(
            event_type="ORDER_SETTLED",
            event_category="order",
            entity_type="settlement",
            entity_id=settlement.id,
            actor_id=operator_id,
            terminal_id=terminal_id,
            shift_id=shift.id,
            order_id=order.id,
            occurred_at=now,
            note=settlement.invoice_number,
            payload=due.to_dict(),
        )
        db.session.commit()

        return {
            "settlement": settlement.to_dict(),
            "order": order.to_dict(),
            "shift": shift.to_dict(),
            "replayed": False,
            "table_released": table_released,
            "change_amount": plan.change_amount,
            "warnings": [],
            "_takes_cash": plan.takes_cash,
        }

    try:
        result = run_with_retry(_op)
    except IntegrityError:
        # Another request settled this order first, or took the same invoice number or key
        db.session.rollback()
        order = get_order(order_id)
        if order.status == ORDER_STATUS_PAID:
            return _paid_outcome(order, idempotency_key)
        if idempotency_key and settlement_for_key(idempotency_key) is not None:
            raise ValidationError(
                "Idempotency-Key was already used for another order",
                field="idempotency_key",
            )
        current_app.logger.warning("Settlement of order %s lost a concurrent write, asking client to retry", order_id)
        raise StoreUnavailableError("Concurrent settlement conflict, retry the operation")

    if result["replayed"]:
        current_app.logger.info("Settlement of order %s replayed for key %s", order_id, idempotency_key)
        return result

    current_app.logger.info(
        "Order %s settled as %s on shift %s: due %s, paid %s, change %s",
        order_id,
        result["settlement"]["invoice_number"],
        result["settlement"]["shift_id"],
        result["settlement"]["amount_due"],
        result["settlement"]["amount_paid"],
        result["change_amount"],
    )

    if result.pop("_takes_cash"):
        drawer = print_service.open_cash_drawer()
        warning = drawer.as_warning()
        if warning:
            result["warnings"].append(f"Cash drawer: {warning}")
    return result


# =============================================================================
# CANCEL / PREVIEW
# =============================================================================

def cancel_order(order_id: int, reason: str | None = None, *, cancelled_by: str | None = None) -> Order:
    """
    PENDING | IN_KITCHEN -> CANCELLED. Releases the table; never touches payments.
    """
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status not in CANCELLABLE_STATUSES:
            raise OrderStateError(
                f"Only PENDING or IN_KITCHEN orders can be cancelled (order is {order.status})",
                order_id=order.id,
                status=order.status,
            )
        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = utcnow()
        order.cancel_reason = (reason or "").strip()[:255] or None
        release_table_if_free(order)
        append_ledger_event(
            event_type="ORDER_CANCELLED",
            event_category="order",
            entity_type="order",
            entity_id=order.id,
            actor_id=cancelled_by,
            shift_id=order.shift_id,
            order_id=order.id,
            occurred_at=order.cancelled_at,
            note=order.cancel_reason,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled by %s", order.id, cancelled_by)
    return order


def preview_amount_due(order_id: int, data: Any = None) -> dict:
    """
    Read-only amount-due computation for the cashier screen. Takes the same
    tip/discount fields as a settlement request; nothing is written.
    """
    payload = get_payload(data)
    order = get_order(order_id)

    if order.status == ORDER_STATUS_PAID and order.settlement is not None:
        s = order.settlement
        return {
            "order_id": order.id,
            "status": order.status,
            "subtotal": s.subtotal,
            "discount_amount": s.discount_amount,
            "taxable_base": s.taxable_base,
            "tax_rate": float(s.tax_rate),
            "tax": s.tax,
            "tip": s.tip,
            "amount_due": s.amount_due,
        }

    discount_amount = order.discount_amount or 0
    discount = payload.get("discount")
    if isinstance(discount, dict):
        dtype = require_choice(discount.get("discount_type") or discount.get("type"), "discount_type", DISCOUNT_TYPES)
        discount_amount = compute_discount_amount(order.subtotal or 0, dtype, coerce_decimal(discount.get("value"), "value"))
    elif payload.get("preset_id") is not None:
        preset = discount_service.get_preset(check_amount(payload["preset_id"], "preset_id", minimum=1))
        discount_amount = compute_discount_amount(order.subtotal or 0, preset.discount_type, preset.value)

    tip_amount = check_amount(payload["tip"], "tip", minimum=0) if payload.get("tip") is not None else None
    tip_percent = coerce_decimal(payload["tip_percent"], "tip_percent") if payload.get("tip_percent") is not None else None
    tip = compute_tip(order.subtotal or 0, tip_amount=tip_amount, tip_percent=tip_percent)

    policy = settings_service.get_tax_policy()
    due = compute_amount_due(order.subtotal or 0, discount_amount, policy.effective_rate, tip)

    suggested_tip = 0
    if settings_service.get_setting("tip_enabled"):
        suggested_tip = compute_tip(order.subtotal or 0, tip_percent=settings_service.get_setting("tip_rate"))

    data = due.to_dict()
    data.update({
        "order_id": order.id,
        "status": order.status,
        "suggested_tip": suggested_tip,
        "tolerance": current_app.config.get("MONEY_TOLERANCE", 1),
    })
    return data
