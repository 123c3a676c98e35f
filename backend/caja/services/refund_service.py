"""
Refund Service

WHY: Money handed back to a customer must be accounted to the shift whose
drawer it came out of, and must never exceed what the customer paid.

DESIGN PRINCIPLES:
- Refunds are only issued while the terminal has an OPEN shift
- amount <= order total minus every refund not REJECTED
- PENDING -> APPROVED | REJECTED, each decision exactly once
- Approval recomputes the issuing shift's totals (cash refunds lower the
  cash expected in the drawer)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import (
    NotFoundError,
    OrderStateError,
    RefundStateError,
    ShiftAlreadyClosedError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, Refund, Shift
from ..models.orders import ORDER_STATUS_PAID
from ..models.payments import PAYMENT_METHODS
from ..models.refunds import (
    REFUND_REASON_CODES,
    REFUND_STATUS_APPROVED,
    REFUND_STATUS_PENDING,
    REFUND_STATUS_REJECTED,
)
from ..time_utils import utcnow
from ..validation import check_amount, require_choice
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .shift_service import recompute_shift_totals, require_open_shift


def get_refund(refund_id: int) -> Refund:
    refund = db.session.query(Refund).filter_by(id=refund_id).first()
    if not refund:
        raise NotFoundError("Refund not found")
    return refund


def list_refunds(*, status: str | None = None, shift_id: int | None = None, order_id: int | None = None) -> list[Refund]:
    query = db.session.query(Refund)
    if status:
        query = query.filter(Refund.status == status.upper())
    if shift_id is not None:
        query = query.filter(Refund.shift_id == shift_id)
    if order_id is not None:
        query = query.filter(Refund.order_id == order_id)
    return query.order_by(Refund.created_at.desc(), Refund.id.desc()).all()


def refundable_amount(order: Order) -> int:
    """Order total minus every refund that was not rejected."""
    already = (
        db.session.query(func.coalesce(func.sum(Refund.amount), 0))
        .filter(Refund.order_id == order.id, Refund.status != REFUND_STATUS_REJECTED)
        .scalar()
    ) or 0
    return max((order.total or 0) - int(already), 0)


def _approve_locked(refund: Refund, shift: Shift, decided_by: str, note: str | None = None) -> None:
    if not shift.is_open:
        raise ShiftAlreadyClosedError(
            f"Shift {shift.id} is closed; its refunds can no longer be approved",
            shift_id=shift.id,
        )
    refund.status = REFUND_STATUS_APPROVED
    refund.decided_by = decided_by
    refund.decided_at = utcnow()
    refund.decision_note = note
    recompute_shift_totals(shift)
    append_ledger_event(
        event_type="REFUND_APPROVED",
        event_category="refund",
        entity_type="refund",
        entity_id=refund.id,
        actor_id=decided_by,
        shift_id=shift.id,
        order_id=refund.order_id,
        note=note,
        payload={"amount": refund.amount, "method": refund.method},
    )


def create_refund(
    order_id: int,
    amount,
    *,
    method: str,
    reason_code: str,
    created_by: str,
    terminal_id: str,
    notes: str | None = None,
    approve: bool = False,
) -> Refund:
    """
    Record a refund against a PAID order on the terminal's open shift.

    Raises:
        NoOpenShiftError: terminal has no OPEN shift
        OrderStateError: order is not PAID
        ValidationError: amount outside (0, refundable], unknown method or reason
    """
    amount = check_amount(amount, "amount", minimum=1)
    method = require_choice(method, "method", PAYMENT_METHODS)
    reason_code = require_choice(reason_code, "reason_code", REFUND_REASON_CODES)
    notes = (notes or "").strip() or None
    if reason_code == "OTHER" and not notes:
        raise ValidationError("notes are required when reason_code is OTHER", field="notes")

    def _op():
        shift = require_open_shift(terminal_id, lock=True)
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status != ORDER_STATUS_PAID:
            raise OrderStateError(
                f"Only PAID orders can be refunded (order is {order.status})",
                order_id=order.id,
                status=order.status,
            )

        available = refundable_amount(order)
        if amount > available:
            raise ValidationError(
                f"Refund amount {amount} exceeds the refundable amount {available}",
                field="amount",
                refundable=available,
            )

        refund = Refund(
            order_id=order.id,
            shift_id=shift.id,
            amount=amount,
            method=method,
            reason_code=reason_code,
            notes=notes,
            status=REFUND_STATUS_PENDING,
            created_by=created_by,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()

        append_ledger_event(
            event_type="REFUND_CREATED",
            event_category="refund",
            entity_type="refund",
            entity_id=refund.id,
            actor_id=created_by,
            terminal_id=terminal_id,
            shift_id=shift.id,
            order_id=order.id,
            note=reason_code,
            payload={"amount": amount, "method": method},
        )
        if approve:
            _approve_locked(refund, shift, created_by)

        db.session.commit()
        return refund

    refund = run_with_retry(_op)
    current_app.logger.info(
        "Refund %s of %s (%s) on order %s by %s: %s",
        refund.id, refund.amount, refund.method, refund.order_id, created_by, refund.status,
    )
    return refund


def approve_refund(refund_id: int, *, decided_by: str, note: str | None = None) -> Refund:
    def _op():
        refund = lock_for_update(db.session.query(Refund).filter_by(id=refund_id)).first()
        if not refund:
            raise NotFoundError("Refund not found")
        if refund.status != REFUND_STATUS_PENDING:
            raise RefundStateError(f"Refund is already {refund.status}", refund_id=refund.id, status=refund.status)
        shift = lock_for_update(db.session.query(Shift).filter_by(id=refund.shift_id)).first()
        _approve_locked(refund, shift, decided_by, note)
        db.session.commit()
        return refund

    return run_with_retry(_op)


def reject_refund(refund_id: int, *, decided_by: str, note: str | None = None) -> Refund:
    def _op():
        refund = lock_for_update(db.session.query(Refund).filter_by(id=refund_id)).first()
        if not refund:
            raise NotFoundError("Refund not found")
        if refund.status != REFUND_STATUS_PENDING:
            raise RefundStateError(f"Refund is already {refund.status}", refund_id=refund.id, status=refund.status)
        refund.status = REFUND_STATUS_REJECTED
        refund.decided_by = decided_by
        refund.decided_at = utcnow()
        refund.decision_note = (note or "").strip() or None
        append_ledger_event(
            event_type="REFUND_REJECTED",
            event_category="refund",
            entity_type="refund",
            entity_id=refund.id,
            actor_id=decided_by,
            shift_id=refund.shift_id,
            order_id=refund.order_id,
            note=refund.decision_note,
        )
        db.session.commit()
        return refund

    return run_with_retry(_op)
