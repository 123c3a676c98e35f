"""
Cashier Shift Service

WHY: A shift is one cashier's period of custody over a cash drawer. It
collects every payment taken at the terminal and ends with a counted drawer
compared against what the payments say should be there.

DESIGN PRINCIPLES:
- One OPEN shift per terminal, enforced by a partial unique index
- Running totals are recomputed from payments and refunds, never incremented
- A shift cannot close while any of its orders is still unpaid
- Shifts are immutable once closed
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    NoOpenShiftError,
    NotFoundError,
    PendingOrdersError,
    ShiftAlreadyClosedError,
    ShiftAlreadyOpenError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, Payment, Refund, Shift
from ..models.orders import ACTIVE_ORDER_STATUSES
from ..models.payments import METHOD_CARD, METHOD_CASH, METHOD_TRANSFER
from ..models.refunds import REFUND_STATUS_APPROVED
from ..models.shifts import SHIFT_STATUS_CLOSED, SHIFT_STATUS_OPEN
from ..time_utils import to_utc_z, utcnow
from ..validation import check_amount
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .reconciliation_service import reconcile_shift, record_cash_count


# =============================================================================
# LOOKUPS
# =============================================================================

def get_shift(shift_id: int) -> Shift:
    shift = db.session.query(Shift).filter_by(id=shift_id).first()
    if not shift:
        raise NotFoundError("Shift not found")
    return shift


def get_open_shift(terminal_id: str) -> Shift | None:
    """Get the currently open shift for a terminal, if any."""
    return db.session.query(Shift).filter_by(
        terminal_id=terminal_id,
        status=SHIFT_STATUS_OPEN,
    ).first()


def require_open_shift(terminal_id: str, *, lock: bool = False) -> Shift:
    query = db.session.query(Shift).filter_by(terminal_id=terminal_id, status=SHIFT_STATUS_OPEN)
    if lock:
        query = lock_for_update(query)
    shift = query.first()
    if not shift:
        raise NoOpenShiftError(f"No open shift on terminal {terminal_id}", terminal_id=terminal_id)
    return shift


def list_shifts(*, terminal_id: str | None = None, status: str | None = None, limit: int = 50) -> list[Shift]:
    query = db.session.query(Shift)
    if terminal_id:
        query = query.filter(Shift.terminal_id == terminal_id)
    if status:
        query = query.filter(Shift.status == status)
    return query.order_by(Shift.opened_at.desc(), Shift.id.desc()).limit(limit).all()


# =============================================================================
# ATTRIBUTION
# =============================================================================

def attributable_orders(shift: Shift):
    """
    Orders that belong to a shift: explicitly tagged with it, or untagged and
    created at/after the shift opened.
    """
    return db.session.query(Order).filter(
        or_(
            Order.shift_id == shift.id,
            and_(Order.shift_id.is_(None), Order.created_at >= shift.opened_at),
        )
    )


def list_pending_orders(shift: Shift) -> list[dict]:
    rows = (
        attributable_orders(shift)
        .filter(Order.status.in_(ACTIVE_ORDER_STATUSES))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    return [
        {
            "id": o.id,
            "order_number": o.order_number,
            "display_name": o.display_name,
            "status": o.status,
            "total": o.total,
            "type": "takeaway" if o.is_takeaway else "table",
        }
        for o in rows
    ]


# =============================================================================
# TOTALS
# =============================================================================

def compute_shift_totals(shift_id: int) -> dict:
    """Sum payments and approved refunds attributed to the shift."""
    by_method = dict(
        db.session.query(Payment.method, func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.shift_id == shift_id)
        .group_by(Payment.method)
        .all()
    )
    order_count = (
        db.session.query(func.count(func.distinct(Payment.order_id)))
        .filter(Payment.shift_id == shift_id)
        .scalar()
    ) or 0
    refunds = dict(
        db.session.query(Refund.method, func.coalesce(func.sum(Refund.amount), 0))
        .filter(Refund.shift_id == shift_id, Refund.status == REFUND_STATUS_APPROVED)
        .group_by(Refund.method)
        .all()
    )

    cash = int(by_method.get(METHOD_CASH, 0))
    card = int(by_method.get(METHOD_CARD, 0))
    transfer = int(by_method.get(METHOD_TRANSFER, 0))
    return {
        "cash_sales": cash,
        "card_sales": card,
        "transfer_sales": transfer,
        "total_sales": cash + card + transfer,
        "total_orders": int(order_count),
        "cash_refunds": int(refunds.get(METHOD_CASH, 0)),
        "refund_total": int(sum(refunds.values())),
    }


def recompute_shift_totals(shift: Shift) -> Shift:
    """Overwrite the running totals from the ledger rows. Does not commit."""
    db.session.flush()
    for key, value in compute_shift_totals(shift.id).items():
        setattr(shift, key, value)
    return shift


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_shift(
    operator_id: str,
    opening_amount,
    terminal_id: str,
    notes: str | None = None,
) -> Shift:
    """
    Open a new shift on a terminal.

    Raises:
        ValidationError: opening_amount is not an integer >= 0
        ShiftAlreadyOpenError: the terminal already has an OPEN shift
    """
    opening_amount = check_amount(opening_amount, "opening_amount", minimum=0)

    def _op():
        existing = get_open_shift(terminal_id)
        if existing:
            raise ShiftAlreadyOpenError(
                f"Terminal {terminal_id} already has an open shift (shift {existing.id})",
                shift_id=existing.id,
            )

        shift = Shift(
            operator_id=operator_id,
            terminal_id=terminal_id,
            status=SHIFT_STATUS_OPEN,
            opening_amount=opening_amount,
            notes=notes,
            opened_at=utcnow(),
        )
        db.session.add(shift)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost the race against another open request on the same terminal
            db.session.rollback()
            winner = get_open_shift(terminal_id)
            raise ShiftAlreadyOpenError(
                f"Terminal {terminal_id} already has an open shift",
                shift_id=winner.id if winner else None,
            )

        append_ledger_event(
            event_type="SHIFT_OPENED",
            event_category="shift",
            entity_type="shift",
            entity_id=shift.id,
            actor_id=operator_id,
            terminal_id=terminal_id,
            shift_id=shift.id,
            occurred_at=shift.opened_at,
            note="Shift opened",
            payload={"opening_amount": opening_amount},
        )
        db.session.commit()
        return shift

    shift = run_with_retry(_op)
    current_app.logger.info(
        "Shift %s opened on %s by %s with %s", shift.id, terminal_id, operator_id, opening_amount
    )
    return shift


def close_shift(
    shift_id: int,
    counted_cash_amount=None,
    notes: str | None = None,
    *,
    closed_by: str,
    counts: dict | None = None,
) -> Shift:
    """
    Close a shift and calculate the cash difference.

    counted_cash_amount is the cash counted in the drawer. When counts (raw
    bill/coin quantities) are given, the counted cash is derived from them and
    the count is stored; an explicit amount that disagrees is rejected.

    Raises:
        ShiftAlreadyClosedError: shift is not OPEN
        PendingOrdersError: an attributable order is still unpaid
        ValidationError: missing or inconsistent counted amount
    """
    if counts is None and counted_cash_amount is None:
        raise ValidationError("counted_cash_amount or counts is required", field="counted_cash_amount")
    if counted_cash_amount is not None:
        counted_cash_amount = check_amount(counted_cash_amount, "counted_cash_amount", minimum=0)

    def _op():
        shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
        if not shift:
            raise NotFoundError("Shift not found")
        if shift.status != SHIFT_STATUS_OPEN:
            raise ShiftAlreadyClosedError(f"Shift {shift.id} is already closed", shift_id=shift.id)

        pending = list_pending_orders(shift)
        if pending:
            raise PendingOrdersError(pending)

        recompute_shift_totals(shift)

        counted = counted_cash_amount
        cash_count = None
        if counts is not None:
            result = reconcile_shift(shift, counts)
            if counted is not None and counted != result.cash_total:
                raise ValidationError(
                    f"counted_cash_amount {counted} does not match the counted bills and coins ({result.cash_total})",
                    field="counted_cash_amount",
                )
            counted = result.cash_total
            cash_count = record_cash_count(shift, result, counted_by=closed_by)

        expected = shift.expected_cash
        shift.closing_amount = counted
        shift.expected_amount = expected
        shift.difference = counted - expected
        shift.status = SHIFT_STATUS_CLOSED
        shift.closed_at = utcnow()
        shift.closed_by = closed_by
        if notes:
            shift.notes = notes

        append_ledger_event(
            event_type="SHIFT_CLOSED",
            event_category="shift",
            entity_type="shift",
            entity_id=shift.id,
            actor_id=closed_by,
            terminal_id=shift.terminal_id,
            shift_id=shift.id,
            occurred_at=shift.closed_at,
            note=notes,
            payload={
                "closing_amount": counted,
                "expected_amount": expected,
                "difference": shift.difference,
                "cash_count_id": cash_count.id if cash_count else None,
            },
        )
        db.session.commit()
        return shift

    shift = run_with_retry(_op)
    current_app.logger.info(
        "Shift %s closed by %s: expected %s, counted %s, difference %s",
        shift.id, closed_by, shift.expected_amount, shift.closing_amount, shift.difference,
    )
    return shift


# =============================================================================
# SUMMARY
# =============================================================================

def get_shift_summary(shift_id: int) -> dict:
    """
    Shift details plus what the cashier screen polls for:
    pending orders, per-method payment counts and freshness metadata.
    """
    shift = get_shift(shift_id)

    pending = list_pending_orders(shift) if shift.is_open else []
    counts_by_method = dict(
        db.session.query(Payment.method, func.count(Payment.id))
        .filter(Payment.shift_id == shift.id)
        .group_by(Payment.method)
        .all()
    )
    refunds = (
        db.session.query(Refund)
        .filter(Refund.shift_id == shift.id)
        .order_by(Refund.id.asc())
        .all()
    )
    table_pending = sum(1 for o in pending if o["type"] == "table")

    return {
        "shift": shift.to_dict(),
        "pending_orders": pending,
        "table_pending": table_pending,
        "takeaway_pending": len(pending) - table_pending,
        "payment_counts": {m: int(c) for m, c in counts_by_method.items()},
        "refunds": [r.to_dict() for r in refunds],
        "cash_counts": [c.to_dict() for c in shift.cash_counts],
        "refreshed_at": to_utc_z(utcnow()),
        "poll_interval_seconds": current_app.config.get("POLL_INTERVAL_SECONDS", 5),
    }
