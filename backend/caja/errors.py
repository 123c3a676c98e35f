# Overview: Domain error taxonomy shared by services and routes.

"""
Error kinds:
- Validation errors: bad input, rejected before any state change (400).
- Guard violations: business rules (409/422), carry structured detail so the
  cashier can resolve and retry (which orders are pending, how much is missing).
- Collaborator failures: the backing store timing out or refusing work (503,
  retryable). Print server failures never raise; see print_service.
"""

from __future__ import annotations

from flask import jsonify


class CajaError(Exception):
    """Base class for every error surfaced to API callers."""

    code = "CAJA_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **detail):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.retryable:
            body["retryable"] = True
        body.update(self.detail)
        return body


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(CajaError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, **detail):
        if field is not None:
            detail["field"] = field
        super().__init__(message, **detail)
        self.field = field


class NotFoundError(CajaError):
    code = "NOT_FOUND"
    status_code = 404


# =============================================================================
# GUARD VIOLATIONS
# =============================================================================

class GuardViolation(CajaError):
    status_code = 409


class ShiftAlreadyOpenError(GuardViolation):
    code = "SHIFT_ALREADY_OPEN"


class ShiftAlreadyClosedError(GuardViolation):
    code = "SHIFT_ALREADY_CLOSED"


class NoOpenShiftError(GuardViolation):
    code = "NO_OPEN_SHIFT"


class PendingOrdersError(GuardViolation):
    code = "PENDING_ORDERS"

    def __init__(self, pending_orders: list[dict]):
        table_pending = sum(1 for o in pending_orders if o["type"] == "table")
        takeaway_pending = len(pending_orders) - table_pending
        super().__init__(
            f"Cannot close shift: {table_pending} table order(s) and "
            f"{takeaway_pending} takeaway order(s) are still unpaid",
            pending_orders=pending_orders,
            table_pending=table_pending,
            takeaway_pending=takeaway_pending,
        )
        self.pending_orders = pending_orders


class AlreadyPaidError(GuardViolation):
    code = "ALREADY_PAID"


class OrderStateError(GuardViolation):
    code = "INVALID_ORDER_STATE"


class RefundStateError(GuardViolation):
    code = "INVALID_REFUND_STATE"


class InsufficientPaymentError(GuardViolation):
    code = "INSUFFICIENT_PAYMENT"
    status_code = 422

    def __init__(self, amount_due: int, amount_paid: int):
        missing = amount_due - amount_paid
        super().__init__(
            f"Insufficient payment: total {amount_due}, paid {amount_paid}, missing {missing}",
            amount_due=amount_due,
            amount_paid=amount_paid,
            missing=missing,
        )


class OverpaymentError(GuardViolation):
    code = "OVERPAYMENT"
    status_code = 422

    def __init__(self, amount_due: int, amount_paid: int, reason: str):
        super().__init__(
            f"{reason}: total {amount_due}, paid {amount_paid}",
            amount_due=amount_due,
            amount_paid=amount_paid,
            excess=amount_paid - amount_due,
        )


# =============================================================================
# COLLABORATOR FAILURES
# =============================================================================

class StoreUnavailableError(CajaError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True


def error_response(exc: CajaError):
    """JSON response tuple for a domain error."""
    return jsonify(exc.to_dict()), exc.status_code
