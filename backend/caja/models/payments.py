from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_TRANSFER = "TRANSFER"
PAYMENT_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_TRANSFER)

# Order.payment_method summary when more than one leg was used
METHOD_SPLIT = "SPLIT"


class Settlement(db.Model):
    """
    Header row for one successful order settlement.

    WHY: Freezes the amount-due computation (subtotal, discount, tax, tip) next
    to the payments that covered it, and carries the idempotency key used to
    recognise a client retry.

    UNIQUENESS: One settlement per order. Two concurrent settlements of the
    same order cannot both commit. An idempotency key belongs to one
    settlement, so it cannot pay two different orders.
    """
    __tablename__ = "settlements"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_settlements_order"),
        db.UniqueConstraint("invoice_number", name="uq_settlements_invoice"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)

    idempotency_key = db.Column(db.String(128), nullable=True, unique=True, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)

    subtotal = db.Column(db.BigInteger, nullable=False)
    discount_amount = db.Column(db.BigInteger, nullable=False, default=0)
    taxable_base = db.Column(db.BigInteger, nullable=False)
    tax_rate = db.Column(db.Numeric(6, 3), nullable=False)
    tax = db.Column(db.BigInteger, nullable=False, default=0)
    tip = db.Column(db.BigInteger, nullable=False, default=0)
    amount_due = db.Column(db.BigInteger, nullable=False)
    amount_paid = db.Column(db.BigInteger, nullable=False)
    change_amount = db.Column(db.BigInteger, nullable=False, default=0)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("settlement", uselist=False, lazy=True))
    payments = db.relationship("Payment", backref="settlement", lazy=True, order_by="Payment.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "shift_id": self.shift_id,
            "invoice_number": self.invoice_number,
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "taxable_base": self.taxable_base,
            "tax_rate": float(self.tax_rate) if self.tax_rate is not None else None,
            "tax": self.tax,
            "tip": self.tip,
            "amount_due": self.amount_due,
            "amount_paid": self.amount_paid,
            "change_amount": self.change_amount,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "payments": [p.to_dict() for p in self.payments],
        }


class Payment(db.Model):
    """
    One leg of a settlement.

    DESIGN: Immutable once written. A split payment is two or more rows for the
    same settlement. Refunds are separate rows in the refunds table; a payment
    is never edited or voided.

    CASH legs record what the customer handed over (received_amount) and the
    change returned. amount is always the part applied to the order.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.BigInteger, nullable=False)
    received_amount = db.Column(db.BigInteger, nullable=True)
    change_amount = db.Column(db.BigInteger, nullable=True)
    reference = db.Column(db.String(128), nullable=True)  # voucher / transfer reference

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "shift_id": self.shift_id,
            "settlement_id": self.settlement_id,
            "method": self.method,
            "amount": self.amount,
            "received_amount": self.received_amount,
            "change_amount": self.change_amount,
            "reference": self.reference,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
