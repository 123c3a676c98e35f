from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

REFUND_STATUS_PENDING = "PENDING"
REFUND_STATUS_APPROVED = "APPROVED"
REFUND_STATUS_REJECTED = "REJECTED"

REFUND_REASON_CODES = (
    "WRONG_ORDER",
    "QUALITY",
    "CUSTOMER_COMPLAINT",
    "DUPLICATE_CHARGE",
    "OTHER",
)


class Refund(db.Model):
    """
    Money returned to a customer for a paid order.

    WHY: Refunds are tracked apart from payments so a shift's sales totals never
    decrease. An APPROVED cash refund lowers the cash expected in the drawer of
    the shift that issued it.

    LIFECYCLE:
    - PENDING: Requested, awaiting a decision
    - APPROVED: Counted against the issuing shift (terminal)
    - REJECTED: Ignored by all totals (terminal)
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_refunds_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)

    amount = db.Column(db.BigInteger, nullable=False)
    method = db.Column(db.String(16), nullable=False)
    reason_code = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=REFUND_STATUS_PENDING, index=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    decided_by = db.Column(db.String(64), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decision_note = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("refunds", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "shift_id": self.shift_id,
            "amount": self.amount,
            "method": self.method,
            "reason_code": self.reason_code,
            "notes": self.notes,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "decided_by": self.decided_by,
            "decided_at": to_utc_z(self.decided_at) if self.decided_at else None,
            "decision_note": self.decision_note,
        }
