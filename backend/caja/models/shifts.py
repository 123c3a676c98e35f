from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

SHIFT_STATUS_OPEN = "OPEN"
SHIFT_STATUS_CLOSED = "CLOSED"


class Shift(db.Model):
    """
    One cashier's period of custody over a cash drawer.

    WHY: Cashier accountability. Each shift has an opening float, running sales
    per payment method, and a closing count with signed difference.

    LIFECYCLE:
    - OPEN: Shift is active, payments are attributed to it
    - CLOSED: Cash counted, expected/difference calculated (terminal)

    DERIVED TOTALS: cash/card/transfer sales and refund totals are recomputed
    from the payments and refunds rows; they are never incremented by hand.

    UNIQUENESS: At most one OPEN shift per terminal, enforced by a partial
    unique index so two concurrent "open shift" requests cannot both commit.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_open_terminal",
            "terminal_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operator_id = db.Column(db.String(64), nullable=False, index=True)
    terminal_id = db.Column(db.String(64), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)

    opening_amount = db.Column(db.BigInteger, nullable=False, default=0)

    # Running totals (derived from payments / refunds)
    cash_sales = db.Column(db.BigInteger, nullable=False, default=0)
    card_sales = db.Column(db.BigInteger, nullable=False, default=0)
    transfer_sales = db.Column(db.BigInteger, nullable=False, default=0)
    total_sales = db.Column(db.BigInteger, nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    cash_refunds = db.Column(db.BigInteger, nullable=False, default=0)
    refund_total = db.Column(db.BigInteger, nullable=False, default=0)

    # Set only at closure
    closing_amount = db.Column(db.BigInteger, nullable=True)
    expected_amount = db.Column(db.BigInteger, nullable=True)  # opening + cash sales - cash refunds
    difference = db.Column(db.BigInteger, nullable=True)  # closing - expected (signed)
    closed_by = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SHIFT_STATUS_OPEN

    @property
    def expected_cash(self) -> int:
        """Cash that should be in the drawer right now."""
        return (self.opening_amount or 0) + (self.cash_sales or 0) - (self.cash_refunds or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_id": self.operator_id,
            "terminal_id": self.terminal_id,
            "status": self.status,
            "opening_amount": self.opening_amount,
            "cash_sales": self.cash_sales,
            "card_sales": self.card_sales,
            "transfer_sales": self.transfer_sales,
            "total_sales": self.total_sales,
            "total_orders": self.total_orders,
            "cash_refunds": self.cash_refunds,
            "refund_total": self.refund_total,
            "expected_cash": self.expected_cash,
            "closing_amount": self.closing_amount,
            "expected_amount": self.expected_amount,
            "difference": self.difference,
            "closed_by": self.closed_by,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class CashCount(db.Model):
    """
    Arqueo captured when a shift closes.

    WHY: The counted figure must be re-derivable from the raw denomination
    counts, so the lines are stored next to the computed totals.
    """
    __tablename__ = "cash_counts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)

    cash_total = db.Column(db.BigInteger, nullable=False)
    counted_card = db.Column(db.BigInteger, nullable=False, default=0)
    counted_transfer = db.Column(db.BigInteger, nullable=False, default=0)
    counted_total = db.Column(db.BigInteger, nullable=False)
    expected_total = db.Column(db.BigInteger, nullable=False)
    difference = db.Column(db.BigInteger, nullable=False)

    counted_by = db.Column(db.String(64), nullable=False)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("Shift", backref=db.backref("cash_counts", lazy=True))
    lines = db.relationship("CashCountLine", backref="cash_count", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "cash_total": self.cash_total,
            "counted_card": self.counted_card,
            "counted_transfer": self.counted_transfer,
            "counted_total": self.counted_total,
            "expected_total": self.expected_total,
            "difference": self.difference,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class CashCountLine(db.Model):
    __tablename__ = "cash_count_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_count_id = db.Column(db.Integer, db.ForeignKey("cash_counts.id"), nullable=False, index=True)
    kind = db.Column(db.String(8), nullable=False)  # BILL, COIN
    denomination = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "denomination": self.denomination,
            "quantity": self.quantity,
            "subtotal": self.denomination * self.quantity,
        }
