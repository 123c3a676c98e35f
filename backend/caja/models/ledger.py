from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class LedgerEvent(db.Model):
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_category_occurred", "event_category", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., SHIFT_OPENED, ORDER_SETTLED
    event_category = db.Column(db.String(32), nullable=False, index=True)  # shift, order, payment, discount, refund, settings

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    # Actor and cross-module references
    actor_id = db.Column(db.String(64), nullable=True, index=True)
    terminal_id = db.Column(db.String(64), nullable=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "terminal_id": self.terminal_id,
            "shift_id": self.shift_id,
            "order_id": self.order_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
