from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


class DiscountPreset(db.Model):
    """
    Discount configured ahead of time (employee meal, happy hour, ...).

    Presets are deactivated, never deleted, so applied discounts keep a valid
    reference.
    """
    __tablename__ = "discount_presets"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_discount_presets_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    discount_type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Numeric(12, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    requires_authorization = db.Column(db.Boolean, nullable=False, default=False)
    times_used = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "value": float(self.value),
            "is_active": self.is_active,
            "requires_authorization": self.requires_authorization,
            "times_used": self.times_used,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AppliedDiscount(db.Model):
    """
    Discount currently applied to an order.

    At most one per order: applying another replaces this row. The stored
    discount_amount is recomputed whenever the order subtotal changes.
    """
    __tablename__ = "applied_discounts"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_applied_discounts_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    preset_id = db.Column(db.Integer, db.ForeignKey("discount_presets.id"), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.BigInteger, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    applied_by = db.Column(db.String(64), nullable=False)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("applied_discount", uselist=False, lazy=True))
    preset = db.relationship("DiscountPreset")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "preset_id": self.preset_id,
            "discount_type": self.discount_type,
            "discount_value": float(self.discount_value),
            "discount_amount": self.discount_amount,
            "reason": self.reason,
            "applied_by": self.applied_by,
            "applied_at": to_utc_z(self.applied_at),
        }
