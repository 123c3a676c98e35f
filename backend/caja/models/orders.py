from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_IN_KITCHEN = "IN_KITCHEN"
ORDER_STATUS_READY = "READY"
ORDER_STATUS_SERVED = "SERVED"
ORDER_STATUS_PAID = "PAID"
ORDER_STATUS_CANCELLED = "CANCELLED"

# Pre-PAID, pre-CANCELLED: these block a shift close
ACTIVE_ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_IN_KITCHEN,
    ORDER_STATUS_READY,
    ORDER_STATUS_SERVED,
)

ORDER_TYPE_DINE_IN = "DINE_IN"
ORDER_TYPE_TAKEAWAY = "TAKEAWAY"
ORDER_TYPE_DELIVERY = "DELIVERY"
ORDER_TYPES = (ORDER_TYPE_DINE_IN, ORDER_TYPE_TAKEAWAY, ORDER_TYPE_DELIVERY)

TABLE_STATUS_AVAILABLE = "AVAILABLE"
TABLE_STATUS_OCCUPIED = "OCCUPIED"


class DiningTable(db.Model):
    """Physical table on the floor. Occupied while it has an active order."""
    __tablename__ = "dining_tables"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_dining_tables_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    area = db.Column(db.String(64), nullable=True)
    capacity = db.Column(db.Integer, nullable=False, default=4)
    status = db.Column(db.String(16), nullable=False, default=TABLE_STATUS_AVAILABLE, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "area": self.area,
            "capacity": self.capacity,
            "status": self.status,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class Order(db.Model):
    """
    Restaurant order (comanda).

    WHY: The settlement workflow reads and transitions orders but never creates
    or deletes them; this table is the Order Store those services work against.

    LIFECYCLE:
    PENDING -> IN_KITCHEN -> READY -> SERVED -> PAID
    PENDING | IN_KITCHEN -> CANCELLED

    TOTALS: subtotal is the sum of item line totals. tax, tip and total are
    fixed by the settlement; before that they hold the last computed preview.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.Integer, nullable=False)
    order_type = db.Column(db.String(16), nullable=False, default=ORDER_TYPE_DINE_IN)

    table_id = db.Column(db.Integer, db.ForeignKey("dining_tables.id"), nullable=True, index=True)
    waiter_name = db.Column(db.String(128), nullable=True)
    operator_id = db.Column(db.String(64), nullable=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    discount_amount = db.Column(db.BigInteger, nullable=False, default=0)
    tax = db.Column(db.BigInteger, nullable=False, default=0)
    tip = db.Column(db.BigInteger, nullable=False, default=0)
    total = db.Column(db.BigInteger, nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=True)  # CASH, CARD, TRANSFER, SPLIT

    notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    table = db.relationship("DiningTable", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_takeaway(self) -> bool:
        return self.table_id is None or self.order_type != ORDER_TYPE_DINE_IN

    @property
    def display_name(self) -> str:
        """Name shown to the cashier: table name or takeaway/delivery label."""
        if self.order_type == ORDER_TYPE_DELIVERY:
            return "Domicilio"
        if self.is_takeaway:
            return "Para Llevar"
        return self.table.name if self.table else "Sin mesa"

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "display_name": self.display_name,
            "table_id": self.table_id,
            "waiter_name": self.waiter_name,
            "operator_id": self.operator_id,
            "shift_id": self.shift_id,
            "status": self.status,
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "tax": self.tax,
            "tip": self.tip,
            "total": self.total,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line on an order. Name and price are snapshots taken when added."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_name = db.Column(db.String(128), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    line_total = db.Column(db.BigInteger, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
            "notes": self.notes,
        }


class OrderDraft(db.Model):
    """
    Server-held draft cart.

    WHY: A waiter's half-built order survives a browser refresh or a switch of
    device. One draft per operator per table key.
    """
    __tablename__ = "order_drafts"
    __table_args__ = (
        db.UniqueConstraint("operator_id", "table_key", name="uq_order_drafts_operator_table"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operator_id = db.Column(db.String(64), nullable=False, index=True)
    table_key = db.Column(db.String(64), nullable=False)  # table id or "takeaway"
    payload = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_id": self.operator_id,
            "table_key": self.table_key,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
