"""
Order Store Service

WHY: Settlement and shift closing read and transition orders; this module is
the store they work against. It owns dining tables, orders and their items,
and the kitchen tickets sent when an order (or a change to it) reaches the
kitchen.

LIFECYCLE:
PENDING -> IN_KITCHEN -> READY -> SERVED -> PAID (settlement_service only)
PENDING | IN_KITCHEN -> CANCELLED (settlement_service.cancel_order)
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, OrderStateError, StoreUnavailableError, ValidationError
from ..extensions import db
from ..models import DiningTable, Order, OrderItem
from ..models.orders import (
    ACTIVE_ORDER_STATUSES,
    ORDER_STATUS_IN_KITCHEN,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_READY,
    ORDER_STATUS_SERVED,
    ORDER_TYPE_DINE_IN,
    ORDER_TYPES,
    TABLE_STATUS_AVAILABLE,
    TABLE_STATUS_OCCUPIED,
)
from ..time_utils import local_day_bounds, utcnow
from ..validation import check_amount, require_choice
from . import discount_service, print_service, settings_service
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .pricing import compute_amount_due
from .print_service import (
    CORRECTION_ADD,
    CORRECTION_MODIFY,
    CORRECTION_QUANTITY,
    CORRECTION_REMOVE,
    PrintResult,
)
from .shift_service import get_open_shift

# Forward moves allowed through update_order_status
STATUS_TRANSITIONS = {
    ORDER_STATUS_PENDING: (ORDER_STATUS_IN_KITCHEN,),
    ORDER_STATUS_IN_KITCHEN: (ORDER_STATUS_READY,),
    ORDER_STATUS_READY: (ORDER_STATUS_SERVED,),
    ORDER_STATUS_SERVED: (),
}
TABLE_STATUSES = (TABLE_STATUS_AVAILABLE, TABLE_STATUS_OCCUPIED)


# =============================================================================
# TABLES
# =============================================================================

def create_table(name: str, area: str | None = None, capacity: int = 4) -> DiningTable:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")
    capacity = check_amount(capacity, "capacity", minimum=1)
    if db.session.query(DiningTable).filter_by(name=name).first():
        raise ValidationError(f"Table '{name}' already exists", field="name")

    table = DiningTable(name=name, area=(area or "").strip() or None, capacity=capacity)
    db.session.add(table)
    db.session.commit()
    return table


def get_table(table_id: int) -> DiningTable:
    table = db.session.query(DiningTable).filter_by(id=table_id).first()
    if not table:
        raise NotFoundError("Table not found")
    return table


def list_tables(*, include_inactive: bool = False) -> list[DiningTable]:
    query = db.session.query(DiningTable)
    if not include_inactive:
        query = query.filter(DiningTable.is_active.is_(True))
    return query.order_by(DiningTable.name.asc()).all()


def set_table_status(table_id: int, status: str, *, actor_id: str | None = None) -> DiningTable:
    status = require_choice(status, "status", TABLE_STATUSES)

    def _op():
        table = lock_for_update(db.session.query(DiningTable).filter_by(id=table_id)).first()
        if not table:
            raise NotFoundError("Table not found")
        if status == TABLE_STATUS_AVAILABLE and _active_orders_on_table(table.id):
            raise OrderStateError(
                f"Table {table.name} still has an active order",
                table_id=table.id,
            )
        table.status = status
        append_ledger_event(
            event_type="TABLE_STATUS_CHANGED",
            event_category="order",
            entity_type="dining_table",
            entity_id=table.id,
            actor_id=actor_id,
            note=status,
        )
        db.session.commit()
        return table

    return run_with_retry(_op)


def _active_orders_on_table(table_id: int, *, exclude_order_id: int | None = None) -> int:
    query = db.session.query(func.count(Order.id)).filter(
        Order.table_id == table_id,
        Order.status.in_(ACTIVE_ORDER_STATUSES),
    )
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return query.scalar() or 0


def release_table_if_free(order: Order) -> bool:
    """
    Mark the order's table AVAILABLE unless another active order still uses
    it. Does not commit. Returns True when the table was released.
    """
    if order.table_id is None:
        return False
    if _active_orders_on_table(order.table_id, exclude_order_id=order.id):
        return False
    table = lock_for_update(db.session.query(DiningTable).filter_by(id=order.table_id)).first()
    if table is None:
        return False
    table.status = TABLE_STATUS_AVAILABLE
    return True


# =============================================================================
# ORDERS
# =============================================================================

def get_order(order_id: int) -> Order:
    """Fetch an order with its items and totals."""
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def list_orders(
    *,
    status: str | list[str] | None = None,
    day: date | None = None,
    table_id: int | None = None,
    shift_id: int | None = None,
) -> list[Order]:
    query = db.session.query(Order)
    if status:
        statuses = [status] if isinstance(status, str) else list(status)
        query = query.filter(Order.status.in_([s.upper() for s in statuses]))
    if day is not None:
        start, end = local_day_bounds(day, current_app.config.get("LOCAL_TIMEZONE", "America/Bogota"))
        query = query.filter(Order.created_at >= start, Order.created_at < end)
    if table_id is not None:
        query = query.filter(Order.table_id == table_id)
    if shift_id is not None:
        query = query.filter(Order.shift_id == shift_id)
    return query.order_by(Order.created_at.asc(), Order.id.asc()).all()


def _parse_item(raw: dict) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object", field="items")
    name = (raw.get("product_name") or raw.get("name") or "").strip()
    if not name:
        raise ValidationError("product_name is required", field="product_name")
    if len(name) > 128:
        raise ValidationError("product_name exceeds max length 128", field="product_name")
    quantity = check_amount(raw.get("quantity", 1), "quantity", minimum=1)
    unit_price = check_amount(raw.get("unit_price"), "unit_price", minimum=0)
    notes = (raw.get("notes") or "").strip() or None
    return {"product_name": name, "quantity": quantity, "unit_price": unit_price, "notes": notes}


def refresh_order_totals(order: Order) -> Order:
    """
    subtotal from item lines, discount re-derived against it, and a tax/total
    preview at the configured rate (tip is only known at settlement).
    Does not commit.
    """
    db.session.flush()
    subtotal = (
        db.session.query(func.coalesce(func.sum(OrderItem.line_total), 0))
        .filter(OrderItem.order_id == order.id)
        .scalar()
    ) or 0
    order.subtotal = int(subtotal)
    discount_service.refresh_discount(order)
    preview = compute_amount_due(
        order.subtotal,
        order.discount_amount or 0,
        settings_service.get_tax_policy().effective_rate,
    )
    order.tax = preview.tax
    order.tip = 0
    order.total = preview.amount_due
    return order


def _next_order_number() -> int:
    current = db.session.query(func.max(Order.order_number)).scalar()
    return (current or 0) + 1


def create_order(
    *,
    order_type: str = ORDER_TYPE_DINE_IN,
    table_id: int | None = None,
    waiter_name: str | None = None,
    operator_id: str | None = None,
    terminal_id: str | None = None,
    items: list[dict] | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a PENDING order. DINE_IN orders need a table, which becomes
    OCCUPIED. The order is tagged with the terminal's open shift when there
    is one.
    """
    order_type = require_choice(order_type or ORDER_TYPE_DINE_IN, "order_type", ORDER_TYPES)
    if order_type == ORDER_TYPE_DINE_IN and table_id is None:
        raise ValidationError("table_id is required for DINE_IN orders", field="table_id")
    if order_type != ORDER_TYPE_DINE_IN:
        table_id = None
    parsed_items = [_parse_item(raw) for raw in (items or [])]

    def _op():
        table = None
        if table_id is not None:
            table = lock_for_update(db.session.query(DiningTable).filter_by(id=table_id)).first()
            if not table or not table.is_active:
                raise NotFoundError("Table not found")

        shift = get_open_shift(terminal_id) if terminal_id else None
        order = Order(
            order_number=_next_order_number(),
            order_type=order_type,
            table_id=table.id if table else None,
            waiter_name=(waiter_name or "").strip() or None,
            operator_id=operator_id,
            shift_id=shift.id if shift else None,
            status=ORDER_STATUS_PENDING,
            notes=(notes or "").strip() or None,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        for item in parsed_items:
            db.session.add(OrderItem(
                order_id=order.id,
                line_total=item["quantity"] * item["unit_price"],
                **item,
            ))
        if table is not None:
            table.status = TABLE_STATUS_OCCUPIED

        refresh_order_totals(order)
        append_ledger_event(
            event_type="ORDER_CREATED",
            event_category="order",
            entity_type="order",
            entity_id=order.id,
            actor_id=operator_id,
            terminal_id=terminal_id,
            shift_id=order.shift_id,
            order_id=order.id,
            occurred_at=order.created_at,
        )
        db.session.commit()
        return order

    # order_number is max + 1; a concurrent create can take the same number
    attempts = max(1, current_app.config.get("STORE_RETRY_ATTEMPTS", 3))
    for attempt in range(attempts):
        try:
            return run_with_retry(_op)
        except IntegrityError as exc:
            db.session.rollback()
            current_app.logger.warning("Order number taken on attempt %d, retrying: %s", attempt + 1, exc.orig)
    raise StoreUnavailableError("Could not allocate an order number, retry the operation")


def _lock_editable_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError("Order not found")
    if order.status not in ACTIVE_ORDER_STATUSES:
        raise OrderStateError(f"Cannot modify a {order.status} order", order_id=order.id, status=order.status)
    return order


def _in_kitchen(order: Order) -> bool:
    return order.status != ORDER_STATUS_PENDING


def _send_correction(order: Order, tipo: str, items: list[dict]) -> PrintResult | None:
    if not _in_kitchen(order):
        return None
    return print_service.print_correction(order, tipo, items)


def add_item(order_id: int, raw_item: dict, *, actor_id: str | None = None) -> tuple[Order, PrintResult | None]:
    """Add a line. Orders already in the kitchen get an AGREGAR correction ticket."""
    item = _parse_item(raw_item)

    def _op():
        order = _lock_editable_order(order_id)
        line = OrderItem(order_id=order.id, line_total=item["quantity"] * item["unit_price"], **item)
        db.session.add(line)
        refresh_order_totals(order)
        append_ledger_event(
            event_type="ORDER_ITEM_ADDED",
            event_category="order",
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            order_id=order.id,
            note=item["product_name"],
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    result = _send_correction(order, CORRECTION_ADD, [{
        "nombre": item["product_name"],
        "cantidad": item["quantity"],
        "notas": item["notes"] or "",
    }])
    return order, result


def update_item(
    order_id: int,
    item_id: int,
    changes: dict,
    *,
    actor_id: str | None = None,
) -> tuple[Order, PrintResult | None]:
    """
    Change quantity and/or notes of a line. A quantity change prints a
    CANTIDAD correction; a notes-only change prints MODIFICACION.
    """
    if not isinstance(changes, dict) or not ({"quantity", "notes"} & set(changes)):
        raise ValidationError("quantity or notes is required")
    new_quantity = None
    if "quantity" in changes:
        new_quantity = check_amount(changes["quantity"], "quantity", minimum=1)

    def _op():
        order = _lock_editable_order(order_id)
        line = db.session.query(OrderItem).filter_by(id=item_id, order_id=order.id).first()
        if not line:
            raise NotFoundError("Order item not found")

        previous_quantity = line.quantity
        if new_quantity is not None:
            line.quantity = new_quantity
            line.line_total = new_quantity * line.unit_price
        if "notes" in changes:
            line.notes = (changes.get("notes") or "").strip() or None

        refresh_order_totals(order)
        append_ledger_event(
            event_type="ORDER_ITEM_UPDATED",
            event_category="order",
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            order_id=order.id,
            note=line.product_name,
            payload={"previous_quantity": previous_quantity, "quantity": line.quantity},
        )
        db.session.commit()
        return order, line, previous_quantity

    order, line, previous_quantity = run_with_retry(_op)

    entry = {"nombre": line.product_name, "cantidad": line.quantity, "notas": line.notes or ""}
    if new_quantity is not None and new_quantity != previous_quantity:
        entry["cantidadAnterior"] = previous_quantity
        tipo = CORRECTION_QUANTITY
    else:
        tipo = CORRECTION_MODIFY
    return order, _send_correction(order, tipo, [entry])


def remove_item(order_id: int, item_id: int, *, actor_id: str | None = None) -> tuple[Order, PrintResult | None]:
    """Remove a line. Orders already in the kitchen get an ELIMINAR correction ticket."""
    def _op():
        order = _lock_editable_order(order_id)
        line = db.session.query(OrderItem).filter_by(id=item_id, order_id=order.id).first()
        if not line:
            raise NotFoundError("Order item not found")
        removed = {"nombre": line.product_name, "cantidad": line.quantity, "notas": line.notes or ""}
        order.items.remove(line)
        db.session.flush()
        refresh_order_totals(order)
        append_ledger_event(
            event_type="ORDER_ITEM_REMOVED",
            event_category="order",
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            order_id=order.id,
            note=removed["nombre"],
        )
        db.session.commit()
        return order, removed

    order, removed = run_with_retry(_op)
    return order, _send_correction(order, CORRECTION_REMOVE, [removed])


def send_to_kitchen(order_id: int, *, actor_id: str | None = None) -> tuple[Order, PrintResult]:
    """PENDING -> IN_KITCHEN, then print the comanda (best effort)."""
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status != ORDER_STATUS_PENDING:
            raise OrderStateError(
                f"Only PENDING orders can be sent to the kitchen (order is {order.status})",
                order_id=order.id,
                status=order.status,
            )
        if not order.items:
            raise ValidationError("Cannot send an order with no items to the kitchen")
        order.status = ORDER_STATUS_IN_KITCHEN
        append_ledger_event(
            event_type="ORDER_SENT_TO_KITCHEN",
            event_category="order",
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            order_id=order.id,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    return order, print_service.print_kitchen_ticket(order)


def update_order_status(order_id: int, status: str, *, actor_id: str | None = None) -> Order:
    """
    Advance an order through the kitchen flow. PAID and CANCELLED are reached
    only through settlement and cancellation.
    """
    status = require_choice(status, "status", (ORDER_STATUS_IN_KITCHEN, ORDER_STATUS_READY, ORDER_STATUS_SERVED))

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        allowed = STATUS_TRANSITIONS.get(order.status, ())
        if status not in allowed:
            raise OrderStateError(
                f"Cannot move order from {order.status} to {status}",
                order_id=order.id,
                status=order.status,
            )
        previous = order.status
        order.status = status
        append_ledger_event(
            event_type="ORDER_STATUS_CHANGED",
            event_category="order",
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            order_id=order.id,
            note=f"{previous} -> {status}",
        )
        db.session.commit()
        return order

    return run_with_retry(_op)
