# Overview: Order discounts (manual and preset) and discount preset administration.

from __future__ import annotations

from decimal import Decimal

from ..errors import NotFoundError, OrderStateError, ValidationError
from ..extensions import db
from ..models import AppliedDiscount, DiscountPreset, Order
from ..models.discounts import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, DISCOUNT_TYPES
from ..models.orders import ORDER_STATUS_CANCELLED, ORDER_STATUS_PAID
from ..validation import coerce_decimal, require_choice
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .pricing import compute_discount_amount

"""
Discount rules

- One discount per order. Applying another replaces it; discounts never stack.
- PERCENTAGE values above 100 are rejected. FIXED values above the subtotal
  clamp to the subtotal, so the taxable base is never negative.
- A reason is mandatory: free text, or the preset name when a preset is used.
- PAID and CANCELLED orders are frozen.
"""


def _validate_value(discount_type: str, value) -> Decimal:
    amount = coerce_decimal(value, "value")
    if amount < 0:
        raise ValidationError("Discount value cannot be negative", field="value")
    if discount_type == DISCOUNT_PERCENTAGE and amount > 100:
        raise ValidationError("Percentage discount cannot exceed 100", field="value")
    if discount_type == DISCOUNT_FIXED and amount != amount.to_integral_value():
        raise ValidationError("Fixed discount must be a whole amount", field="value")
    return amount


def get_preset(preset_id: int, *, active_only: bool = True) -> DiscountPreset:
    preset = db.session.query(DiscountPreset).filter_by(id=preset_id).first()
    if not preset:
        raise NotFoundError("Discount preset not found")
    if active_only and not preset.is_active:
        raise ValidationError("Discount preset is not active", field="preset_id")
    return preset


def apply_discount_locked(
    order: Order,
    *,
    discount_type: str | None,
    value=None,
    reason: str | None,
    applied_by: str,
    preset_id: int | None = None,
) -> AppliedDiscount:
    """
    Apply (or replace) the discount on an already locked order.
    Does not commit; the caller owns the transaction.
    """
    if order.status in (ORDER_STATUS_PAID, ORDER_STATUS_CANCELLED):
        raise OrderStateError(f"Cannot discount a {order.status} order", order_id=order.id, status=order.status)

    preset = None
    if preset_id is not None:
        preset = get_preset(preset_id)
        discount_type = preset.discount_type
        value = preset.value
        reason = (reason or "").strip() or preset.name
    else:
        discount_type = require_choice(discount_type, "discount_type", DISCOUNT_TYPES)

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to apply a discount", field="reason")
    if len(reason) > 255:
        raise ValidationError("reason exceeds max length 255", field="reason")

    value = _validate_value(discount_type, value)
    amount = compute_discount_amount(order.subtotal or 0, discount_type, value)

    applied = db.session.query(AppliedDiscount).filter_by(order_id=order.id).first()
    replaced = applied is not None
    if applied is None:
        applied = AppliedDiscount(order_id=order.id)
        db.session.add(applied)
    applied.preset_id = preset.id if preset else None
    applied.discount_type = discount_type
    applied.discount_value = value
    applied.discount_amount = amount
    applied.reason = reason
    applied.applied_by = applied_by

    if preset is not None:
        preset.times_used = (preset.times_used or 0) + 1

    order.discount_amount = amount
    db.session.flush()

    append_ledger_event(
        event_type="DISCOUNT_REPLACED" if replaced else "DISCOUNT_APPLIED",
        event_category="discount",
        entity_type="applied_discount",
        entity_id=applied.id,
        actor_id=applied_by,
        order_id=order.id,
        note=reason,
        payload={"discount_type": discount_type, "value": str(value), "discount_amount": amount},
    )
    return applied


def refresh_discount(order: Order) -> int:
    """Recompute the applied discount against the order's current subtotal."""
    applied = db.session.query(AppliedDiscount).filter_by(order_id=order.id).first()
    if applied is None:
        order.discount_amount = 0
        return 0
    amount = compute_discount_amount(order.subtotal or 0, applied.discount_type, applied.discount_value)
    applied.discount_amount = amount
    order.discount_amount = amount
    return amount


def get_applied_discount(order_id: int) -> AppliedDiscount | None:
    return db.session.query(AppliedDiscount).filter_by(order_id=order_id).first()


def apply_discount(
    order_id: int,
    *,
    discount_type: str | None,
    value=None,
    reason: str | None,
    applied_by: str,
    preset_id: int | None = None,
) -> AppliedDiscount:
    from .order_service import refresh_order_totals

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        applied = apply_discount_locked(
            order,
            discount_type=discount_type,
            value=value,
            reason=reason,
            applied_by=applied_by,
            preset_id=preset_id,
        )
        refresh_order_totals(order)
        db.session.commit()
        return applied

    return run_with_retry(_op)


def remove_discount(order_id: int, *, removed_by: str) -> Order:
    from .order_service import refresh_order_totals

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status in (ORDER_STATUS_PAID, ORDER_STATUS_CANCELLED):
            raise OrderStateError(f"Cannot change the discount of a {order.status} order", order_id=order.id)
        applied = db.session.query(AppliedDiscount).filter_by(order_id=order.id).first()
        if applied is None:
            raise NotFoundError("Order has no discount")
        append_ledger_event(
            event_type="DISCOUNT_REMOVED",
            event_category="discount",
            entity_type="applied_discount",
            entity_id=applied.id,
            actor_id=removed_by,
            order_id=order.id,
        )
        db.session.delete(applied)
        db.session.flush()
        refresh_order_totals(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# PRESETS
# =============================================================================

def _validate_preset_value(discount_type: str, value) -> Decimal:
    amount = _validate_value(discount_type, value)
    if amount <= 0:
        raise ValidationError("Preset value must be greater than 0", field="value")
    return amount


def list_presets(*, include_inactive: bool = False) -> list[DiscountPreset]:
    query = db.session.query(DiscountPreset)
    if not include_inactive:
        query = query.filter(DiscountPreset.is_active.is_(True))
    return query.order_by(DiscountPreset.name.asc()).all()


def create_preset(
    *,
    name: str,
    discount_type: str,
    value,
    description: str | None = None,
    requires_authorization: bool = False,
    created_by: str | None = None,
) -> DiscountPreset:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")
    discount_type = require_choice(discount_type, "discount_type", DISCOUNT_TYPES)
    amount = _validate_preset_value(discount_type, value)

    if db.session.query(DiscountPreset).filter_by(name=name).first():
        raise ValidationError(f"A preset named {name!r} already exists", field="name")

    preset = DiscountPreset(
        name=name,
        description=(description or "").strip() or None,
        discount_type=discount_type,
        value=amount,
        requires_authorization=bool(requires_authorization),
        is_active=True,
    )
    db.session.add(preset)
    db.session.flush()
    append_ledger_event(
        event_type="DISCOUNT_PRESET_CREATED",
        event_category="discount",
        entity_type="discount_preset",
        entity_id=preset.id,
        actor_id=created_by,
        note=name,
    )
    db.session.commit()
    return preset


def update_preset(preset_id: int, changes: dict, *, updated_by: str | None = None) -> DiscountPreset:
    preset = get_preset(preset_id, active_only=False)

    if "name" in changes:
        name = (changes.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be blank", field="name")
        clash = db.session.query(DiscountPreset).filter(
            DiscountPreset.name == name, DiscountPreset.id != preset.id
        ).first()
        if clash:
            raise ValidationError(f"A preset named {name!r} already exists", field="name")
        preset.name = name
    if "description" in changes:
        preset.description = (changes.get("description") or "").strip() or None

    discount_type = preset.discount_type
    if "discount_type" in changes:
        discount_type = require_choice(changes["discount_type"], "discount_type", DISCOUNT_TYPES)
    if "value" in changes or discount_type != preset.discount_type:
        preset.value = _validate_preset_value(discount_type, changes.get("value", preset.value))
        preset.discount_type = discount_type

    if "is_active" in changes:
        preset.is_active = bool(changes["is_active"])
    if "requires_authorization" in changes:
        preset.requires_authorization = bool(changes["requires_authorization"])

    append_ledger_event(
        event_type="DISCOUNT_PRESET_UPDATED",
        event_category="discount",
        entity_type="discount_preset",
        entity_id=preset.id,
        actor_id=updated_by,
        note=preset.name,
    )
    db.session.commit()
    return preset


def deactivate_preset(preset_id: int, *, updated_by: str | None = None) -> DiscountPreset:
    return update_preset(preset_id, {"is_active": False}, updated_by=updated_by)
