"""
Discount tests.

Verifies:
- One discount per order; applying again replaces it
- FIXED clamps to the subtotal, PERCENTAGE > 100 is rejected
- A reason is mandatory (preset name when a preset is used)
- Discounts follow later item changes
"""

import pytest

from caja.errors import OrderStateError, ValidationError
from caja.models import AppliedDiscount, LedgerEvent
from caja.services import discount_service, order_service, settlement_service

from conftest import OPERATOR, TERMINAL, make_order


def apply(order_id, discount_type="FIXED", value=1000, reason="Cortesia", **kwargs):
    return discount_service.apply_discount(
        order_id, discount_type=discount_type, value=value, reason=reason, applied_by=OPERATOR, **kwargs,
    )


class TestApplyDiscount:
    def test_fixed_discount_above_subtotal_clamps(self, db_session, shift):
        order = make_order(30000)
        applied = apply(order.id, "FIXED", 9000000)
        order = order_service.get_order(order.id)

        assert applied.discount_amount == 30000
        assert order.discount_amount == 30000
        assert order.tax == 0
        assert order.total == 0

    def test_percentage_above_100_is_rejected(self, db_session, shift):
        order = make_order(30000)
        with pytest.raises(ValidationError):
            apply(order.id, "PERCENTAGE", 150)
        assert discount_service.get_applied_discount(order.id) is None

    def test_reason_is_required(self, db_session, shift):
        order = make_order(30000)
        with pytest.raises(ValidationError) as exc:
            apply(order.id, "FIXED", 1000, reason="  ")
        assert exc.value.field == "reason"

    def test_negative_value_is_rejected(self, db_session, shift):
        order = make_order(30000)
        with pytest.raises(ValidationError):
            apply(order.id, "FIXED", -100)

    def test_second_discount_replaces_first(self, db_session, no_tax, shift):
        order = make_order(40000)
        apply(order.id, "FIXED", 5000)
        apply(order.id, "PERCENTAGE", 10, reason="Cumpleanos")

        rows = db_session.query(AppliedDiscount).filter_by(order_id=order.id).all()
        assert len(rows) == 1
        assert rows[0].discount_type == "PERCENTAGE"
        assert order_service.get_order(order.id).discount_amount == 4000
        assert db_session.query(LedgerEvent).filter_by(event_type="DISCOUNT_REPLACED").count() == 1

    def test_discount_follows_item_changes(self, db_session, no_tax, shift):
        order = make_order(40000)
        apply(order.id, "PERCENTAGE", 10)
        order_service.add_item(order.id, {"product_name": "Limonada", "quantity": 2, "unit_price": 5000})
        order = order_service.get_order(order.id)
        assert order.subtotal == 50000
        assert order.discount_amount == 5000
        assert order.total == 45000

    def test_remove_discount(self, db_session, no_tax, shift):
        order = make_order(40000)
        apply(order.id, "FIXED", 5000)
        order = discount_service.remove_discount(order.id, removed_by=OPERATOR)
        assert order.discount_amount == 0
        assert order.total == 40000
        assert discount_service.get_applied_discount(order.id) is None

    def test_paid_orders_are_frozen(self, db_session, no_tax, shift):
        order = make_order(10000)
        settlement_service.settle_order(
            order.id, {"method": "CARD"}, operator_id=OPERATOR, terminal_id=TERMINAL,
        )
        with pytest.raises(OrderStateError):
            apply(order.id, "FIXED", 1000)


class TestPresets:
    def test_create_and_apply_preset(self, db_session, no_tax, shift):
        preset = discount_service.create_preset(name="Empleado", discount_type="PERCENTAGE", value=20)
        order = make_order(10000)
        applied = discount_service.apply_discount(
            order.id, discount_type=None, reason=None, applied_by=OPERATOR, preset_id=preset.id,
        )
        assert applied.discount_amount == 2000
        assert applied.reason == "Empleado"
        assert applied.preset_id == preset.id
        db_session.refresh(preset)
        assert preset.times_used == 1

    def test_duplicate_name_is_rejected(self, db_session):
        discount_service.create_preset(name="Empleado", discount_type="FIXED", value=1000)
        with pytest.raises(ValidationError):
            discount_service.create_preset(name="Empleado", discount_type="FIXED", value=2000)

    def test_preset_percentage_above_100_is_rejected(self, db_session):
        with pytest.raises(ValidationError):
            discount_service.create_preset(name="Todo", discount_type="PERCENTAGE", value=101)

    def test_inactive_preset_cannot_be_applied(self, db_session, shift):
        preset = discount_service.create_preset(name="Viejo", discount_type="FIXED", value=1000)
        discount_service.deactivate_preset(preset.id)
        order = make_order(10000)
        with pytest.raises(ValidationError):
            discount_service.apply_discount(
                order.id, discount_type=None, reason=None, applied_by=OPERATOR, preset_id=preset.id,
            )
        assert discount_service.list_presets() == []
        assert len(discount_service.list_presets(include_inactive=True)) == 1

    def test_update_preset_value(self, db_session):
        preset = discount_service.create_preset(name="Happy hour", discount_type="PERCENTAGE", value=10)
        preset = discount_service.update_preset(preset.id, {"value": 15})
        assert float(preset.value) == 15.0
