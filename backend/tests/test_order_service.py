"""
Order store tests: tables, order creation, item edits and kitchen flow.
"""

import pytest

from caja.errors import NotFoundError, OrderStateError, StoreUnavailableError, ValidationError
from caja.services import order_service, settlement_service

from conftest import OPERATOR, TERMINAL, make_order


class TestTables:
    def test_create_and_list(self, db_session):
        order_service.create_table("Mesa 2", area="Terraza")
        order_service.create_table("Mesa 1")
        names = [t.name for t in order_service.list_tables()]
        assert names == ["Mesa 1", "Mesa 2"]

    def test_duplicate_name_rejected(self, db_session, table):
        with pytest.raises(ValidationError):
            order_service.create_table("Mesa 1")

    def test_dine_in_occupies_table(self, db_session, shift, table):
        make_order(10000, table=table)
        assert order_service.get_table(table.id).status == "OCCUPIED"

    def test_cannot_free_table_with_active_order(self, db_session, shift, table):
        make_order(10000, table=table)
        with pytest.raises(OrderStateError):
            order_service.set_table_status(table.id, "AVAILABLE", actor_id=OPERATOR)

    def test_table_released_only_when_last_order_ends(self, db_session, no_tax, shift, table):
        first = make_order(10000, table=table)
        second = make_order(5000, table=table)
        settlement_service.cancel_order(first.id, cancelled_by=OPERATOR)
        assert order_service.get_table(table.id).status == "OCCUPIED"
        settlement_service.settle_order(
            second.id, {"method": "CARD"}, operator_id=OPERATOR, terminal_id=TERMINAL,
        )
        assert order_service.get_table(table.id).status == "AVAILABLE"

    def test_unknown_table(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.get_table(999)


class TestCreateOrder:
    def test_dine_in_needs_table(self, db_session):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(order_type="DINE_IN", items=[])
        assert exc.value.field == "table_id"

    def test_totals_include_configured_tax(self, db_session, shift):
        order = make_order(10000)
        assert order.subtotal == 10000
        assert order.tax == 800
        assert order.total == 10800

    def test_order_numbers_increase(self, db_session, shift):
        first = make_order(1000)
        second = make_order(1000)
        assert second.order_number == first.order_number + 1

    def test_taken_order_number_is_retried(self, db_session, shift, monkeypatch):
        taken = make_order(1000).order_number
        numbers = iter([taken, taken + 1])
        monkeypatch.setattr(order_service, "_next_order_number", lambda: next(numbers))

        second = make_order(1000)
        assert second.order_number == taken + 1
        assert len(order_service.list_orders()) == 2

    def test_order_number_that_stays_taken_is_retryable(self, db_session, shift, monkeypatch):
        taken = make_order(1000).order_number
        monkeypatch.setattr(order_service, "_next_order_number", lambda: taken)

        with pytest.raises(StoreUnavailableError) as exc:
            make_order(1000)
        assert exc.value.retryable
        assert len(order_service.list_orders()) == 1

    def test_untagged_without_shift(self, db_session):
        order = make_order(1000)
        assert order.shift_id is None

    @pytest.mark.parametrize("item", [
        {"product_name": "", "unit_price": 1000},
        {"product_name": "Arepa", "unit_price": -1},
        {"product_name": "Arepa", "unit_price": 1000, "quantity": 0},
        {"product_name": "Arepa", "unit_price": "12.5"},
    ])
    def test_bad_items_rejected(self, db_session, item):
        with pytest.raises(ValidationError):
            order_service.create_order(order_type="TAKEAWAY", items=[item])

    def test_list_filters_by_status(self, db_session, shift):
        pending = make_order(1000)
        sent = make_order(2000)
        order_service.send_to_kitchen(sent.id)
        assert [o.id for o in order_service.list_orders(status="pending")] == [pending.id]
        assert len(order_service.list_orders(status=["PENDING", "IN_KITCHEN"])) == 2


class TestItems:
    def test_add_update_remove(self, db_session, no_tax, shift):
        order = make_order(10000)
        order, _ = order_service.add_item(order.id, {"product_name": "Jugo", "quantity": 2, "unit_price": 4000})
        assert order.subtotal == 18000

        juice = next(i for i in order.items if i.product_name == "Jugo")
        order, _ = order_service.update_item(order.id, juice.id, {"quantity": 1})
        assert order.subtotal == 14000

        order, _ = order_service.remove_item(order.id, juice.id)
        assert order.subtotal == 10000
        assert order.total == 10000
        assert len(order.items) == 1

    def test_update_needs_changes(self, db_session, shift):
        order = make_order(10000)
        with pytest.raises(ValidationError):
            order_service.update_item(order.id, order.items[0].id, {})

    def test_paid_order_is_frozen(self, db_session, no_tax, shift):
        order = make_order(10000)
        settlement_service.settle_order(
            order.id, {"method": "CARD"}, operator_id=OPERATOR, terminal_id=TERMINAL,
        )
        with pytest.raises(OrderStateError):
            order_service.add_item(order.id, {"product_name": "Postre", "unit_price": 5000})

    def test_unknown_item(self, db_session, shift):
        order = make_order(10000)
        with pytest.raises(NotFoundError):
            order_service.remove_item(order.id, 12345)


class TestKitchenFlow:
    def test_forward_transitions(self, db_session, shift):
        order = make_order(10000)
        order_service.send_to_kitchen(order.id)
        order_service.update_order_status(order.id, "READY")
        order = order_service.update_order_status(order.id, "SERVED")
        assert order.status == "SERVED"

    def test_cannot_skip_or_go_back(self, db_session, shift):
        order = make_order(10000)
        with pytest.raises(OrderStateError):
            order_service.update_order_status(order.id, "SERVED")
        order_service.send_to_kitchen(order.id)
        with pytest.raises(OrderStateError):
            order_service.update_order_status(order.id, "IN_KITCHEN")

    def test_paid_is_not_a_manual_status(self, db_session, shift):
        order = make_order(10000)
        with pytest.raises(ValidationError):
            order_service.update_order_status(order.id, "PAID")

    def test_send_twice(self, db_session, shift):
        order = make_order(10000)
        order_service.send_to_kitchen(order.id)
        with pytest.raises(OrderStateError):
            order_service.send_to_kitchen(order.id)

    def test_empty_order_cannot_go_to_kitchen(self, db_session, shift):
        order = order_service.create_order(order_type="TAKEAWAY", terminal_id=TERMINAL, items=[])
        with pytest.raises(ValidationError):
            order_service.send_to_kitchen(order.id)

    def test_served_order_cannot_be_cancelled(self, db_session, shift):
        order = make_order(10000)
        order_service.send_to_kitchen(order.id)
        order_service.update_order_status(order.id, "READY")
        with pytest.raises(OrderStateError):
            settlement_service.cancel_order(order.id, cancelled_by=OPERATOR)
