"""
Order settlement tests.

Verifies:
- CASH change, CARD/TRANSFER exact tender, split legs
- Shift totals move with the payments written
- Re-settling a PAID order fails, or replays under the same idempotency key
- Nothing is written when a settlement is rejected
- The table is released once its last active order is paid
"""

import pytest
from sqlalchemy.exc import OperationalError

from caja.errors import (
    AlreadyPaidError,
    InsufficientPaymentError,
    NoOpenShiftError,
    OrderStateError,
    OverpaymentError,
    StoreUnavailableError,
    ValidationError,
)
from caja.models import LedgerEvent, Payment, Settlement
from caja.services import order_service, settings_service, settlement_service, shift_service
from caja.services.settlement_service import parse_settlement_request, plan_payments

from conftest import OPERATOR, TERMINAL, make_order


def settle(order_id, data, key=None):
    return settlement_service.settle_order(
        order_id, data, operator_id=OPERATOR, terminal_id=TERMINAL, idempotency_key=key,
    )


# =============================================================================
# SIMPLE PAYMENTS
# =============================================================================


class TestCashSettlement:
    def test_cash_change_and_shift_totals(self, db_session, no_tax, shift):
        order = make_order(25000)
        result = settle(order.id, {"method": "CASH", "received_amount": 30000})

        assert result["replayed"] is False
        assert result["change_amount"] == 5000
        assert result["order"]["status"] == "PAID"
        assert result["order"]["payment_method"] == "CASH"

        payment = db_session.query(Payment).filter_by(order_id=order.id).one()
        assert payment.amount == 25000
        assert payment.received_amount == 30000
        assert payment.change_amount == 5000

        db_session.refresh(shift)
        assert shift.cash_sales == 25000
        assert shift.total_orders == 1
        assert shift.expected_cash == 125000

    def test_cash_short_is_rejected_with_missing_amount(self, db_session, no_tax, shift):
        order = make_order(25000)
        with pytest.raises(InsufficientPaymentError) as exc:
            settle(order.id, {"method": "CASH", "received_amount": 20000})
        assert exc.value.detail["missing"] == 5000
        assert db_session.query(Payment).count() == 0
        assert order_service.get_order(order.id).status == "PENDING"

    def test_cash_requires_received_amount(self, db_session, no_tax, shift):
        order = make_order(25000)
        with pytest.raises(ValidationError):
            settle(order.id, {"method": "CASH"})

    def test_tax_uses_configured_rate(self, db_session, shift):
        settings_service.set_settings({"tax_rate": 19, "tax_enabled": True})
        order = make_order(10000)
        result = settle(order.id, {"method": "CASH", "received_amount": 20000})
        assert result["settlement"]["tax"] == 1900
        assert result["settlement"]["amount_due"] == 11900
        assert result["change_amount"] == 8100

    def test_tip_is_added_after_tax(self, db_session, shift):
        order = make_order(10000)
        result = settle(order.id, {"method": "CASH", "received_amount": 20000, "tip": 1000})
        # default 8% tax
        assert result["settlement"]["tax"] == 800
        assert result["settlement"]["tip"] == 1000
        assert result["settlement"]["amount_due"] == 11800

    def test_invoice_numbers_are_sequential(self, db_session, no_tax, shift):
        first = settle(make_order(1000).id, {"method": "CASH", "received_amount": 1000})
        second = settle(make_order(2000).id, {"method": "CASH", "received_amount": 2000})
        n1 = first["settlement"]["invoice_number"]
        n2 = second["settlement"]["invoice_number"]
        assert n1.startswith("INV-") and n1.endswith("-0001")
        assert n2.endswith("-0002")

    def test_invoice_sequence_continues_past_four_digits(self, db_session, no_tax, shift):
        first = settle(make_order(1000).id, {"method": "CARD"})
        second = settle(make_order(1000).id, {"method": "CARD"})
        prefix = first["settlement"]["invoice_number"][:-4]
        db_session.get(Settlement, first["settlement"]["id"]).invoice_number = f"{prefix}9999"
        db_session.get(Settlement, second["settlement"]["id"]).invoice_number = f"{prefix}10000"
        db_session.commit()

        assert settlement_service.next_invoice_number() == f"{prefix}10001"
        third = settle(make_order(1000).id, {"method": "CARD"})
        assert third["settlement"]["invoice_number"] == f"{prefix}10001"


class TestNonCashSettlement:
    def test_card_exact_amount(self, db_session, no_tax, shift):
        order = make_order(40000)
        result = settle(order.id, {"method": "CARD", "amount": 40000, "reference": "VOUCHER-1"})
        assert result["change_amount"] == 0
        db_session.refresh(shift)
        assert shift.card_sales == 40000
        assert shift.cash_sales == 0

    def test_card_defaults_to_amount_due(self, db_session, no_tax, shift):
        order = make_order(40000)
        settle(order.id, {"method": "TRANSFER"})
        db_session.refresh(shift)
        assert shift.transfer_sales == 40000

    def test_card_overpayment_is_rejected(self, db_session, no_tax, shift):
        order = make_order(40000)
        with pytest.raises(OverpaymentError):
            settle(order.id, {"method": "CARD", "amount": 45000})

    def test_one_unit_tolerance(self, db_session, no_tax, shift):
        order = make_order(40000)
        result = settle(order.id, {"method": "CARD", "amount": 39999})
        assert result["order"]["status"] == "PAID"


# =============================================================================
# SPLIT
# =============================================================================


class TestSplitSettlement:
    def test_cash_and_card_split(self, db_session, no_tax, shift):
        order = make_order(50000)
        result = settle(order.id, {"payments": [
            {"method": "CASH", "amount": 20000},
            {"method": "CARD", "amount": 30000},
        ]})

        assert result["order"]["status"] == "PAID"
        assert result["order"]["payment_method"] == "SPLIT"
        methods = sorted(p.method for p in db_session.query(Payment).filter_by(order_id=order.id))
        assert methods == ["CARD", "CASH"]

        db_session.refresh(shift)
        assert shift.cash_sales == 20000
        assert shift.card_sales == 30000

    def test_split_short_writes_nothing(self, db_session, no_tax, shift):
        order = make_order(50000)
        with pytest.raises(InsufficientPaymentError):
            settle(order.id, {"payments": [
                {"method": "CASH", "amount": 20000},
                {"method": "CARD", "amount": 20000},
            ]})
        assert db_session.query(Payment).count() == 0
        assert db_session.query(Settlement).count() == 0
        assert order_service.get_order(order.id).status == "PENDING"

    def test_split_over_is_rejected(self, db_session, no_tax, shift):
        order = make_order(50000)
        with pytest.raises(OverpaymentError):
            settle(order.id, {"payments": [
                {"method": "CASH", "amount": 30000},
                {"method": "CARD", "amount": 30000},
            ]})

    def test_split_needs_two_legs(self, db_session, no_tax, shift):
        order = make_order(50000)
        with pytest.raises(ValidationError):
            settle(order.id, {"payments": [{"method": "CASH", "amount": 50000}]})

    def test_split_leg_must_be_positive(self, db_session, no_tax, shift):
        order = make_order(50000)
        with pytest.raises(ValidationError):
            settle(order.id, {"payments": [
                {"method": "CASH", "amount": 0},
                {"method": "CARD", "amount": 50000},
            ]})

    def test_cash_leg_change(self, db_session, no_tax, shift):
        order = make_order(50000)
        result = settle(order.id, {"payments": [
            {"method": "CASH", "amount": 20000, "received_amount": 25000},
            {"method": "CARD", "amount": 30000},
        ]})
        assert result["change_amount"] == 5000


# =============================================================================
# GUARDS
# =============================================================================


class TestSettlementGuards:
    def test_resettling_paid_order_is_rejected(self, db_session, no_tax, shift):
        order = make_order(25000)
        settle(order.id, {"method": "CASH", "received_amount": 25000})
        with pytest.raises(AlreadyPaidError):
            settle(order.id, {"method": "CASH", "received_amount": 25000})

        assert db_session.query(Payment).count() == 1
        db_session.refresh(shift)
        assert shift.cash_sales == 25000

    def test_same_idempotency_key_replays(self, db_session, no_tax, shift):
        order = make_order(25000)
        first = settle(order.id, {"method": "CASH", "received_amount": 30000}, key="k-1")
        again = settle(order.id, {"method": "CASH", "received_amount": 30000}, key="k-1")

        assert again["replayed"] is True
        assert again["settlement"]["id"] == first["settlement"]["id"]
        assert again["change_amount"] == 5000
        assert db_session.query(Payment).count() == 1
        assert db_session.query(LedgerEvent).filter_by(event_type="ORDER_SETTLED").count() == 1

    def test_different_key_on_paid_order_is_rejected(self, db_session, no_tax, shift):
        order = make_order(25000)
        settle(order.id, {"method": "CASH", "received_amount": 25000}, key="k-1")
        with pytest.raises(AlreadyPaidError):
            settle(order.id, {"method": "CASH", "received_amount": 25000}, key="k-2")

    def test_key_reused_for_another_order_is_rejected(self, db_session, no_tax, shift):
        settle(make_order(1000).id, {"method": "CASH", "received_amount": 1000}, key="k-1")
        other = make_order(2000)
        with pytest.raises(ValidationError):
            settle(other.id, {"method": "CASH", "received_amount": 2000}, key="k-1")

    def test_key_taken_between_check_and_commit_is_rejected(self, db_session, no_tax, shift, monkeypatch):
        settle(make_order(1000).id, {"method": "CARD"}, key="k-1")
        other = make_order(2000)
        lookup = settlement_service.settlement_for_key
        calls = []

        def stale_lookup(key):
            # First lookup runs before the competing settlement is visible
            calls.append(key)
            return None if len(calls) == 1 else lookup(key)

        monkeypatch.setattr(settlement_service, "settlement_for_key", stale_lookup)
        with pytest.raises(ValidationError) as exc:
            settle(other.id, {"method": "CARD"}, key="k-1")

        assert exc.value.field == "idempotency_key"
        assert db_session.query(Settlement).count() == 1
        assert order_service.get_order(other.id).status == "PENDING"

    def test_lost_invoice_number_race_is_retryable(self, db_session, no_tax, shift, monkeypatch):
        taken = settle(make_order(1000).id, {"method": "CARD"})["settlement"]["invoice_number"]
        order = make_order(2000)
        monkeypatch.setattr(settlement_service, "next_invoice_number", lambda: taken)

        with pytest.raises(StoreUnavailableError) as exc:
            settle(order.id, {"method": "CARD"})

        assert exc.value.retryable
        assert db_session.query(Settlement).count() == 1
        assert db_session.query(Payment).filter_by(order_id=order.id).count() == 0
        assert order_service.get_order(order.id).status == "PENDING"

    def test_cancelled_order_cannot_be_settled(self, db_session, no_tax, shift):
        order = make_order(25000)
        settlement_service.cancel_order(order.id)
        with pytest.raises(OrderStateError):
            settle(order.id, {"method": "CASH", "received_amount": 25000})

    def test_no_open_shift(self, db_session, no_tax):
        order = make_order(25000)
        with pytest.raises(NoOpenShiftError):
            settle(order.id, {"method": "CASH", "received_amount": 25000})

    def test_store_failure_rolls_back_and_is_retryable(self, db_session, no_tax, shift, monkeypatch):
        order = make_order(25000)

        def broken(*args, **kwargs):
            raise OperationalError("UPDATE shifts", {}, Exception("database is locked"))

        monkeypatch.setattr(settlement_service, "recompute_shift_totals", broken)
        with pytest.raises(StoreUnavailableError) as exc:
            settle(order.id, {"method": "CASH", "received_amount": 25000})

        assert exc.value.retryable
        assert db_session.query(Payment).count() == 0
        assert db_session.query(Settlement).count() == 0
        assert order_service.get_order(order.id).status == "PENDING"
        db_session.refresh(shift)
        assert shift.cash_sales == 0


# =============================================================================
# TABLES, DISCOUNTS, ZERO DUE
# =============================================================================


class TestSettlementSideEffects:
    def test_table_released_when_last_order_paid(self, db_session, no_tax, shift, table):
        first = make_order(10000, table=table)
        second = make_order(5000, table=table)

        result = settle(first.id, {"method": "CASH", "received_amount": 10000})
        assert result["table_released"] is False
        assert order_service.get_table(table.id).status == "OCCUPIED"

        result = settle(second.id, {"method": "CASH", "received_amount": 5000})
        assert result["table_released"] is True
        assert order_service.get_table(table.id).status == "AVAILABLE"

    def test_fixed_discount_clamps_to_zero_due(self, db_session, shift):
        order = make_order(30000)
        result = settle(order.id, {
            "method": "CASH",
            "received_amount": 0,
            "discount": {"discount_type": "FIXED", "value": 9000000, "reason": "Cortesia"},
        })
        s = result["settlement"]
        assert s["discount_amount"] == 30000
        assert s["taxable_base"] == 0
        assert s["tax"] == 0
        assert s["amount_due"] == 0
        assert result["order"]["status"] == "PAID"
        assert db_session.query(Payment).count() == 0

    def test_percentage_discount_with_tax(self, db_session, shift):
        order = make_order(50000)
        result = settle(order.id, {
            "method": "CARD",
            "discount": {"discount_type": "PERCENTAGE", "value": 10, "reason": "Cliente frecuente"},
        })
        s = result["settlement"]
        assert s["discount_amount"] == 5000
        assert s["tax"] == 3600
        assert s["amount_due"] == 48600

    def test_preview_matches_settlement(self, db_session, shift):
        order = make_order(37000)
        preview = settlement_service.preview_amount_due(order.id, {"tip_percent": 10})
        result = settle(order.id, {"method": "CARD", "tip_percent": 10})
        assert preview["amount_due"] == result["settlement"]["amount_due"]
        assert preview["suggested_tip"] == 3700


# =============================================================================
# PURE PLANNING
# =============================================================================


class TestPlanPayments:
    def test_cash_plan(self):
        plan = plan_payments(parse_settlement_request({"method": "CASH", "received_amount": 30000}), 25000)
        assert plan.amount_paid == 25000
        assert plan.change_amount == 5000
        assert plan.takes_cash

    def test_card_plan_does_not_take_cash(self):
        plan = plan_payments(parse_settlement_request({"method": "CARD"}), 25000)
        assert not plan.takes_cash
        assert plan.legs[0].amount == 25000

    def test_zero_due_has_no_legs(self):
        plan = plan_payments(parse_settlement_request({"method": "CASH", "received_amount": 0}), 0)
        assert plan.legs == []

    def test_received_amount_only_for_cash(self):
        with pytest.raises(ValidationError):
            parse_settlement_request({"method": "CARD", "received_amount": 1000})

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            parse_settlement_request({"method": "BITCOIN"})


def test_open_shift_is_required_again_after_close(db_session, no_tax, shift):
    shift_service.close_shift(shift.id, 100000, closed_by=OPERATOR)
    order = make_order(1000)
    with pytest.raises(NoOpenShiftError):
        settle(order.id, {"method": "CASH", "received_amount": 1000})
