"""
HTTP API tests.

Verifies:
- Operator identity header is required on cashier endpoints
- Domain errors map to JSON bodies with a stable code and status
- Settlement honours the Idempotency-Key header
- Health, drafts, ledger and settings endpoints
"""

import pytest

from caja.services import order_service, shift_service

from conftest import OPERATOR, TERMINAL, make_order, operator_headers


PROTECTED_ENDPOINTS = [
    ("get", "/api/shifts/current"),
    ("post", "/api/shifts"),
    ("get", "/api/orders"),
    ("post", "/api/orders"),
    ("get", "/api/tables"),
    ("get", "/api/refunds"),
    ("get", "/api/settings"),
    ("get", "/api/drafts"),
    ("get", "/api/ledger"),
    ("get", "/api/discount-presets"),
]


@pytest.mark.parametrize("method,url", PROTECTED_ENDPOINTS)
def test_operator_header_required(client, db_session, method, url):
    response = getattr(client, method)(url, json={})
    assert response.status_code == 401
    assert response.get_json()["code"] == "OPERATOR_REQUIRED"


class TestShiftEndpoints:
    def test_open_and_current(self, client, db_session):
        response = client.post("/api/shifts", json={"opening_amount": 100000}, headers=operator_headers())
        assert response.status_code == 201
        shift = response.get_json()["shift"]
        assert shift["terminal_id"] == TERMINAL
        assert shift["status"] == "OPEN"

        current = client.get("/api/shifts/current", headers=operator_headers()).get_json()
        assert current["shift"]["id"] == shift["id"]
        assert current["poll_interval_seconds"] == 5

    def test_current_without_shift(self, client, db_session):
        body = client.get("/api/shifts/current", headers=operator_headers()).get_json()
        assert body["shift"] is None
        assert body["pending_orders"] == []

    def test_second_open_is_conflict(self, client, db_session, shift):
        response = client.post("/api/shifts", json={"opening_amount": 1}, headers=operator_headers())
        assert response.status_code == 409
        assert response.get_json()["shift_id"] == shift.id

    def test_missing_opening_amount(self, client, db_session):
        response = client.post("/api/shifts", json={}, headers=operator_headers())
        assert response.status_code == 400
        assert response.get_json()["field"] == "opening_amount"

    def test_unexpected_failure_is_a_500(self, client, db_session, shift, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("totals unavailable")

        monkeypatch.setattr(shift_service, "get_shift_summary", broken)
        monkeypatch.setattr(shift_service, "list_pending_orders", broken)
        for url in (f"/api/shifts/{shift.id}", f"/api/shifts/{shift.id}/pending-orders"):
            response = client.get(url, headers=operator_headers())
            assert response.status_code == 500
            assert response.get_json() == {"error": "Internal server error"}

    def test_close_blocked_lists_pending_orders(self, client, db_session, no_tax, shift, table):
        order = make_order(25000, table=table)
        response = client.post(
            f"/api/shifts/{shift.id}/close",
            json={"counted_cash_amount": 125000},
            headers=operator_headers(),
        )
        assert response.status_code == 409
        body = response.get_json()
        assert body["code"] == "PENDING_ORDERS"
        assert [o["id"] for o in body["pending_orders"]] == [order.id]
        assert body["table_pending"] == 1

    def test_reconcile_preview_is_read_only(self, client, db_session, no_tax, shift):
        order = make_order(25000)
        client.post(
            f"/api/orders/{order.id}/settle",
            json={"method": "CASH", "received_amount": 25000},
            headers=operator_headers(),
        )
        response = client.post(
            f"/api/shifts/{shift.id}/reconcile",
            json={"bills": {"50000": 2, "10000": 1, "2000": 4}},
            headers=operator_headers(),
        )
        body = response.get_json()
        assert response.status_code == 200
        assert body["difference"] == -7000
        assert body["status"] == "SHORT"

        current = client.get("/api/shifts/current", headers=operator_headers()).get_json()
        assert current["shift"]["status"] == "OPEN"

    def test_no_open_shift_on_settle(self, client, db_session, no_tax):
        order = make_order(10000)
        response = client.post(
            f"/api/orders/{order.id}/settle", json={"method": "CARD"}, headers=operator_headers(),
        )
        assert response.status_code == 409
        assert response.get_json()["code"] == "NO_OPEN_SHIFT"


class TestOrderEndpoints:
    def test_create_and_get(self, client, db_session, shift, table):
        response = client.post("/api/orders", json={
            "order_type": "DINE_IN",
            "table_id": table.id,
            "waiter_name": "Luis",
            "items": [{"product_name": "Ajiaco", "quantity": 2, "unit_price": 15000}],
        }, headers=operator_headers())
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["subtotal"] == 30000
        assert order["shift_id"] == shift.id

        body = client.get(f"/api/orders/{order['id']}", headers=operator_headers()).get_json()
        assert body["order"]["id"] == order["id"]
        assert body["settlement"] is None

    def test_order_number_conflict_is_retryable(self, client, db_session, shift, monkeypatch):
        taken = make_order(1000).order_number
        monkeypatch.setattr(order_service, "_next_order_number", lambda: taken)
        response = client.post("/api/orders", json={
            "order_type": "TAKEAWAY",
            "items": [{"product_name": "Arepa", "quantity": 1, "unit_price": 4000}],
        }, headers=operator_headers())
        assert response.status_code == 503
        body = response.get_json()
        assert body["code"] == "STORE_UNAVAILABLE"
        assert body["retryable"] is True

    def test_items_must_be_a_list(self, client, db_session):
        response = client.post(
            "/api/orders", json={"order_type": "TAKEAWAY", "items": "ajiaco"}, headers=operator_headers(),
        )
        assert response.status_code == 400

    def test_bad_date_filter(self, client, db_session):
        response = client.get("/api/orders?date=ayer", headers=operator_headers())
        assert response.status_code == 400

    def test_missing_order(self, client, db_session):
        response = client.get("/api/orders/424242", headers=operator_headers())
        assert response.status_code == 404
        assert response.get_json()["code"] == "NOT_FOUND"

    def test_send_to_kitchen_with_printing_disabled(self, client, db_session, shift):
        order = make_order(10000)
        response = client.post(f"/api/orders/{order.id}/send-to-kitchen", headers=operator_headers())
        body = response.get_json()
        assert response.status_code == 200
        assert body["order"]["status"] == "IN_KITCHEN"
        assert body["warnings"] == []


class TestSettleEndpoint:
    def test_settle_then_replay(self, client, db_session, no_tax, shift):
        order = make_order(25000)
        headers = dict(operator_headers(), **{"Idempotency-Key": "pago-123"})
        payload = {"method": "CASH", "received_amount": 30000}

        first = client.post(f"/api/orders/{order.id}/settle", json=payload, headers=headers)
        assert first.status_code == 201
        first_body = first.get_json()
        assert first_body["change_amount"] == 5000
        assert first_body["replayed"] is False

        second = client.post(f"/api/orders/{order.id}/settle", json=payload, headers=headers)
        assert second.status_code == 200
        second_body = second.get_json()
        assert second_body["replayed"] is True
        assert second_body["settlement"]["id"] == first_body["settlement"]["id"]

    def test_second_settlement_without_key_is_conflict(self, client, db_session, no_tax, shift):
        order = make_order(25000)
        payload = {"method": "CARD"}
        client.post(f"/api/orders/{order.id}/settle", json=payload, headers=operator_headers())
        again = client.post(f"/api/orders/{order.id}/settle", json=payload, headers=operator_headers())
        assert again.status_code == 409
        assert again.get_json()["code"] == "ALREADY_PAID"

    def test_insufficient_cash(self, client, db_session, no_tax, shift):
        order = make_order(25000)
        response = client.post(
            f"/api/orders/{order.id}/settle",
            json={"method": "CASH", "received_amount": 20000},
            headers=operator_headers(),
        )
        assert response.status_code == 422
        assert response.get_json()["code"] == "INSUFFICIENT_PAYMENT"

    def test_preview(self, client, db_session, no_tax, shift):
        order = make_order(20000)
        response = client.post(
            f"/api/orders/{order.id}/preview", json={"tip": 2000}, headers=operator_headers(),
        )
        body = response.get_json()
        assert response.status_code == 200
        assert body["amount_due"] == 22000


class TestRefundEndpoints:
    def test_create_and_approve(self, client, db_session, no_tax, shift):
        order = make_order(20000)
        client.post(
            f"/api/orders/{order.id}/settle", json={"method": "CASH", "received_amount": 20000},
            headers=operator_headers(),
        )
        response = client.post("/api/refunds", json={
            "order_id": order.id,
            "amount": 5000,
            "method": "CASH",
            "reason_code": "QUALITY",
        }, headers=operator_headers())
        assert response.status_code == 201
        refund = response.get_json()["refund"]
        assert refund["status"] == "PENDING"

        approved = client.post(f"/api/refunds/{refund['id']}/approve", json={}, headers=operator_headers("gerente"))
        assert approved.status_code == 200
        assert approved.get_json()["refund"]["decided_by"] == "gerente"

        again = client.post(f"/api/refunds/{refund['id']}/reject", json={}, headers=operator_headers())
        assert again.status_code == 409


class TestHealthEndpoint:
    def test_health_without_printer(self, client, db_session):
        response = client.get("/health")
        body = response.get_json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["print_server"]["status"] == "disabled"
        assert body["timestamp"].endswith("Z")


class TestDraftEndpoints:
    def test_save_get_delete(self, client, db_session):
        cart = {"items": [{"product_name": "Arepa", "quantity": 2}]}
        saved = client.put("/api/drafts/Mesa-3", json={"payload": cart}, headers=operator_headers())
        assert saved.status_code == 200
        assert saved.get_json()["draft"]["table_key"] == "mesa-3"

        fetched = client.get("/api/drafts/mesa-3", headers=operator_headers()).get_json()
        assert fetched["draft"]["payload"] == cart

        other = client.get("/api/drafts/mesa-3", headers=operator_headers("otro"))
        assert other.status_code == 404

        deleted = client.delete("/api/drafts/mesa-3", headers=operator_headers())
        assert deleted.get_json() == {"deleted": True}
        assert client.get("/api/drafts", headers=operator_headers()).get_json()["count"] == 0

    def test_payload_must_be_object(self, client, db_session):
        response = client.put("/api/drafts/mesa-1", json={"payload": [1, 2]}, headers=operator_headers())
        assert response.status_code == 400


class TestLedgerEndpoint:
    def test_events_newest_first_with_cursor(self, client, db_session, shift):
        make_order(1000)
        make_order(2000)
        page = client.get("/api/ledger?limit=2", headers=operator_headers()).get_json()
        assert len(page["items"]) == 2
        assert page["items"][0]["id"] > page["items"][1]["id"]
        assert page["next_cursor"] == page["items"][-1]["id"]

        rest = client.get(
            f"/api/ledger?limit=2&cursor={page['next_cursor']}", headers=operator_headers(),
        ).get_json()
        assert [e["event_type"] for e in rest["items"]] == ["SHIFT_OPENED"]
        assert rest["next_cursor"] is None

    def test_filter_by_category(self, client, db_session, shift):
        make_order(1000)
        body = client.get("/api/ledger?category=shift", headers=operator_headers()).get_json()
        assert {e["event_category"] for e in body["items"]} == {"shift"}

    def test_bad_cursor(self, client, db_session):
        response = client.get("/api/ledger?cursor=abc", headers=operator_headers())
        assert response.status_code == 400


class TestSettingsEndpoints:
    def test_defaults_and_update(self, client, db_session):
        body = client.get("/api/settings", headers=operator_headers()).get_json()
        assert body["settings"]["currency"] == "COP"

        response = client.put("/api/settings", json={"tax_rate": 19}, headers=operator_headers())
        assert response.status_code == 200
        assert float(response.get_json()["settings"]["tax_rate"]) == 19.0

        single = client.get("/api/settings/tax_rate", headers=operator_headers()).get_json()
        assert float(single["value"]) == 19.0

    def test_unknown_key(self, client, db_session):
        response = client.patch("/api/settings", json={"color": "rojo"}, headers=operator_headers())
        assert response.status_code == 404

    def test_out_of_range_tax(self, client, db_session):
        response = client.patch("/api/settings", json={"tax_rate": 150}, headers=operator_headers())
        assert response.status_code == 400


def test_cors_headers(client, db_session):
    response = client.get("/health", headers={"Origin": "http://localhost:5173"})
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
    assert "Idempotency-Key" in response.headers["Access-Control-Allow-Headers"]
