# Overview: Flask API routes for orders, discounts and settlement; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Order store: create, items, kitchen flow, status
- Settlement: POST /<id>/settle with an optional Idempotency-Key header;
  a replay with the same key returns the original settlement (200)
- Print failures never fail a request; they come back as "warnings"
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_operator
from ..errors import CajaError, error_response, ValidationError
from ..services import discount_service, order_service, settlement_service
from ..time_utils import parse_iso_date
from ..validation import get_payload


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _with_print(order, result) -> dict:
    body = {"order": order.to_dict(), "warnings": []}
    if result is not None:
        body["print"] = result.to_dict()
        warning = result.as_warning()
        if warning:
            body["warnings"].append(f"Kitchen ticket: {warning}")
    return body


# =============================================================================
# ORDER STORE
# =============================================================================

@orders_bp.post("")
@require_operator
def create_order_route():
    """
    Request body:
    {
        "order_type": "DINE_IN" | "TAKEAWAY" | "DELIVERY",
        "table_id": 3,
        "waiter_name": "Ana",
        "items": [{"product_name": "Bandeja paisa", "quantity": 2, "unit_price": 28000, "notes": ""}],
        "notes": "optional"
    }
    """
    try:
        data = get_payload(request.get_json(silent=True))
        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValidationError("items must be a list", field="items")
        order = order_service.create_order(
            order_type=data.get("order_type") or "DINE_IN",
            table_id=data.get("table_id"),
            waiter_name=data.get("waiter_name"),
            operator_id=g.operator_id,
            terminal_id=g.terminal_id,
            items=items,
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_operator
def list_orders_route():
    """Filters: status (comma separated), date (YYYY-MM-DD, local), table_id, shift_id."""
    try:
        day = parse_iso_date(request.args.get("date"))
    except ValueError:
        return jsonify({"error": "date must be YYYY-MM-DD", "code": "VALIDATION_ERROR", "field": "date"}), 400

    status_raw = request.args.get("status")
    statuses = [s.strip() for s in status_raw.split(",") if s.strip()] if status_raw else None
    orders = order_service.list_orders(
        status=statuses,
        day=day,
        table_id=request.args.get("table_id", type=int),
        shift_id=request.args.get("shift_id", type=int),
    )
    return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)}), 200


@orders_bp.get("/<int:order_id>")
@require_operator
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        body = {"order": order.to_dict()}
        applied = discount_service.get_applied_discount(order.id)
        body["discount"] = applied.to_dict() if applied else None
        body["settlement"] = order.settlement.to_dict() if order.settlement is not None else None
        return jsonify(body), 200
    except CajaError as e:
        return error_response(e)


@orders_bp.post("/<int:order_id>/items")
@require_operator
def add_item_route(order_id: int):
    try:
        data = get_payload(request.get_json(silent=True))
        order, result = order_service.add_item(order_id, data, actor_id=g.operator_id)
        return jsonify(_with_print(order, result)), 201
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
@require_operator
def update_item_route(order_id: int, item_id: int):
    try:
        data = get_payload(request.get_json(silent=True))
        order, result = order_service.update_item(order_id, item_id, data, actor_id=g.operator_id)
        return jsonify(_with_print(order, result)), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_operator
def remove_item_route(order_id: int, item_id: int):
    try:
        order, result = order_service.remove_item(order_id, item_id, actor_id=g.operator_id)
        return jsonify(_with_print(order, result)), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/send-to-kitchen")
@require_operator
def send_to_kitchen_route(order_id: int):
    try:
        order, result = order_service.send_to_kitchen(order_id, actor_id=g.operator_id)
        return jsonify(_with_print(order, result)), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to send order to kitchen")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
@require_operator
def update_status_route(order_id: int):
    try:
        data = get_payload(request.get_json(silent=True))
        order = order_service.update_order_status(order_id, data.get("status"), actor_id=g.operator_id)
        return jsonify({"order": order.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_operator
def cancel_order_route(order_id: int):
    try:
        data = get_payload(request.get_json(silent=True))
        order = settlement_service.cancel_order(order_id, data.get("reason"), cancelled_by=g.operator_id)
        return jsonify({"order": order.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DISCOUNTS
# =============================================================================

@orders_bp.post("/<int:order_id>/discount")
@require_operator
def apply_discount_route(order_id: int):
    """
    Request body:
    {"discount_type": "PERCENTAGE" | "FIXED", "value": 10, "reason": "Cliente frecuente"}
    or
    {"preset_id": 2, "reason": "optional"}
    """
    try:
        data = get_payload(request.get_json(silent=True))
        applied = discount_service.apply_discount(
            order_id,
            discount_type=data.get("discount_type") or data.get("type"),
            value=data.get("value"),
            reason=data.get("reason"),
            applied_by=g.operator_id,
            preset_id=data.get("preset_id"),
        )
        order = order_service.get_order(order_id)
        return jsonify({"discount": applied.to_dict(), "order": order.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply discount")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/discount")
@require_operator
def remove_discount_route(order_id: int):
    try:
        order = discount_service.remove_discount(order_id, removed_by=g.operator_id)
        return jsonify({"order": order.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove discount")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SETTLEMENT
# =============================================================================

@orders_bp.post("/<int:order_id>/preview")
@require_operator
def preview_route(order_id: int):
    """Amount due for the given tip/discount. Read-only."""
    try:
        data = get_payload(request.get_json(silent=True))
        return jsonify(settlement_service.preview_amount_due(order_id, data)), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to preview amount due")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/settle")
@require_operator
def settle_route(order_id: int):
    """
    Settle an order on the caller's terminal shift.

    Headers:
        Idempotency-Key: client-generated token, reused on retries

    Request body (simple):
    {"method": "CASH", "received_amount": 30000, "tip": 0}

    Request body (split):
    {"payments": [{"method": "CASH", "amount": 20000}, {"method": "CARD", "amount": 30000}]}
    """
    try:
        result = settlement_service.settle_order(
            order_id,
            request.get_json(silent=True),
            operator_id=g.operator_id,
            terminal_id=g.terminal_id,
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        return jsonify(result), 200 if result["replayed"] else 201
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to settle order")
        return jsonify({"error": "Internal server error"}), 500
