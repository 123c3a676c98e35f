# Overview: Flask API routes for refunds (devoluciones); parses input and returns JSON responses.

"""
Refund API Routes

DESIGN:
- Refunds are recorded against a PAID order on the caller's open shift
- New refunds start PENDING unless "approve": true is sent
- Only approved CASH refunds reduce the expected drawer amount
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_operator
from ..errors import CajaError, error_response
from ..services import refund_service
from ..validation import get_payload


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


@refunds_bp.post("")
@require_operator
def create_refund_route():
    """
    Request body:
    {
        "order_id": 12,
        "amount": 15000,
        "method": "CASH",
        "reason_code": "QUALITY",
        "notes": "required when reason_code is OTHER",
        "approve": false
    }
    """
    try:
        data = get_payload(request.get_json(silent=True))
        refund = refund_service.create_refund(
            data.get("order_id"),
            data.get("amount"),
            method=data.get("method"),
            reason_code=data.get("reason_code"),
            created_by=g.operator_id,
            terminal_id=g.terminal_id,
            notes=data.get("notes"),
            approve=bool(data.get("approve", False)),
        )
        return jsonify({"refund": refund.to_dict()}), 201
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create refund")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("")
@require_operator
def list_refunds_route():
    refunds = refund_service.list_refunds(
        status=(request.args.get("status") or "").upper() or None,
        shift_id=request.args.get("shift_id", type=int),
        order_id=request.args.get("order_id", type=int),
    )
    return jsonify({"items": [r.to_dict() for r in refunds], "count": len(refunds)}), 200


@refunds_bp.get("/<int:refund_id>")
@require_operator
def get_refund_route(refund_id: int):
    try:
        return jsonify({"refund": refund_service.get_refund(refund_id).to_dict()}), 200
    except CajaError as e:
        return error_response(e)


@refunds_bp.post("/<int:refund_id>/approve")
@require_operator
def approve_refund_route(refund_id: int):
    try:
        data = get_payload(request.get_json(silent=True))
        refund = refund_service.approve_refund(refund_id, decided_by=g.operator_id, note=data.get("note"))
        return jsonify({"refund": refund.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve refund")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.post("/<int:refund_id>/reject")
@require_operator
def reject_refund_route(refund_id: int):
    try:
        data = get_payload(request.get_json(silent=True))
        refund = refund_service.reject_refund(refund_id, decided_by=g.operator_id, note=data.get("note"))
        return jsonify({"refund": refund.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject refund")
        return jsonify({"error": "Internal server error"}), 500
