# Overview: Flask API routes for cashier shifts; parses input and returns JSON responses.

"""
Shift API Routes

DESIGN:
- Shift lifecycle: open -> close (immutable once closed)
- Close is refused while the shift still has unpaid orders (409 with the list)
- Arqueo preview is pure: it never writes
- GET /current is the polling endpoint for cashier screens
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_operator
from ..errors import CajaError, error_response, ValidationError
from ..services import shift_service, reconciliation_service
from ..time_utils import to_utc_z, utcnow
from ..validation import get_payload


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


def _poll_meta() -> dict:
    return {
        "refreshed_at": to_utc_z(utcnow()),
        "poll_interval_seconds": current_app.config.get("POLL_INTERVAL_SECONDS", 5),
    }


@shifts_bp.post("")
@require_operator
def open_shift_route():
    """
    Open a shift on the caller's terminal.

    Request body:
    {
        "opening_amount": 100000,
        "notes": "optional"
    }
    """
    try:
        data = get_payload(request.get_json(silent=True))
        if data.get("opening_amount") is None:
            raise ValidationError("opening_amount is required", field="opening_amount")
        shift = shift_service.open_shift(
            operator_id=g.operator_id,
            opening_amount=data.get("opening_amount"),
            terminal_id=g.terminal_id,
            notes=data.get("notes"),
        )
        return jsonify({"shift": shift.to_dict()}), 201
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current")
@require_operator
def current_shift_route():
    """Open shift of the caller's terminal with pending orders, or shift: null."""
    try:
        shift = shift_service.get_open_shift(g.terminal_id)
        if shift is None:
            body = {"shift": None, "pending_orders": [], "terminal_id": g.terminal_id}
            body.update(_poll_meta())
            return jsonify(body), 200
        return jsonify(shift_service.get_shift_summary(shift.id)), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load current shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("")
@require_operator
def list_shifts_route():
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, 500))
    try:
        shifts = shift_service.list_shifts(
            terminal_id=request.args.get("terminal_id"),
            status=(request.args.get("status") or "").upper() or None,
            limit=limit,
        )
        return jsonify({"items": [s.to_dict() for s in shifts], "count": len(shifts)}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list shifts")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/denominations")
def denominations_route():
    return jsonify(reconciliation_service.default_denominations()), 200


@shifts_bp.get("/<int:shift_id>")
@require_operator
def get_shift_route(shift_id: int):
    try:
        return jsonify(shift_service.get_shift_summary(shift_id)), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/<int:shift_id>/pending-orders")
@require_operator
def pending_orders_route(shift_id: int):
    try:
        shift = shift_service.get_shift(shift_id)
        pending = shift_service.list_pending_orders(shift)
        return jsonify({"items": pending, "count": len(pending)}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list pending orders")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/reconcile")
@require_operator
def reconcile_route(shift_id: int):
    """
    Arqueo preview against the shift's current totals. Nothing is stored.

    Request body:
    {
        "bills": {"50000": 2, "10000": 1},
        "coins": {"500": 4},
        "counted_card": 0,
        "counted_transfer": 0
    }
    """
    try:
        data = get_payload(request.get_json(silent=True))
        shift = shift_service.get_shift(shift_id)
        totals = shift_service.compute_shift_totals(shift.id) if shift.is_open else None
        result = reconciliation_service.reconcile_shift(shift, data, totals=totals)
        body = result.to_dict()
        body["shift_id"] = shift.id
        return jsonify(body), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/close")
@require_operator
def close_shift_route(shift_id: int):
    """
    Close a shift.

    Request body (either or both):
    {
        "counted_cash_amount": 118000,
        "counts": {"bills": {...}, "coins": {...}, "counted_card": 0, "counted_transfer": 0},
        "notes": "optional"
    }
    """
    try:
        data = get_payload(request.get_json(silent=True))
        shift = shift_service.close_shift(
            shift_id,
            data.get("counted_cash_amount"),
            data.get("notes"),
            closed_by=g.operator_id,
            counts=data.get("counts"),
        )
        return jsonify({"shift": shift.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500
