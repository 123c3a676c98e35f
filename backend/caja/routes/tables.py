# Overview: Flask API routes for dining tables; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_operator
from ..errors import CajaError, error_response
from ..services import order_service
from ..time_utils import to_utc_z, utcnow
from ..validation import get_payload


tables_bp = Blueprint("tables", __name__, url_prefix="/api/tables")


@tables_bp.get("")
@require_operator
def list_tables_route():
    """Table map for the floor screen. Clients poll this."""
    include_inactive = request.args.get("all", "").lower() in ("1", "true", "yes")
    tables = order_service.list_tables(include_inactive=include_inactive)
    return jsonify({
        "items": [t.to_dict() for t in tables],
        "count": len(tables),
        "refreshed_at": to_utc_z(utcnow()),
        "poll_interval_seconds": current_app.config.get("POLL_INTERVAL_SECONDS", 5),
    }), 200


@tables_bp.post("")
@require_operator
def create_table_route():
    """
    Request body:
    {"name": "Mesa 4", "area": "Terraza", "capacity": 4}
    """
    try:
        data = get_payload(request.get_json(silent=True))
        table = order_service.create_table(
            data.get("name"),
            area=data.get("area"),
            capacity=data.get("capacity", 4),
        )
        return jsonify({"table": table.to_dict()}), 201
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create table")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.get("/<int:table_id>")
@require_operator
def get_table_route(table_id: int):
    try:
        return jsonify({"table": order_service.get_table(table_id).to_dict()}), 200
    except CajaError as e:
        return error_response(e)


@tables_bp.post("/<int:table_id>/status")
@require_operator
def set_table_status_route(table_id: int):
    """Manual override: {"status": "AVAILABLE" | "OCCUPIED"}."""
    try:
        data = get_payload(request.get_json(silent=True))
        table = order_service.set_table_status(table_id, data.get("status"), actor_id=g.operator_id)
        return jsonify({"table": table.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update table status")
        return jsonify({"error": "Internal server error"}), 500
