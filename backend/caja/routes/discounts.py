# Overview: Flask API routes for discount presets; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_operator
from ..errors import CajaError, error_response
from ..services import discount_service
from ..validation import get_payload


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discount-presets")


@discounts_bp.get("")
@require_operator
def list_presets_route():
    include_inactive = request.args.get("all", "").lower() in ("1", "true", "yes")
    presets = discount_service.list_presets(include_inactive=include_inactive)
    return jsonify({"items": [p.to_dict() for p in presets], "count": len(presets)}), 200


@discounts_bp.post("")
@require_operator
def create_preset_route():
    """
    Request body:
    {
        "name": "Cumpleaños",
        "discount_type": "PERCENTAGE" | "FIXED",
        "value": 15,
        "description": "optional",
        "requires_authorization": false
    }
    """
    try:
        data = get_payload(request.get_json(silent=True))
        preset = discount_service.create_preset(
            name=data.get("name"),
            discount_type=data.get("discount_type"),
            value=data.get("value"),
            description=data.get("description"),
            requires_authorization=data.get("requires_authorization", False),
            created_by=g.operator_id,
        )
        return jsonify({"preset": preset.to_dict()}), 201
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create discount preset")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.patch("/<int:preset_id>")
@require_operator
def update_preset_route(preset_id: int):
    try:
        data = get_payload(request.get_json(silent=True))
        preset = discount_service.update_preset(preset_id, data, updated_by=g.operator_id)
        return jsonify({"preset": preset.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update discount preset")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.delete("/<int:preset_id>")
@require_operator
def deactivate_preset_route(preset_id: int):
    """Presets are deactivated, never deleted; applied discounts keep their link."""
    try:
        preset = discount_service.deactivate_preset(preset_id, updated_by=g.operator_id)
        return jsonify({"preset": preset.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate discount preset")
        return jsonify({"error": "Internal server error"}), 500
