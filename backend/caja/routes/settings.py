# Overview: Flask API routes for restaurant settings; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_operator
from ..errors import CajaError, error_response
from ..services import settings_service
from ..validation import get_payload


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_operator
def get_settings_route():
    return jsonify({"settings": settings_service.get_all_settings()}), 200


@settings_bp.get("/<key>")
@require_operator
def get_setting_route(key: str):
    try:
        return jsonify({"key": key, "value": settings_service.get_setting(key)}), 200
    except CajaError as e:
        return error_response(e)


@settings_bp.route("", methods=["PUT", "PATCH"])
@require_operator
def update_settings_route():
    """
    Request body: any subset of the catalog keys.
    {"tax_rate": 8, "tax_enabled": true, "tip_rate": 10}
    """
    try:
        data = get_payload(request.get_json(silent=True))
        settings = settings_service.set_settings(data, updated_by=g.operator_id)
        return jsonify({"settings": settings}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update settings")
        return jsonify({"error": "Internal server error"}), 500
