# Overview: Flask API routes for per-operator draft carts; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_operator
from ..errors import CajaError, error_response
from ..services import draft_service
from ..validation import get_payload


drafts_bp = Blueprint("drafts", __name__, url_prefix="/api/drafts")


@drafts_bp.get("")
@require_operator
def list_drafts_route():
    drafts = draft_service.list_drafts(g.operator_id)
    return jsonify({"items": [d.to_dict() for d in drafts], "count": len(drafts)}), 200


@drafts_bp.get("/<table_key>")
@require_operator
def get_draft_route(table_key: str):
    try:
        return jsonify({"draft": draft_service.get_draft(g.operator_id, table_key).to_dict()}), 200
    except CajaError as e:
        return error_response(e)


@drafts_bp.put("/<table_key>")
@require_operator
def save_draft_route(table_key: str):
    """Request body: {"payload": {...cart...}}"""
    try:
        data = get_payload(request.get_json(silent=True))
        draft = draft_service.save_draft(g.operator_id, table_key, data.get("payload"))
        return jsonify({"draft": draft.to_dict()}), 200
    except CajaError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.delete("/<table_key>")
@require_operator
def delete_draft_route(table_key: str):
    try:
        draft_service.delete_draft(g.operator_id, table_key)
        return jsonify({"deleted": True}), 200
    except CajaError as e:
        return error_response(e)
