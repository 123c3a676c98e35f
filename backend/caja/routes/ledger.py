# Overview: Flask API routes for the audit ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..decorators import require_operator
from ..services import ledger_service


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
@require_operator
def list_ledger_events_route():
    """
    Newest-first ledger page.

    Query params: category, shift_id, order_id, cursor (last id seen), limit (1-500).
    """
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    cursor_raw = request.args.get("cursor")
    cursor = None
    if cursor_raw:
        try:
            cursor = int(cursor_raw)
        except ValueError:
            return jsonify({"error": "cursor must be an integer event id"}), 400

    events, next_cursor = ledger_service.list_ledger_events(
        event_category=request.args.get("category"),
        shift_id=request.args.get("shift_id", type=int),
        order_id=request.args.get("order_id", type=int),
        cursor=cursor,
        limit=limit,
    )
    return jsonify({
        "items": [e.to_dict() for e in events],
        "next_cursor": next_cursor,
        "limit": limit,
    }), 200
