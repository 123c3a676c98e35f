# Overview: Request decorators for API routes.

from functools import wraps
from flask import current_app, request, jsonify, g

OPERATOR_HEADER = "X-Operator-Id"
TERMINAL_HEADER = "X-Terminal-Id"


def require_operator(f):
    """
    Require an operator identity and establish the terminal context.

    Authentication happens upstream; the identity arrives as request headers
    and is trusted as-is. Sets:
    - g.operator_id: X-Operator-Id (401 when missing)
    - g.terminal_id: X-Terminal-Id, or DEFAULT_TERMINAL_ID
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        operator_id = (request.headers.get(OPERATOR_HEADER) or "").strip()
        if not operator_id:
            return jsonify({"error": "Operator identity required", "code": "OPERATOR_REQUIRED"}), 401
        if len(operator_id) > 64:
            return jsonify({"error": "Operator identity too long", "code": "VALIDATION_ERROR"}), 400

        terminal_id = (request.headers.get(TERMINAL_HEADER) or "").strip()
        if len(terminal_id) > 64:
            return jsonify({"error": "Terminal identity too long", "code": "VALIDATION_ERROR"}), 400

        g.operator_id = operator_id
        g.terminal_id = terminal_id or current_app.config["DEFAULT_TERMINAL_ID"]
        return f(*args, **kwargs)

    return decorated_function
