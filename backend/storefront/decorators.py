# Overview: Request decorators and error responses for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import InvariantViolation, StorefrontError
from .services import session_service
from .services.session_service import RequestContext


MAX_IDEMPOTENCY_KEY_LENGTH = 128


def error_response(exc: StorefrontError):
    """
    Translate a service error into a JSON response.

    `error_code` lets clients tell "payment failed, retry" apart from
    "item unavailable, cart updated".
    """
    if isinstance(exc, InvariantViolation):
        current_app.logger.error("Invariant violation: %s %s", exc.message, exc.details)
    return jsonify(exc.to_dict()), exc.http_status


def require_auth(f):
    """
    Require a bearer session and build the request context.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.ctx: RequestContext(user_id, idempotency_key, is_admin) passed to services

    The Idempotency-Key header, when present, becomes ctx.idempotency_key.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        idempotency_key = (request.headers.get("Idempotency-Key") or "").strip() or None
        if idempotency_key and len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            return jsonify({"error": f"Idempotency-Key exceeds {MAX_IDEMPOTENCY_KEY_LENGTH} characters"}), 400

        g.current_user = context.user
        g.ctx = RequestContext(
            user_id=context.user.id,
            idempotency_key=idempotency_key,
            is_admin=bool(context.user.is_admin),
        )

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require an admin user. Use after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "current_user"):
            return jsonify({"error": "Authentication required"}), 401
        if not g.current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function
