# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and hasattr(g, "actor")


def require_auth(f):
    """
    Require a bearer token and establish the actor context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: the authenticated User
    - g.tenant_id: tenant captured by the session token
    - g.actor: ActorContext (user, tenant, permissions, branch city)

    Returns 401 for a missing, unknown, expired or revoked token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        resolved = session_service.validate_session(token)
        if not resolved:
            return jsonify({"error": "Invalid or expired token"}), 401

        user, actor = resolved
        g.current_user = user
        g.tenant_id = actor.tenant_id
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require one permission code of the actor's role (after @require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401
            if not g.actor.has(permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
