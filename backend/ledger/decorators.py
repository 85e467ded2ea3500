# Overview: Request decorators for API routes; actor identity and role checks.

from functools import wraps
from flask import request, jsonify, g

from .validation import ActorContext


def _is_authenticated() -> bool:
    return hasattr(g, 'current_actor')


def require_actor(f):
    """
    Require an actor identity supplied by the fronting auth layer.

    Sets g.current_actor (ActorContext) from the X-Actor-Id, X-Actor-Email
    and X-Actor-Role headers. Returns 401 when no identity is present.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = ActorContext.from_headers(request.headers)
        if actor is None:
            return jsonify({"error": "Authentication required"}), 401

        g.current_actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """Require the authenticated actor to hold a role (case-insensitive)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_actor was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.current_actor.role != role.upper():
                return jsonify({
                    "error": "Permission denied",
                    "required_role": role.upper(),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator


def actor_label() -> str | None:
    """Label recorded on audit entries and receipts for the current actor."""
    if not _is_authenticated():
        return None
    return g.current_actor.label
