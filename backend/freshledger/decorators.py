# Overview: Request decorators for API routes; actor identity supplied by the upstream gateway.

from functools import wraps
from flask import request, jsonify, g


ACTOR_ROLES = ("chef", "admin")


def require_actor(*roles):
    """
    Require an authenticated actor, optionally restricted to some roles.

    Authentication happens upstream; the gateway forwards the result in
    X-Actor-Id / X-Actor-Role. Sets:
    - g.actor: the actor id (string)
    - g.actor_role: one of ACTOR_ROLES

    Returns 401 without an actor and 403 when the role is not allowed.
    """
    allowed = set(roles) or set(ACTOR_ROLES)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = (request.headers.get("X-Actor-Id") or "").strip()
            role = (request.headers.get("X-Actor-Role") or "").strip().lower()

            if not actor or role not in ACTOR_ROLES:
                return jsonify({"error": "unauthenticated", "message": "Authentication required", "details": {}}), 401

            if role not in allowed:
                return jsonify({
                    "error": "forbidden",
                    "message": f"Role '{role}' may not perform this operation",
                    "details": {"required_roles": sorted(allowed)},
                }), 403

            g.actor = actor
            g.actor_role = role
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def current_actor():
    return getattr(g, "actor", None)
