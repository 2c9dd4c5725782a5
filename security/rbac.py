from functools import wraps
from flask import g, jsonify

# admins pass every role check
BYPASS_ROLE = "ADMIN"

def require_roles(*role_names: str):
    """
    Usage: @require_roles("PROVIDER")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required", code="UNAUTHENTICATED"), 401

            user_roles = {r.name for r in user.roles}
            if BYPASS_ROLE not in user_roles and not user_roles.intersection(role_names):
                return jsonify(error="Forbidden", code="FORBIDDEN"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
