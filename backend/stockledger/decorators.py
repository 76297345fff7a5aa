# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .models import User
from .services.access_policy import AccessPolicy


PRINCIPAL_HEADER = "X-User-Id"


def require_principal(f):
    """
    Load the acting principal handed over by the identity layer.

    Sets the following Flask g attributes:
    - g.current_user: The User row named by the X-User-Id header
    - g.policy: The AccessPolicy every service call in the request receives

    Returns 401 if the header is missing, malformed, or names an unknown or
    inactive user. Authentication itself happens upstream.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(PRINCIPAL_HEADER) or "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        g.policy = AccessPolicy.for_user(user, current_app.config["UNRESTRICTED_ROLES"])
        return f(*args, **kwargs)

    return decorated_function
