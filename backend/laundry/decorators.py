# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import identity_service


def require_auth(f):
    """
    Require a verified identity and establish owner context.

    Sets g.owner_id to the identity provider's uid. Every owner-scoped
    service call takes it explicitly.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Token rejected by the identity provider
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Extract token from Authorization header
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        owner_id = identity_service.verify_id_token(token)
        if not owner_id:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.owner_id = owner_id
        return f(*args, **kwargs)

    return decorated_function
