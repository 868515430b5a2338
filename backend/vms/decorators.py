# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .constants import VALID_ROLES
from .services.visit_state_machine import Actor


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


def require_actor(f):
    """
    Require an authenticated actor and expose it as g.actor.

    Authentication happens upstream (gateway / auth service), which forwards
    the caller's identity in two headers:
    - X-Actor-Id: the user id
    - X-Actor-Role: one of ADMIN, PROCESS_ADMIN, SECURITY_MANAGER,
      SECURITY_GUARD, HOST_EMPLOYEE

    The identity is trusted as-is; role/relation checks happen in the
    services. Returns 401 if either header is missing or the role is unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()
        role = (request.headers.get(ACTOR_ROLE_HEADER) or "").strip().upper()

        if not actor_id or not role:
            return jsonify({"error": "AUTHENTICATION_REQUIRED", "message": "Authentication required"}), 401

        if role not in VALID_ROLES:
            return jsonify({"error": "AUTHENTICATION_REQUIRED", "message": f"Unknown role: {role}"}), 401

        g.actor = Actor(actor_id=actor_id, role=role)
        return f(*args, **kwargs)

    return decorated_function
