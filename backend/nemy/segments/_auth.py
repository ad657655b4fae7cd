from __future__ import annotations

from flask import g, jsonify, request

from nemy.extensions import db
from nemy.models import User
from nemy.services.order_flow_service import Actor
from nemy.services.order_state import ADMIN_ROLES, parse_role
from nemy.utils.jwt_utils import subject_from_header
from nemy.utils.observability import get_request_id


def current_user() -> User | None:
    sub = subject_from_header(request.headers.get("Authorization", ""))
    if not sub:
        return None
    user = db.session.get(User, sub)
    if user is not None:
        g.auth_user_id = user.id
        g.auth_role = (user.role or "customer").strip().lower()
    return user


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=(user.role or "customer").strip().lower())


def is_admin(user: User | None) -> bool:
    return user is not None and parse_role(user.role) in ADMIN_ROLES


def error_response(code: str, message: str, status: int):
    payload = {"ok": False, "error": code, "message": message, "status": int(status)}
    rid = get_request_id()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), int(status)


def unauthorized():
    return error_response("UNAUTHORIZED", "Authentication required", 401)


def admin_required():
    return error_response("FORBIDDEN", "Admin required", 403)
