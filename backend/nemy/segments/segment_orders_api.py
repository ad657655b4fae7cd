from __future__ import annotations

from flask import Blueprint, jsonify, request

from nemy.errors import OrderFlowError
from nemy.extensions import db
from nemy.segments._auth import actor_for, current_user, error_response, is_admin, unauthorized
from nemy.services.order_flow_service import accept_order, load_order_for_actor, request_transition
from nemy.services.order_intake_service import register_order
from nemy.services.settlement_service import stored_summary
from nemy.utils.idempotency import claim_key
from nemy.utils.observability import get_request_id

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")


@orders_bp.post("")
def create_order():
    u = current_user()
    if not u:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    customer_id = u.id
    if is_admin(u) and data.get("customer_id"):
        customer_id = str(data.get("customer_id"))
    order = register_order(
        customer_id=customer_id,
        business_id=str(data.get("business_id") or ""),
        subtotal_minor=data.get("subtotal_minor"),
        delivery_fee_minor=data.get("delivery_fee_minor"),
        total_minor=data.get("total_minor"),
        payment_method=str(data.get("payment_method") or ""),
        provider_ref=data.get("provider_ref"),
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 201


@orders_bp.get("/<order_id>")
def get_order(order_id: str):
    u = current_user()
    if not u:
        return unauthorized()
    order = load_order_for_actor(order_id, actor_for(u))
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.post("/<order_id>/status")
def change_status(order_id: str):
    u = current_user()
    if not u:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    to_status = str(data.get("status") or "").strip()
    if not to_status:
        return error_response("INVALID_REQUEST", "status is required", 400)
    reason = str(data.get("reason") or "").strip()

    claim = claim_key(u.id, f"/api/orders/{order_id}/status", {"status": to_status, "reason": reason})
    if claim.replayed:
        return jsonify(claim.body), claim.status

    try:
        outcome = request_transition(order_id, to_status, actor=actor_for(u), reason=reason)
    except OrderFlowError as e:
        if e.http_status >= 500:
            claim.release()
        else:
            claim.remember({**e.to_dict(), "trace_id": get_request_id()}, e.http_status)
        raise
    except Exception:
        db.session.rollback()
        claim.release()
        raise

    payload = {"ok": True, **outcome.to_dict()}
    claim.remember(payload, 200)
    return jsonify(payload), 200


@orders_bp.post("/<order_id>/accept")
def accept(order_id: str):
    u = current_user()
    if not u:
        return unauthorized()
    outcome = accept_order(order_id, actor=actor_for(u))
    return jsonify({"ok": True, **outcome.to_dict()}), 200


@orders_bp.get("/<order_id>/settlement")
def get_settlement(order_id: str):
    u = current_user()
    if not u:
        return unauthorized()
    order = load_order_for_actor(order_id, actor_for(u))
    if not order.is_settled:
        return jsonify({"ok": True, "settled": False, "settlement": None}), 200
    return jsonify({"ok": True, "settled": True, "settlement": stored_summary(order).to_dict()}), 200
