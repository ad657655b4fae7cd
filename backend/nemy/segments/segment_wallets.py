from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from nemy.errors import NotOwner, StorageFailure
from nemy.extensions import db
from nemy.models import Business
from nemy.segments._auth import admin_required, current_user, error_response, is_admin, unauthorized
from nemy.services import wallet_ledger

wallets_bp = Blueprint("wallets_bp", __name__, url_prefix="/api/wallet")
admin_wallets_bp = Blueprint("admin_wallets_bp", __name__, url_prefix="/api/admin/wallets")


def _owner_for(u, owner_id: str | None) -> str:
    """Wallets are keyed by owner: the user, or a business the user owns."""
    owner_id = (owner_id or "").strip()
    if not owner_id or owner_id == u.id:
        return u.id
    if is_admin(u):
        return owner_id
    business = db.session.get(Business, owner_id)
    if business is not None and business.owner_id == u.id:
        return owner_id
    raise NotOwner("You do not own this wallet.")


def _empty_wallet(owner_id: str) -> dict:
    return {
        "user_id": owner_id,
        "balance_minor": 0,
        "pending_balance_minor": 0,
        "cash_owed_minor": 0,
        "withdrawable_minor": 0,
        "total_earned_minor": 0,
        "total_withdrawn_minor": 0,
    }


def _commit(what: str):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageFailure(f"{what} could not be saved. Retry the request.") from e


@wallets_bp.get("")
def my_wallet():
    u = current_user()
    if not u:
        return unauthorized()
    owner_id = _owner_for(u, request.args.get("owner_id"))
    wallet = wallet_ledger.get_wallet(owner_id)
    return jsonify({"ok": True, "wallet": wallet.to_dict() if wallet else _empty_wallet(owner_id)}), 200


@wallets_bp.get("/transactions")
def my_transactions():
    u = current_user()
    if not u:
        return unauthorized()
    owner_id = _owner_for(u, request.args.get("owner_id"))
    try:
        limit = int(request.args.get("limit") or 50)
    except ValueError:
        limit = 50
    rows = wallet_ledger.list_transactions(owner_id, limit=limit)
    return jsonify({"ok": True, "items": [t.to_dict() for t in rows]}), 200


@wallets_bp.post("/withdrawals")
def request_withdrawal():
    u = current_user()
    if not u:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    owner_id = _owner_for(u, data.get("owner_id"))
    try:
        txn = wallet_ledger.request_withdrawal(owner_id, data.get("amount_minor"))
    except Exception:
        db.session.rollback()
        raise
    _commit("Withdrawal")
    wallet = wallet_ledger.get_wallet(owner_id)
    return jsonify({"ok": True, "transaction": txn.to_dict(), "wallet": wallet.to_dict()}), 201


@admin_wallets_bp.post("/<owner_id>/cash-settlements")
def settle_cash(owner_id: str):
    u = current_user()
    if not u:
        return unauthorized()
    if not is_admin(u):
        return admin_required()
    data = request.get_json(silent=True) or {}
    if data.get("amount_minor") is None:
        return error_response("INVALID_REQUEST", "amount_minor is required", 400)
    try:
        txn = wallet_ledger.settle_cash_debt(
            owner_id,
            data.get("amount_minor"),
            actor_id=u.id,
            note=str(data.get("note") or ""),
        )
    except Exception:
        db.session.rollback()
        raise
    _commit("Cash settlement")
    wallet = wallet_ledger.get_wallet(owner_id)
    return jsonify({"ok": True, "transaction": txn.to_dict(), "wallet": wallet.to_dict()}), 201


@admin_wallets_bp.post("/<owner_id>/reset")
def reset(owner_id: str):
    u = current_user()
    if not u:
        return unauthorized()
    if not is_admin(u):
        return admin_required()
    data = request.get_json(silent=True) or {}
    try:
        txn = wallet_ledger.reset_wallet(owner_id, actor_id=u.id, note=str(data.get("note") or ""))
    except Exception:
        db.session.rollback()
        raise
    _commit("Wallet reset")
    wallet = wallet_ledger.get_wallet(owner_id)
    return jsonify({"ok": True, "transaction": txn.to_dict(), "wallet": wallet.to_dict()}), 200
