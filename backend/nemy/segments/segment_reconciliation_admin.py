from __future__ import annotations

from flask import Blueprint, jsonify, request

from nemy.segments._auth import admin_required, current_user, is_admin, unauthorized
from nemy.services.audit_service import run_quick_audit
from nemy.services.reconciliation_service import latest_report, persist_report, recompute_wallet_balances

recon_bp = Blueprint("recon_bp", __name__, url_prefix="/api/admin/reconcile")
audit_bp = Blueprint("audit_bp", __name__, url_prefix="/api/audit")


@audit_bp.get("/quick")
def quick_audit():
    u = current_user()
    if not u:
        return unauthorized()
    if not is_admin(u):
        return admin_required()
    return jsonify(run_quick_audit()), 200


@recon_bp.post("")
def run_recon():
    u = current_user()
    if not u:
        return unauthorized()
    if not is_admin(u):
        return admin_required()
    data = request.get_json(silent=True) or {}
    mode = (data.get("mode") or "quick").strip().lower()
    if mode == "wallet_ledger":
        since = (data.get("since") or "").strip() or None
        summary = recompute_wallet_balances(since=since)
    else:
        mode = "quick"
        summary = run_quick_audit()
    report_id = None
    if bool(data.get("persist", True)):
        report = persist_report(summary, created_by=u.id)
        report_id = int(report.id)
    return jsonify({"ok": True, "mode": mode, "report_id": report_id, "summary": summary}), 200


@recon_bp.get("/latest")
def latest():
    u = current_user()
    if not u:
        return unauthorized()
    if not is_admin(u):
        return admin_required()
    row = latest_report((request.args.get("scope") or "").strip() or None)
    if not row:
        return jsonify({"ok": True, "report": None}), 200
    return jsonify({"ok": True, "report": row.to_dict()}), 200
