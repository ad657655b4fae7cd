from __future__ import annotations

import json
from datetime import datetime

from nemy.extensions import db
from nemy.models import ReconciliationReport, Wallet, WalletTxn
from nemy.services.wallet_ledger import TxnStatus, TxnType


def _replay(txns) -> tuple[int, int]:
    balance = 0
    cash_owed = 0
    for txn in txns:
        if txn.status == TxnStatus.FAILED:
            continue
        amount = int(txn.amount_minor or 0)
        if txn.type == TxnType.RESET:
            balance = 0
            cash_owed = 0
        elif txn.type in TxnType.CREDITS:
            balance += amount
        elif txn.type == TxnType.WITHDRAWAL:
            balance -= amount
        elif txn.type == TxnType.CASH_DEBT:
            cash_owed += amount
        elif txn.type == TxnType.CASH_DEBT_PAYMENT:
            cash_owed -= amount
    return balance, cash_owed


def recompute_wallet_balances(*, since: str | None = None) -> dict:
    """Rebuild each wallet from its ledger and list the ones whose stored figures disagree."""
    wallets = Wallet.query.order_by(Wallet.user_id.asc()).all()
    drift_items = []

    for wallet in wallets:
        txns = WalletTxn.query.filter_by(wallet_id=int(wallet.id)).order_by(WalletTxn.created_at.asc()).all()
        computed_balance, computed_owed = _replay(txns)
        stored_balance = int(wallet.balance_minor or 0)
        stored_owed = int(wallet.cash_owed_minor or 0)
        if stored_balance != computed_balance or stored_owed != computed_owed:
            drift_items.append(
                {
                    "wallet_id": int(wallet.id),
                    "user_id": wallet.user_id,
                    "stored_balance_minor": stored_balance,
                    "computed_balance_minor": computed_balance,
                    "balance_drift_minor": stored_balance - computed_balance,
                    "stored_cash_owed_minor": stored_owed,
                    "computed_cash_owed_minor": computed_owed,
                    "cash_owed_drift_minor": stored_owed - computed_owed,
                }
            )

    return {
        "ok": True,
        "scope": "wallet_ledger",
        "since": since or "",
        "overall_status": "PASSED" if not drift_items else "FAILED",
        "wallet_count": len(wallets),
        "drift_count": len(drift_items),
        "drift_items": drift_items,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


def _failed_count(summary: dict) -> int:
    if "drift_count" in summary:
        return int(summary.get("drift_count") or 0)
    return sum(1 for c in summary.get("checks") or [] if not c.get("passed"))


def persist_report(summary: dict, *, created_by: str | None = None) -> ReconciliationReport:
    report = ReconciliationReport(
        scope=(summary.get("scope") or "quick_audit")[:64],
        overall_status=(summary.get("overall_status") or "PASSED")[:16],
        summary_json=json.dumps(summary)[:200000],
        failed_count=_failed_count(summary),
        created_by=str(created_by) if created_by is not None else None,
        created_at=datetime.utcnow(),
    )
    db.session.add(report)
    db.session.commit()
    return report


def latest_report(scope: str | None = None) -> ReconciliationReport | None:
    q = ReconciliationReport.query
    if scope:
        q = q.filter_by(scope=scope)
    return q.order_by(ReconciliationReport.created_at.desc(), ReconciliationReport.id.desc()).first()
