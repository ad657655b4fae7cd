from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_

from nemy.extensions import db
from nemy.models import Order, Payment, Wallet, WalletTxn
from nemy.services.order_state import OrderStatus

# Rounding slack for the delivered-order partition, in minor units.
PARTITION_TOLERANCE_MINOR = 1


def _check(rule: str, passed: bool, details: str) -> dict:
    return {"rule": rule, "passed": bool(passed), "details": details}


def _settled_count() -> int:
    return int(db.session.query(func.count(Order.id)).filter(Order.platform_fee_minor.isnot(None)).scalar() or 0)


def check_orders_exist() -> dict:
    count = int(db.session.query(func.count(Order.id)).scalar() or 0)
    return _check("orders_exist", count > 0, f"{count} orders found")


def check_payments_match_orders() -> dict:
    orders = int(db.session.query(func.count(Order.id)).scalar() or 0)
    payments = int(db.session.query(func.count(Payment.id)).scalar() or 0)
    return _check("payments_match_orders", payments == orders, f"{payments} payments vs {orders} orders")


def check_transactions_exist(settled: int) -> dict:
    count = int(db.session.query(func.count(WalletTxn.id)).scalar() or 0)
    if settled == 0:
        return _check("transactions_exist", True, f"{count} transactions; no settled orders yet")
    return _check("transactions_exist", count > 0, f"{count} transactions for {settled} settled orders")


def check_delivered_partition() -> dict:
    """Delivered money splits into platform fee, business earnings and the delivery fee.

    The driver's commission is taken from the total and is reported alongside,
    but it is not one of the parts: it overlaps the other three.
    """
    row = (
        db.session.query(
            func.count(Order.id),
            func.coalesce(func.sum(Order.platform_fee_minor), 0),
            func.coalesce(func.sum(Order.business_earnings_minor), 0),
            func.coalesce(func.sum(Order.delivery_fee_minor), 0),
            func.coalesce(func.sum(Order.delivery_earnings_minor), 0),
            func.coalesce(func.sum(Order.total_minor), 0),
        )
        .filter(Order.status == OrderStatus.DELIVERED.value, Order.platform_fee_minor.isnot(None))
        .one()
    )
    count, platform, business, fees, driver, total = (int(v or 0) for v in row)
    parts = platform + business + fees
    drift = parts - total
    details = (
        f"{count} delivered orders: platform {platform} + business {business} + delivery fees {fees} "
        f"= {parts} vs total {total} (drift {drift}); driver commission {driver}"
    )
    return _check("delivered_partition", abs(drift) <= PARTITION_TOLERANCE_MINOR, details)


def check_wallet_activity(settled: int) -> dict:
    active = int(
        db.session.query(func.count(Wallet.id))
        .filter(
            or_(
                Wallet.balance_minor > 0,
                Wallet.pending_balance_minor > 0,
                Wallet.total_earned_minor > 0,
                Wallet.cash_owed_minor > 0,
            )
        )
        .scalar()
        or 0
    )
    if settled == 0:
        return _check("wallets_active", True, f"{active} wallets with activity; no settled orders yet")
    return _check("wallets_active", active > 0, f"{active} wallets with activity")


def run_quick_audit() -> dict:
    """Run every check and report each one; a failing check never stops the rest."""
    settled = _settled_count()
    checks = [
        check_orders_exist(),
        check_payments_match_orders(),
        check_transactions_exist(settled),
        check_delivered_partition(),
        check_wallet_activity(settled),
    ]
    return {
        "scope": "quick_audit",
        "overall_status": "PASSED" if all(c["passed"] for c in checks) else "FAILED",
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
