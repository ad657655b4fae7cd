from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from nemy.errors import InvalidOrder, InvalidTransition, OrderNotFound, StorageFailure
from nemy.extensions import db
from nemy.models import Order, WalletTxn
from nemy.services import wallet_ledger
from nemy.services.order_state import OrderStatus
from nemy.services.wallet_ledger import TxnType
from nemy.utils.commission import PAYMENT_CASH, compute_settlement
from nemy.utils.events import log_event
from nemy.utils.notify import notify_status_change

logger = logging.getLogger(__name__)

# Statuses an order may be settled from. `delivered` only appears here for orders
# a crash left delivered without earnings.
SETTLEABLE = frozenset({OrderStatus.ON_THE_WAY.value, OrderStatus.IN_TRANSIT.value, OrderStatus.DELIVERED.value})


def platform_wallet_id() -> str:
    return (os.getenv("PLATFORM_WALLET_ID") or "platform").strip() or "platform"


@dataclass
class SettlementSummary:
    order_id: str
    status: str
    payment_method: str
    subtotal_minor: int
    total_minor: int
    platform_fee_minor: int
    business_earnings_minor: int
    delivery_earnings_minor: int
    cash_owed_minor: int
    business_id: str | None = None
    delivery_person_id: str | None = None
    delivered_at: str | None = None
    already_settled: bool = False
    postings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _fresh_order(order_id: str) -> Order | None:
    return db.session.get(Order, str(order_id), populate_existing=True)


def stored_summary(order: Order, *, already_settled: bool = True) -> SettlementSummary:
    snapshot = order.commission_snapshot()
    postings = (
        WalletTxn.query.filter_by(order_id=order.id)
        .order_by(WalletTxn.created_at.asc())
        .all()
    )
    return SettlementSummary(
        order_id=order.id,
        status=order.status,
        payment_method=order.payment_method,
        subtotal_minor=int(order.subtotal_minor or 0),
        total_minor=int(order.total_minor or 0),
        platform_fee_minor=int(order.platform_fee_minor or 0),
        business_earnings_minor=int(order.business_earnings_minor or 0),
        delivery_earnings_minor=int(order.delivery_earnings_minor or 0),
        cash_owed_minor=int(snapshot.get("cash_owed_minor") or 0),
        business_id=order.business_id,
        delivery_person_id=order.delivery_person_id,
        delivered_at=order.delivered_at.isoformat() if order.delivered_at else None,
        already_settled=already_settled,
        postings=[
            {"user_id": t.user_id, "type": t.type, "amount_minor": int(t.amount_minor or 0), "status": t.status}
            for t in postings
        ],
    )


def _recheck_after_lost_claim(order_id: str) -> SettlementSummary:
    order = _fresh_order(order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found.")
    if order.is_settled:
        return stored_summary(order, already_settled=True)
    if order.status not in SETTLEABLE:
        raise InvalidTransition(
            f"Order moved to {order.status} while settling.",
            current=order.status,
            requested=OrderStatus.DELIVERED.value,
        )
    raise StorageFailure("Settlement claim was not applied; retry the request.")


def _post_ledger(order: Order, split: dict) -> None:
    ref = order.short_id
    wallet_ledger.credit(
        order.business_id,
        split["business_earnings_minor"],
        order_id=order.id,
        txn_type=TxnType.INCOME,
        description=f"Order #{ref} earnings",
    )
    if split["platform_fee_minor"] > 0:
        wallet_ledger.credit(
            platform_wallet_id(),
            split["platform_fee_minor"],
            order_id=order.id,
            txn_type=TxnType.COMMISSION,
            description=f"Order #{ref} platform fee",
        )
    driver_id = order.delivery_person_id
    if not driver_id:
        return
    if split["inputs"]["payment_method"] == PAYMENT_CASH:
        wallet_ledger.credit(
            driver_id,
            split["delivery_earnings_minor"],
            order_id=order.id,
            txn_type=TxnType.CASH_INCOME,
            description=f"Order #{ref} cash delivery commission",
        )
        wallet_ledger.record_debt(
            driver_id,
            split["cash_owed_minor"],
            order_id=order.id,
            description=f"Order #{ref} cash to hand over",
        )
    else:
        wallet_ledger.credit(
            driver_id,
            split["delivery_earnings_minor"],
            order_id=order.id,
            txn_type=TxnType.INCOME,
            description=f"Order #{ref} delivery commission",
        )


def settle_order(
    order_id: str,
    *,
    expected_status: str | None = None,
    actor_id: str | None = None,
    actor_role: str = "system",
) -> SettlementSummary:
    """Move an order into `delivered` and post its earnings, exactly once.

    The order row is claimed with a conditional UPDATE that only matches while
    earnings are still null, so two concurrent calls cannot both post. The claim
    and every ledger entry commit together; any storage error rolls all of it
    back and surfaces as StorageFailure for the caller to retry. A repeat call
    returns the stored summary with `already_settled=True`.
    """
    order = _fresh_order(order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found.")
    if order.is_settled:
        return stored_summary(order, already_settled=True)

    current = expected_status or order.status
    if current not in SETTLEABLE or order.status != current:
        raise InvalidTransition(
            f"Order in status {order.status} cannot be settled.",
            current=order.status,
            requested=OrderStatus.DELIVERED.value,
        )

    try:
        split = compute_settlement(order)
    except ValueError as e:
        raise InvalidOrder(f"Order {order.id} cannot be settled: {e}") from e

    now = datetime.utcnow()
    from_status = order.status
    try:
        res = db.session.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.platform_fee_minor.is_(None),
                Order.status == current,
            )
            .values(
                platform_fee_minor=split["platform_fee_minor"],
                business_earnings_minor=split["business_earnings_minor"],
                delivery_earnings_minor=split["delivery_earnings_minor"],
                commission_snapshot_json=json.dumps(split, sort_keys=True),
                delivered_at=order.delivered_at or now,
                status=OrderStatus.DELIVERED.value,
                version=Order.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.session.rollback()
            logger.info("settlement_claim_lost order_id=%s", order.id)
            return _recheck_after_lost_claim(order.id)

        _post_ledger(order, split)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning("settlement_ledger_collision order_id=%s err=%s", order_id, e)
        return _recheck_after_lost_claim(order_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("settlement_failed order_id=%s err=%s", order_id, e)
        raise StorageFailure("Settlement could not be saved; no funds were moved. Retry the request.") from e
    except Exception:
        db.session.rollback()
        raise

    settled = _fresh_order(order_id)
    summary = stored_summary(settled, already_settled=False)
    logger.info(
        "settlement_applied order_id=%s platform=%s business=%s driver=%s cash_owed=%s",
        settled.id,
        summary.platform_fee_minor,
        summary.business_earnings_minor,
        summary.delivery_earnings_minor,
        summary.cash_owed_minor,
    )
    log_event(
        "settlement_applied",
        actor_user_id=actor_id,
        subject_type="order",
        subject_id=settled.id,
        idempotency_key=f"settlement:{settled.id}",
        metadata=summary.to_dict(),
    )
    notify_status_change(
        settled,
        from_status,
        OrderStatus.DELIVERED.value,
        actor_id=actor_id,
        actor_role=actor_role,
    )
    return summary
