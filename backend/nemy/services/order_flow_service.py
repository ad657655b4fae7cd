from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError

from nemy.errors import NotOwner, OrderNotFound, StorageFailure
from nemy.extensions import db
from nemy.models import Business, Order
from nemy.services.order_state import (
    ADMIN_ROLES,
    ActorRole,
    OrderStatus,
    TransitionContext,
    parse_role,
    parse_status,
    validate_transition,
)
from nemy.services.settlement_service import SettlementSummary, settle_order
from nemy.utils.events import log_event
from nemy.utils.notify import notify_status_change

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    id: str | None
    role: str

    @property
    def is_admin(self) -> bool:
        return parse_role(self.role) in ADMIN_ROLES


@dataclass
class TransitionOutcome:
    order: Order
    from_status: str
    to_status: str
    settlement: SettlementSummary | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "from_status": self.from_status,
            "to_status": self.to_status,
            "settlement": self.settlement.to_dict() if self.settlement is not None else None,
        }


def _fresh_order(order_id: str) -> Order | None:
    return db.session.get(Order, str(order_id), populate_existing=True)


def _business_owner_id(business_id: str | None) -> str | None:
    if not business_id:
        return None
    business = db.session.get(Business, business_id)
    return business.owner_id if business is not None else None


def transition_context(order: Order) -> TransitionContext:
    return TransitionContext(
        customer_id=order.customer_id,
        business_owner_id=_business_owner_id(order.business_id),
        delivery_person_id=order.delivery_person_id,
    )


def load_order_for_actor(order_id: str, actor: Actor) -> Order:
    """Fetch an order the actor is a party to. Admins see every order."""
    order = _fresh_order(order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found.")
    if actor.is_admin:
        return order
    ctx = transition_context(order)
    parties = {ctx.customer_id, ctx.business_owner_id, ctx.delivery_person_id}
    role = parse_role(actor.role)
    # Drivers may look at unclaimed orders that are waiting for pickup.
    if role is ActorRole.DELIVERY_DRIVER and order.status == OrderStatus.READY.value and not order.delivery_person_id:
        return order
    if actor.id is None or str(actor.id) not in parties:
        raise NotOwner("You are not a party to this order.")
    return order


def request_transition(order_id: str, to_status: str, *, actor: Actor, reason: str = "") -> TransitionOutcome:
    order = _fresh_order(order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found.")

    current = order.status
    validate_transition(current, to_status, actor.role, actor_id=actor.id, context=transition_context(order))
    target = parse_status(to_status)

    if target is OrderStatus.DELIVERED:
        summary = settle_order(order.id, expected_status=current, actor_id=actor.id, actor_role=actor.role)
        return TransitionOutcome(
            order=_fresh_order(order.id),
            from_status=current,
            to_status=target.value,
            settlement=summary,
        )

    now = datetime.utcnow()
    values = {
        "status": target.value,
        "version": Order.version + 1,
        "updated_at": now,
    }
    conditions = [Order.id == order.id, Order.status == current]
    claiming = target is OrderStatus.PICKED_UP and parse_role(actor.role) is ActorRole.DELIVERY_DRIVER
    if claiming:
        conditions.append(or_(Order.delivery_person_id.is_(None), Order.delivery_person_id == str(actor.id)))
        values["delivery_person_id"] = str(actor.id)
        values["assigned_at"] = order.assigned_at or now
    if target is OrderStatus.CANCELLED:
        values["cancelled_at"] = now
        values["cancelled_by"] = str(actor.id) if actor.id is not None else None
        values["cancellation_reason"] = (reason or "")[:240] or None

    try:
        res = db.session.execute(
            update(Order).where(*conditions).values(**values).execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.session.rollback()
            logger.info("order_transition_lost_race order_id=%s %s->%s", order.id, current, target.value)
            fresh = _fresh_order(order.id)
            if fresh is None:
                raise OrderNotFound(f"Order {order_id} not found.")
            validate_transition(
                fresh.status, to_status, actor.role, actor_id=actor.id, context=transition_context(fresh)
            )
            raise StorageFailure("The order changed while it was being updated; retry the request.")
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("order_transition_failed order_id=%s err=%s", order_id, e)
        raise StorageFailure("The status change could not be saved. Retry the request.") from e

    updated = _fresh_order(order.id)
    logger.info(
        "order_transition order_id=%s %s->%s actor=%s role=%s",
        updated.id,
        current,
        target.value,
        actor.id,
        actor.role,
    )
    if target is OrderStatus.CANCELLED:
        log_event(
            "order_cancelled",
            actor_user_id=actor.id,
            subject_type="order",
            subject_id=updated.id,
            idempotency_key=f"order_cancelled:{updated.id}",
            metadata={"from_status": current, "reason": reason or ""},
        )
    notify_status_change(updated, current, target.value, actor_id=actor.id, actor_role=actor.role, note=reason)
    return TransitionOutcome(order=updated, from_status=current, to_status=target.value)


def accept_order(order_id: str, *, actor: Actor) -> TransitionOutcome:
    """Driver claim: `ready -> picked_up`, assigning the driver in the same write."""
    return request_transition(order_id, OrderStatus.PICKED_UP.value, actor=actor)
