from __future__ import annotations

import json
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from nemy.extensions import db
from nemy.models import Business, Notification, OrderEvent

logger = logging.getLogger(__name__)


_STATUS_COPY = {
    "pending": ("Order Placed", "Order #{ref} was placed"),
    "confirmed": ("Order Confirmed", "Order #{ref} was confirmed by the business"),
    "preparing": ("Preparing", "Order #{ref} is being prepared"),
    "ready": ("Ready for Pickup", "Order #{ref} is ready for pickup"),
    "picked_up": ("Picked Up", "Order #{ref} has been picked up"),
    "on_the_way": ("On the Way", "Order #{ref} is on the way"),
    "in_transit": ("In Transit", "Order #{ref} is in transit"),
    "delivered": ("Delivered", "Order #{ref} was delivered"),
    "cancelled": ("Cancelled", "Order #{ref} was cancelled"),
}


def event_key(order_id: str, to_status: str) -> str:
    return f"order:{order_id}:{to_status}"[:160]


def _recipients(order) -> list[str]:
    out: list[str] = []
    if order.customer_id:
        out.append(str(order.customer_id))
    business = db.session.get(Business, order.business_id) if order.business_id else None
    if business is not None and business.owner_id:
        out.append(str(business.owner_id))
    if order.delivery_person_id:
        out.append(str(order.delivery_person_id))
    return list(dict.fromkeys(out))


def notify_status_change(
    order,
    from_status: str,
    to_status: str,
    *,
    actor_id: str | None = None,
    actor_role: str = "system",
    note: str = "",
) -> OrderEvent | None:
    """Record the transition in `order_events` and queue one notification per party.

    Runs after the transition has been committed and commits on its own. The
    event key is unique per (order, target status), so a replay writes nothing.
    A storage failure here is logged and swallowed: the transition already stands.
    """
    key = event_key(order.id, to_status)
    try:
        existing = OrderEvent.query.filter_by(idempotency_key=key).first()
        if existing is not None:
            return existing

        event = OrderEvent(
            order_id=order.id,
            from_status=from_status or "",
            to_status=to_status,
            actor_id=actor_id,
            actor_role=(actor_role or "system")[:32],
            idempotency_key=key,
            note=(note or "")[:240] or None,
        )
        db.session.add(event)

        title, template = _STATUS_COPY.get(to_status, ("Order Update", "Order #{ref} is now " + to_status))
        body = template.format(ref=order.short_id)
        meta = json.dumps({"event_key": key, "from_status": from_status, "to_status": to_status})
        for uid in _recipients(order):
            if actor_id is not None and uid == str(actor_id):
                continue
            db.session.add(
                Notification(
                    user_id=uid,
                    order_id=order.id,
                    channel="push",
                    title=title,
                    message=body,
                    status="queued",
                    meta=meta,
                )
            )
        db.session.commit()
        return event
    except IntegrityError:
        db.session.rollback()
        return OrderEvent.query.filter_by(idempotency_key=key).first()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("order_event_write_failed order_id=%s to=%s err=%s", order.id, to_status, e)
        return None
