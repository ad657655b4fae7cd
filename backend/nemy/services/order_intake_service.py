from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from nemy.errors import InvalidOrder, StorageFailure
from nemy.extensions import db
from nemy.models import Business, Order, Payment
from nemy.services.order_state import OrderStatus
from nemy.utils.commission import PAYMENT_CASH, normalize_payment_method
from nemy.utils.notify import notify_status_change

logger = logging.getLogger(__name__)


def _minor(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidOrder(f"{name} must be an integer amount in minor units.")
    if value < 0:
        raise InvalidOrder(f"{name} cannot be negative.")
    return value


def register_order(
    *,
    customer_id: str,
    business_id: str,
    subtotal_minor: int,
    delivery_fee_minor: int,
    total_minor: int,
    payment_method: str,
    provider_ref: str | None = None,
) -> Order:
    """Accept an already-priced order in `pending` together with its payment record.

    Pricing happens upstream; this only checks the figures are whole, non-negative
    and consistent (`total == subtotal + delivery_fee`).
    """
    if not (customer_id or "").strip():
        raise InvalidOrder("customer_id is required.")
    subtotal = _minor("subtotal_minor", subtotal_minor)
    fee = _minor("delivery_fee_minor", delivery_fee_minor)
    total = _minor("total_minor", total_minor)
    if total != subtotal + fee:
        raise InvalidOrder(f"total_minor {total} must equal subtotal_minor {subtotal} + delivery_fee_minor {fee}.")
    try:
        method = normalize_payment_method(payment_method)
    except ValueError as e:
        raise InvalidOrder("payment_method must be 'card' or 'cash'.") from e

    business = db.session.get(Business, str(business_id or ""))
    if business is None or not business.is_active:
        raise InvalidOrder("business_id does not name an active business.")

    now = datetime.utcnow()
    order = Order(
        customer_id=str(customer_id),
        business_id=business.id,
        subtotal_minor=subtotal,
        delivery_fee_minor=fee,
        total_minor=total,
        payment_method=method,
        status=OrderStatus.PENDING.value,
        version=1,
        created_at=now,
        updated_at=now,
    )
    try:
        db.session.add(order)
        db.session.flush()
        db.session.add(
            Payment(
                order_id=order.id,
                amount_minor=total,
                method=method,
                # Card funds are authorised by the gateway before checkout; cash is collected on delivery.
                status="collect_on_delivery" if method == PAYMENT_CASH else "authorized",
                provider_ref=(provider_ref or "")[:120] or None,
            )
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("order_register_failed customer_id=%s err=%s", customer_id, e)
        raise StorageFailure("The order could not be saved. Retry the request.") from e

    logger.info("order_registered order_id=%s total_minor=%s method=%s", order.id, total, method)
    notify_status_change(order, "", OrderStatus.PENDING.value, actor_id=order.customer_id, actor_role="customer")
    return order
