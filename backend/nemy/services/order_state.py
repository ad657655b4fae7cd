from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from nemy.errors import (
    ConflictAlreadyAssigned,
    Forbidden,
    InvalidTransition,
    NotAssigned,
    NotOwner,
)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    ON_THE_WAY = "on_the_way"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    BUSINESS_OWNER = "business_owner"
    DELIVERY_DRIVER = "delivery_driver"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


S = OrderStatus
R = ActorRole

TERMINAL = frozenset({S.DELIVERED, S.CANCELLED})

# on_the_way and in_transit are two labels for "driver en route"; each reaches the other.
ALLOWED = MappingProxyType(
    {
        S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
        S.CONFIRMED: frozenset({S.PREPARING, S.CANCELLED}),
        S.PREPARING: frozenset({S.READY, S.CANCELLED}),
        S.READY: frozenset({S.PICKED_UP, S.CANCELLED}),
        S.PICKED_UP: frozenset({S.ON_THE_WAY, S.IN_TRANSIT, S.CANCELLED}),
        S.ON_THE_WAY: frozenset({S.IN_TRANSIT, S.DELIVERED, S.CANCELLED}),
        S.IN_TRANSIT: frozenset({S.ON_THE_WAY, S.DELIVERED, S.CANCELLED}),
        S.DELIVERED: frozenset(),
        S.CANCELLED: frozenset(),
    }
)

ROLE_TARGETS = MappingProxyType(
    {
        R.CUSTOMER: frozenset({S.CANCELLED}),
        R.BUSINESS_OWNER: frozenset({S.CONFIRMED, S.PREPARING, S.READY, S.CANCELLED}),
        R.DELIVERY_DRIVER: frozenset({S.PICKED_UP, S.ON_THE_WAY, S.IN_TRANSIT, S.DELIVERED}),
        R.ADMIN: frozenset(S),
        R.SUPER_ADMIN: frozenset(S),
    }
)

ADMIN_ROLES = frozenset({R.ADMIN, R.SUPER_ADMIN})


@dataclass(frozen=True)
class TransitionContext:
    """Facts about the order the ownership and assignment gates need."""

    customer_id: str | None = None
    business_owner_id: str | None = None
    delivery_person_id: str | None = None


def parse_status(value) -> OrderStatus | None:
    try:
        return OrderStatus(str(value or "").strip().lower())
    except ValueError:
        return None


def parse_role(value) -> ActorRole | None:
    try:
        return ActorRole(str(value or "").strip().lower())
    except ValueError:
        return None


def canonical_status(value) -> str:
    """Collapse the en-route aliases for reporting; every other status maps to itself."""
    status = parse_status(value)
    if status is None:
        return str(value or "")
    if status is S.IN_TRANSIT:
        return S.ON_THE_WAY.value
    return status.value


def is_edge(current, requested) -> bool:
    cur = parse_status(current)
    req = parse_status(requested)
    if cur is None or req is None:
        return False
    return req in ALLOWED[cur]


def role_may_target(role, requested) -> bool:
    r = parse_role(role)
    req = parse_status(requested)
    if r is None or req is None:
        return False
    return req in ROLE_TARGETS[r]


def validate_transition(
    current,
    requested,
    role,
    *,
    actor_id: str | None = None,
    context: TransitionContext | None = None,
) -> None:
    """Raise a TransitionError subclass unless `role` may move an order from `current` to `requested`.

    Checks run role target set, then the ownership/assignment gate, then the edge
    table. A driver asking for `picked_up` on an order another driver holds gets
    ConflictAlreadyAssigned whatever the current status, so the loser of a claim
    race hears about the conflict rather than a stale edge.
    """
    ctx = context or TransitionContext()
    cur = parse_status(current)
    req = parse_status(requested)
    cur_label = str(current or "")
    req_label = str(requested or "")
    if cur is None:
        raise InvalidTransition(f"Unknown order status '{cur_label}'.", current=cur_label, requested=req_label)
    if req is None:
        raise InvalidTransition(f"Unknown target status '{req_label}'.", current=cur.value, requested=req_label)

    r = parse_role(role)
    if r is None:
        raise Forbidden(f"Role '{role}' may not change order status.", current=cur.value, requested=req.value)
    if req not in ROLE_TARGETS[r]:
        raise Forbidden(
            f"A {r.value} may not move an order to {req.value}.",
            current=cur.value,
            requested=req.value,
        )

    actor = str(actor_id) if actor_id is not None else None

    if r is R.CUSTOMER:
        if actor is None or actor != (ctx.customer_id or None):
            raise NotOwner("You can only cancel your own orders.", current=cur.value, requested=req.value)
        if cur is not S.PENDING:
            raise Forbidden(
                "Orders can only be cancelled by the customer before the business responds.",
                current=cur.value,
                requested=req.value,
            )

    elif r is R.BUSINESS_OWNER:
        if actor is None or actor != (ctx.business_owner_id or None):
            raise NotOwner("You do not own the business for this order.", current=cur.value, requested=req.value)

    elif r is R.DELIVERY_DRIVER:
        assignee = ctx.delivery_person_id or None
        if actor is None:
            raise NotAssigned("A driver id is required for this change.", current=cur.value, requested=req.value)
        if req is S.PICKED_UP:
            if assignee is not None and assignee != actor:
                raise ConflictAlreadyAssigned(
                    "Another driver has already accepted this order.",
                    current=cur.value,
                    requested=req.value,
                )
        elif assignee != actor:
            raise NotAssigned("You are not the driver assigned to this order.", current=cur.value, requested=req.value)

    if req not in ALLOWED[cur]:
        if cur in TERMINAL:
            reason = f"Order is already {cur.value}; no further status changes are allowed."
        else:
            reason = f"Cannot move an order from {cur.value} to {req.value}."
        raise InvalidTransition(reason, current=cur.value, requested=req.value)
