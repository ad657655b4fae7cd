import json
import uuid
from datetime import datetime

from nemy.extensions import db
from nemy.services.order_state import canonical_status
from nemy.utils.commission import money_minor_to_major


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("total_minor = subtotal_minor + delivery_fee_minor", name="ck_orders_total_parts"),
        db.CheckConstraint("subtotal_minor >= 0 AND delivery_fee_minor >= 0", name="ck_orders_money_non_negative"),
    )

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)

    customer_id = db.Column(db.String(64), nullable=False, index=True)
    business_id = db.Column(db.String(64), nullable=False, index=True)
    delivery_person_id = db.Column(db.String(64), nullable=True, index=True)

    subtotal_minor = db.Column(db.Integer, nullable=False, default=0)
    delivery_fee_minor = db.Column(db.Integer, nullable=False, default=0)
    total_minor = db.Column(db.Integer, nullable=False, default=0)

    # Written exactly once, when the order enters "delivered".
    platform_fee_minor = db.Column(db.Integer, nullable=True)
    business_earnings_minor = db.Column(db.Integer, nullable=True)
    delivery_earnings_minor = db.Column(db.Integer, nullable=True)
    commission_snapshot_json = db.Column(db.Text, nullable=True)

    payment_method = db.Column(db.String(16), nullable=False, default="card")  # card | cash
    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    assigned_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)
    cancellation_reason = db.Column(db.String(240), nullable=True)

    @property
    def short_id(self) -> str:
        return (self.id or "")[-6:]

    @property
    def is_settled(self) -> bool:
        return self.platform_fee_minor is not None and self.business_earnings_minor is not None

    def commission_snapshot(self) -> dict:
        raw = self.commission_snapshot_json
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except Exception:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "business_id": self.business_id,
            "delivery_person_id": self.delivery_person_id,
            "subtotal_minor": int(self.subtotal_minor or 0),
            "delivery_fee_minor": int(self.delivery_fee_minor or 0),
            "total_minor": int(self.total_minor or 0),
            "platform_fee_minor": int(self.platform_fee_minor) if self.platform_fee_minor is not None else None,
            "business_earnings_minor": (
                int(self.business_earnings_minor) if self.business_earnings_minor is not None else None
            ),
            "delivery_earnings_minor": (
                int(self.delivery_earnings_minor) if self.delivery_earnings_minor is not None else None
            ),
            "payment_method": self.payment_method or "card",
            "status": self.status or "pending",
            "display_status": canonical_status(self.status or "pending"),
            "total": money_minor_to_major(self.total_minor),
            "version": int(self.version or 1),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason or "",
        }
