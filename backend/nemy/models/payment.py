import uuid
from datetime import datetime

from nemy.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)

    amount_minor = db.Column(db.Integer, nullable=False, default=0)
    method = db.Column(db.String(16), nullable=False, default="card")
    # card: authorized by the gateway before checkout; cash: collected by the driver on delivery
    status = db.Column(db.String(24), nullable=False, default="pending")
    provider_ref = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_minor": int(self.amount_minor or 0),
            "method": self.method or "card",
            "status": self.status or "pending",
            "provider_ref": self.provider_ref or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
