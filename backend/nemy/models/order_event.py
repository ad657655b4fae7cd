from datetime import datetime

from nemy.extensions import db


class OrderEvent(db.Model):
    """Status history row; one per (order, target status)."""

    __tablename__ = "order_events"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_order_events_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(64), nullable=False, index=True)
    from_status = db.Column(db.String(24), nullable=False, default="")
    to_status = db.Column(db.String(24), nullable=False)
    actor_id = db.Column(db.String(64), nullable=True)
    actor_role = db.Column(db.String(32), nullable=False, default="system")
    idempotency_key = db.Column(db.String(160), nullable=False)
    note = db.Column(db.String(240), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": self.order_id,
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "actor_id": self.actor_id,
            "actor_role": self.actor_role or "system",
            "note": self.note or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
