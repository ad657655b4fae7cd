import json
from datetime import datetime

from nemy.extensions import db


class Notification(db.Model):
    """Outbox row for one party hearing about one order status change."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)

    channel = db.Column(db.String(32), nullable=False, default="push")
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)
    meta = db.Column(db.Text, nullable=True)

    # queued -> sent | failed
    status = db.Column(db.String(24), nullable=False, default="queued", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    provider = db.Column(db.String(64), nullable=True)
    provider_ref = db.Column(db.String(120), nullable=True)
    last_error = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)

    def meta_dict(self) -> dict:
        try:
            data = json.loads(self.meta or "{}")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
