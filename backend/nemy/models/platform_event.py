import json
from datetime import datetime

from nemy.extensions import db


class PlatformEvent(db.Model):
    """Append-only audit trail: cancellations, settlements and other order milestones."""

    __tablename__ = "platform_events"

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(80), nullable=False, index=True)
    severity = db.Column(db.String(16), nullable=False, default="INFO", index=True)

    # Who did it and to what; orders are subject_type="order".
    actor_user_id = db.Column(db.String(64), nullable=True, index=True)
    subject_type = db.Column(db.String(80), nullable=True, index=True)
    subject_id = db.Column(db.String(120), nullable=True, index=True)

    request_id = db.Column(db.String(80), nullable=True, index=True)
    idempotency_key = db.Column(db.String(180), nullable=True, unique=True, index=True)
    metadata_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    @property
    def details(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}
