from datetime import datetime

from nemy.extensions import db


class IdempotencyKey(db.Model):
    """A client-chosen key pinned to one request fingerprint and, once finished, its response."""

    __tablename__ = "idempotency_keys"
    __table_args__ = (db.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),)

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(128), nullable=False, default="", server_default="")
    key = db.Column(db.String(128), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=True)
    request_hash = db.Column(db.String(64), nullable=False, default="")

    # Null until the request finishes; a null body means it is still in flight.
    response_body_json = db.Column(db.Text, nullable=True)
    response_code = db.Column(db.Integer, nullable=False, default=200, server_default="200")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
