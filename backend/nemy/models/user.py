import uuid
from datetime import datetime

from nemy.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=True)
    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)

    # customer | business_owner | delivery_driver | admin | super_admin
    role = db.Column(db.String(32), nullable=False, default="customer")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name or "",
            "email": self.email or "",
            "phone": self.phone or "",
            "role": self.role or "customer",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
