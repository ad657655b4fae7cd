import uuid
from datetime import datetime

from nemy.extensions import db


class WalletTxn(db.Model):
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "user_id", "type", name="uq_transactions_order_user_type"),
        db.CheckConstraint("amount_minor >= 0", name="ck_transactions_amount_non_negative"),
    )

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)

    # income | cash_income | commission | cash_debt | cash_debt_payment | withdrawal | reset
    type = db.Column(db.String(32), nullable=False)
    amount_minor = db.Column(db.Integer, nullable=False, default=0)
    balance_after_minor = db.Column(db.Integer, nullable=True)
    cash_owed_after_minor = db.Column(db.Integer, nullable=True)

    description = db.Column(db.String(240), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="completed")  # completed | pending | failed
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "wallet_id": int(self.wallet_id),
            "user_id": self.user_id,
            "order_id": self.order_id,
            "type": self.type,
            "amount_minor": int(self.amount_minor or 0),
            "balance_after_minor": int(self.balance_after_minor) if self.balance_after_minor is not None else None,
            "cash_owed_after_minor": (
                int(self.cash_owed_after_minor) if self.cash_owed_after_minor is not None else None
            ),
            "description": self.description or "",
            "status": self.status or "completed",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
