from datetime import datetime

from nemy.extensions import db


class Wallet(db.Model):
    __tablename__ = "wallets"
    __table_args__ = (
        db.CheckConstraint("balance_minor >= 0", name="ck_wallets_balance_non_negative"),
        db.CheckConstraint("cash_owed_minor >= 0", name="ck_wallets_cash_owed_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    # Owner id: a user, a business, or the platform holding account.
    user_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    balance_minor = db.Column(db.Integer, nullable=False, default=0)
    pending_balance_minor = db.Column(db.Integer, nullable=False, default=0)
    cash_owed_minor = db.Column(db.Integer, nullable=False, default=0)
    total_earned_minor = db.Column(db.Integer, nullable=False, default=0)
    total_withdrawn_minor = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def withdrawable_minor(self) -> int:
        return max(0, int(self.balance_minor or 0) - int(self.cash_owed_minor or 0))

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": self.user_id,
            "balance_minor": int(self.balance_minor or 0),
            "pending_balance_minor": int(self.pending_balance_minor or 0),
            "cash_owed_minor": int(self.cash_owed_minor or 0),
            "withdrawable_minor": self.withdrawable_minor,
            "total_earned_minor": int(self.total_earned_minor or 0),
            "total_withdrawn_minor": int(self.total_withdrawn_minor or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
