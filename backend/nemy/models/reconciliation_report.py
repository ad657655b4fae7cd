import json
from datetime import datetime

from nemy.extensions import db


class ReconciliationReport(db.Model):
    __tablename__ = "reconciliation_reports"

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(64), nullable=False, default="quick_audit")  # quick_audit | wallet_ledger
    overall_status = db.Column(db.String(16), nullable=False, default="PASSED")
    summary_json = db.Column(db.Text, nullable=True)
    failed_count = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def summary(self) -> dict:
        try:
            parsed = json.loads(self.summary_json or "{}")
        except Exception:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "scope": self.scope or "",
            "overall_status": self.overall_status or "",
            "summary": self.summary(),
            "failed_count": int(self.failed_count or 0),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
