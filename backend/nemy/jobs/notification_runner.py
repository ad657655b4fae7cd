from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from nemy.extensions import db
from nemy.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from nemy.integrations.messaging.base import MessagingProvider
from nemy.integrations.messaging.factory import build_messaging_provider
from nemy.models import Notification
from nemy.utils.job_runs import record_job_run

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5


def _now():
    return datetime.utcnow()


def dispatch_queued_notifications(*, limit: int = 100, provider: MessagingProvider | None = None) -> dict:
    """Hand queued status-change notifications to the configured provider.

    A retryable failure stays queued until it has used MAX_ATTEMPTS; any other
    failure is marked failed at once. With notifications disabled nothing is touched.
    """
    started_at = _now()
    if provider is None:
        try:
            provider = build_messaging_provider()
        except IntegrationDisabledError:
            return {"ok": True, "disabled": True, "processed": 0, "sent": 0, "failed": 0, "ts": _now().isoformat()}
        except IntegrationMisconfiguredError as e:
            logger.error("notification_dispatch_misconfigured err=%s", e)
            record_job_run(job_name="notification_dispatch", ok=False, started_at=started_at, error=str(e))
            return {"ok": False, "error": str(e), "processed": 0, "sent": 0, "failed": 0, "ts": _now().isoformat()}

    processed = 0
    sent = 0
    failed = 0

    rows = (
        Notification.query.filter_by(status="queued")
        .order_by(Notification.created_at.asc(), Notification.id.asc())
        .limit(int(limit))
        .all()
    )
    for n in rows:
        processed += 1
        result = provider.send(
            user_id=n.user_id,
            channel=n.channel or "push",
            title=n.title or "",
            message=n.message or "",
            reference=f"notification:{int(n.id)}",
            meta=n.meta_dict(),
        )
        n.attempts = int(n.attempts or 0) + 1
        n.provider = provider.name
        if result.ok:
            n.status = "sent"
            n.sent_at = _now()
            n.last_error = None
            raw = result.raw or {}
            n.provider_ref = str(raw.get("id") or raw.get("reference") or "")[:120] or None
            sent += 1
        else:
            n.last_error = f"{result.code}:{result.message}"[:240]
            if n.attempts >= MAX_ATTEMPTS or not result.retryable:
                n.status = "failed"
                failed += 1
        db.session.add(n)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("notification_dispatch_commit_failed err=%s", e)
        record_job_run(job_name="notification_dispatch", ok=False, started_at=started_at, processed=processed, error=str(e))
        raise

    record_job_run(
        job_name="notification_dispatch",
        ok=True,
        started_at=started_at,
        processed=processed,
    )
    return {
        "ok": True,
        "processed": processed,
        "sent": sent,
        "failed": failed,
        "provider": provider.name,
        "ts": _now().isoformat(),
    }
