from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from nemy.extensions import db
from nemy.models import PlatformEvent
from nemy.utils.observability import get_request_id

logger = logging.getLogger(__name__)

SEVERITIES = ("DEBUG", "INFO", "WARNING", "ERROR")


def _encode_extra(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        # Ledger figures are integer minor units; anything else is display only.
        return int(value) if value == value.to_integral_value() else str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def encode_metadata(metadata) -> str:
    if metadata is None:
        metadata = {}
    elif not isinstance(metadata, dict):
        metadata = {"value": metadata}
    return json.dumps(metadata, default=_encode_extra, separators=(",", ":"), sort_keys=True)


def _clip(value, size: int) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text[:size] or None


def log_event(
    event_type: str,
    *,
    actor_user_id: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    severity: str = "INFO",
    request_id: str | None = None,
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Append an audit event and commit it.

    Call only once the business unit of work has been committed: a failure here
    rolls the session back and is logged, never raised. A repeated idempotency key
    returns the event already stored under it.
    """
    key = _clip(idempotency_key, 180)
    level = (severity or "INFO").strip().upper()
    event = PlatformEvent(
        event_type=_clip(event_type, 80) or "unknown",
        actor_user_id=_clip(actor_user_id, 64),
        subject_type=_clip(subject_type, 80),
        subject_id=_clip(subject_id, 120),
        request_id=_clip(request_id or get_request_id(), 80),
        idempotency_key=key,
        severity=level if level in SEVERITIES else "INFO",
        metadata_json=encode_metadata(metadata),
    )
    try:
        if key:
            existing = PlatformEvent.query.filter_by(idempotency_key=key).first()
            if existing is not None:
                return existing
        db.session.add(event)
        db.session.commit()
    except IntegrityError:
        # Lost a race on the idempotency key.
        db.session.rollback()
        return PlatformEvent.query.filter_by(idempotency_key=key).first() if key else None
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("platform_event_write_failed type=%s subject=%s:%s err=%s", event_type, subject_type, subject_id, e)
        return None
    return event
