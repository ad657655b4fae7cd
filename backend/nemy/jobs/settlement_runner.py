from __future__ import annotations

import logging
from datetime import datetime

from nemy.errors import OrderFlowError, StorageFailure
from nemy.models import Order
from nemy.services.order_state import OrderStatus
from nemy.services.settlement_service import settle_order
from nemy.utils.job_runs import record_job_run

logger = logging.getLogger(__name__)


def _now():
    return datetime.utcnow()


def run_settlement_backlog(*, limit: int = 200) -> dict:
    """Settle orders left `delivered` without earnings.

    Settlement is idempotent, so re-running this over an order that another
    worker finished meanwhile just reports it as already settled. A storage
    failure stops the run and propagates so the calling task can retry it.
    """
    started_at = _now()
    processed = 0
    settled = 0
    already = 0
    errors = 0

    ids = [
        row.id
        for row in Order.query.filter(
            Order.status == OrderStatus.DELIVERED.value,
            Order.platform_fee_minor.is_(None),
        )
        .order_by(Order.updated_at.asc())
        .limit(int(limit))
        .all()
    ]

    for order_id in ids:
        processed += 1
        try:
            summary = settle_order(order_id, expected_status=OrderStatus.DELIVERED.value)
        except StorageFailure:
            logger.error("settlement_backlog_storage_failure order_id=%s processed=%s", order_id, processed)
            record_job_run(job_name="settlement_backlog", ok=False, started_at=started_at, processed=processed, error="storage_failure")
            raise
        except OrderFlowError as e:
            errors += 1
            logger.warning("settlement_backlog_failed order_id=%s code=%s reason=%s", order_id, e.code, e.reason)
            continue
        if summary.already_settled:
            already += 1
        else:
            settled += 1

    result = {
        "ok": errors == 0,
        "processed": processed,
        "settled": settled,
        "already_settled": already,
        "errors": errors,
        "ts": _now().isoformat(),
    }
    record_job_run(
        job_name="settlement_backlog",
        ok=errors == 0,
        started_at=started_at,
        processed=processed,
        error=None if errors == 0 else f"errors={errors}",
    )
    return result
