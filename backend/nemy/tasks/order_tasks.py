from __future__ import annotations

import json
import logging
import os
import time

from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError

from nemy.errors import StorageFailure

logger = logging.getLogger("nemy.tasks")

# Only storage trouble is worth another attempt; rule violations never heal on retry.
RETRY_ON = (SQLAlchemyError, StorageFailure)
RETRY_OPTIONS = {
    "bind": True,
    "max_retries": 3,
    "autoretry_for": RETRY_ON,
    "retry_backoff": 5,
    "retry_backoff_max": 900,
    "retry_jitter": False,
}


def _limit(name: str, default: int) -> int:
    try:
        value = int((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = default
    return max(1, min(value, 500))


def _run_logged(task, job, *, trace_id: str, limit: int) -> dict:
    started = time.perf_counter()
    result = job(limit=limit)
    logger.info(
        json.dumps(
            {
                "task_name": task.name,
                "status": "ok" if result.get("ok") else "failed",
                "attempt": int(task.request.retries or 0) + 1,
                "duration_ms": int((time.perf_counter() - started) * 1000),
                "trace_id": trace_id,
                "processed": int(result.get("processed", 0)),
            }
        )
    )
    return result


@shared_task(name="nemy.tasks.order_tasks.run_settlement_backlog", **RETRY_OPTIONS)
def run_settlement_backlog(self, *, trace_id: str = ""):
    from nemy.jobs.settlement_runner import run_settlement_backlog as run_backlog

    return _run_logged(self, run_backlog, trace_id=trace_id, limit=_limit("SETTLEMENT_BACKLOG_LIMIT", 200))


@shared_task(name="nemy.tasks.order_tasks.dispatch_notifications", **RETRY_OPTIONS)
def dispatch_notifications(self, *, trace_id: str = ""):
    from nemy.jobs.notification_runner import dispatch_queued_notifications

    return _run_logged(self, dispatch_queued_notifications, trace_id=trace_id, limit=_limit("NOTIFICATION_DISPATCH_LIMIT", 100))
