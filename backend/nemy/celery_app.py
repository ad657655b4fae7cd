from __future__ import annotations

import json
import logging
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry

logger = logging.getLogger("nemy.tasks")

TASKS_PACKAGE = "nemy.tasks"
SETTLEMENT_QUEUE = "settlement"
NOTIFICATION_QUEUE = "notifications"

_observers_bound = False


def _env(*names: str, default: str = "") -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _seconds(name: str, default: int, *, floor: int) -> float:
    try:
        value = int(_env(name, default=str(default)))
    except ValueError:
        value = default
    return float(max(floor, value))


def beat_schedule() -> dict:
    return {
        "settlement-backlog-runner": {
            "task": f"{TASKS_PACKAGE}.order_tasks.run_settlement_backlog",
            "schedule": _seconds("SETTLEMENT_BACKLOG_INTERVAL_SECONDS", 300, floor=30),
        },
        "notification-dispatch": {
            "task": f"{TASKS_PACKAGE}.order_tasks.dispatch_notifications",
            "schedule": _seconds("NOTIFICATION_DISPATCH_INTERVAL_SECONDS", 60, floor=5),
        },
    }


def _task_event(event: str, *, task_name: str, task_id, kwargs, **fields) -> str:
    payload = {
        "event": event,
        "task_name": task_name,
        "task_id": str(task_id or ""),
        "trace_id": str((kwargs or {}).get("trace_id") or "") if isinstance(kwargs, dict) else "",
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update({k: v for k, v in fields.items() if v is not None})
    return json.dumps(payload, default=str)


def _bind_task_observers() -> None:
    global _observers_bound
    if _observers_bound:
        return

    @task_failure.connect(weak=False)
    def _settlement_task_failed(sender=None, task_id=None, exception=None, kwargs=None, einfo=None, **_):
        logger.error(
            _task_event(
                "celery_task_failure",
                task_name=getattr(sender, "name", "") or "",
                task_id=task_id,
                kwargs=kwargs,
                exception=repr(exception) if exception is not None else None,
                einfo=str(einfo) if einfo is not None else None,
            )
        )

    @task_retry.connect(weak=False)
    def _settlement_task_retrying(request=None, reason=None, **_):
        logger.warning(
            _task_event(
                "celery_task_retry",
                task_name=str(getattr(request, "task", "") or ""),
                task_id=getattr(request, "id", None),
                kwargs=getattr(request, "kwargs", None),
                reason=str(reason or ""),
                retry_count=int(getattr(request, "retries", 0) or 0),
            )
        )

    _observers_bound = True


def create_celery_app(flask_app) -> Celery:
    """Celery bound to ``flask_app``: every task body runs inside its app context."""
    broker = _env("CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    celery = Celery(flask_app.import_name, broker=broker, backend=_env("CELERY_RESULT_BACKEND", "REDIS_URL", default=broker))
    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        # Settlement is idempotent, so redelivery after a worker crash is safe.
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        task_routes={
            f"{TASKS_PACKAGE}.order_tasks.run_settlement_backlog": {"queue": SETTLEMENT_QUEUE},
            f"{TASKS_PACKAGE}.order_tasks.dispatch_notifications": {"queue": NOTIFICATION_QUEUE},
        },
        beat_schedule=beat_schedule(),
    )

    class AppContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = AppContextTask
    celery.autodiscover_tasks([TASKS_PACKAGE], related_name="order_tasks")
    _bind_task_observers()
    return celery
