from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import uuid
from datetime import datetime

from flask import g, has_request_context, request

access_logger = logging.getLogger("nemy.access")

# Header names never forwarded to Sentry.
SCRUBBED_HEADERS = frozenset({"authorization", "cookie", "set-cookie", "idempotency-key", "x-idempotency-key"})

# Health checks hit these constantly; they only get logged when they fail.
QUIET_PATHS = frozenset({"/api/health", "/"})


def _hash_ip(ip: str, salt: str) -> str:
    raw = f"{salt}:{ip or ''}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def get_request_id() -> str:
    if not has_request_context():
        return ""
    return getattr(g, "request_id", "")


def _sample_rate() -> float:
    try:
        rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0.0").strip())
    except ValueError:
        rate = 0.0
    return max(0.0, min(rate, 1.0))


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("NEMY_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=_sample_rate(),
            before_send=_before_send_scrub,
        )
        sentry_sdk.set_tag("service", "nemy-backend")
        app.logger.info("sentry_enabled")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def _before_send_scrub(event, hint):
    req = event.get("request")
    if not isinstance(req, dict):
        return event
    headers = req.get("headers")
    if isinstance(headers, dict):
        req["headers"] = {k: ("[REDACTED]" if k.lower() in SCRUBBED_HEADERS else v) for k, v in headers.items()}
    return event


def _access_payload(app, response) -> dict:
    started = getattr(g, "request_started_at", None)
    view_args = request.view_args or {}
    return {
        "ts": datetime.utcnow().isoformat(),
        "request_id": getattr(g, "request_id", ""),
        "path": request.path,
        "method": request.method,
        "status": int(response.status_code),
        "latency_ms": round((time.perf_counter() - float(started)) * 1000.0, 2) if started is not None else None,
        "user_id": getattr(g, "auth_user_id", None),
        "role": getattr(g, "auth_role", None),
        "order_id": view_args.get("order_id"),
        "idempotent": bool(request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")),
        "ip_hash": _hash_ip(
            request.headers.get("X-Forwarded-For", request.remote_addr or ""),
            app.config.get("SECRET_KEY", "nemy"),
        ),
    }


def install_request_observers(app) -> None:
    """Tag every request with an X-Request-Id and write one JSON access line per response."""

    @app.before_request
    def _request_observer_begin():
        g.request_id = (request.headers.get("X-Request-Id") or "").strip() or str(uuid.uuid4())
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _request_observer_end(response):
        if not getattr(g, "request_id", ""):
            g.request_id = str(uuid.uuid4())
        response.headers["X-Request-Id"] = g.request_id
        if request.path in QUIET_PATHS and response.status_code < 400:
            return response
        access_logger.info(json.dumps(_access_payload(app, response)))
        return response
