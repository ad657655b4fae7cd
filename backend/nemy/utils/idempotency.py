from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass

from flask import has_request_context, request
from sqlalchemy.exc import IntegrityError

from nemy.extensions import db
from nemy.models import IdempotencyKey

KEY_HEADERS = ("Idempotency-Key", "X-Idempotency-Key")
MAX_KEY_LENGTH = 128


def idempotency_enforced() -> bool:
    return (os.getenv("ENABLE_IDEMPOTENCY_ENFORCEMENT") or "").strip().lower() in ("1", "true", "yes", "on")


def request_fingerprint(scope: str, payload) -> str:
    """SHA-256 over the scope and the canonical JSON of ``payload``."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{scope.strip()}|{body}".encode("utf-8")).hexdigest()


def header_key() -> str | None:
    if not has_request_context():
        return None
    for name in KEY_HEADERS:
        value = (request.headers.get(name) or "").strip()
        if value:
            return value[:MAX_KEY_LENGTH]
    return None


def _refusal(code: str, message: str, status: int) -> dict:
    return {"ok": False, "error": code, "message": message, "status": status}


@dataclass
class Claim:
    """Outcome of presenting an idempotency key.

    ``replayed`` claims carry the response to send back unchanged. Otherwise the
    caller runs the operation, then calls ``remember`` with its response, or
    ``release`` when the failure was transient and the key should be reusable.
    """

    row: IdempotencyKey | None = None
    body: dict | None = None
    status: int = 0

    @property
    def replayed(self) -> bool:
        return self.body is not None

    def remember(self, body: dict, status: int) -> None:
        if self.row is None:
            return
        self.row.response_body_json = json.dumps(body, separators=(",", ":"), default=str)
        self.row.response_code = int(status)
        db.session.add(self.row)
        db.session.commit()

    def release(self) -> None:
        if self.row is None:
            return
        db.session.delete(self.row)
        db.session.commit()
        self.row = None


def _register(key: str, scope: str, user_id: str | None, fingerprint: str) -> IdempotencyKey | None:
    row = IdempotencyKey(key=key, scope=scope, user_id=str(user_id) if user_id is not None else None, request_hash=fingerprint)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request registered the key first.
        db.session.rollback()
        return None
    return row


def claim_key(user_id: str | None, scope: str, payload, *, key: str | None = None, require_header: bool | None = None) -> Claim:
    key = (key or header_key() or "").strip()[:MAX_KEY_LENGTH]
    if not key:
        if idempotency_enforced() if require_header is None else require_header:
            return Claim(body=_refusal("IDEMPOTENCY_KEY_REQUIRED", f"Idempotency-Key header is required for {scope}.", 400), status=400)
        return Claim()

    fingerprint = request_fingerprint(scope, payload)
    existing = IdempotencyKey.query.filter_by(scope=scope, key=key).first()
    if existing is None:
        row = _register(key, scope, user_id, fingerprint)
        if row is not None:
            return Claim(row=row)
        existing = IdempotencyKey.query.filter_by(scope=scope, key=key).one()

    if existing.request_hash != fingerprint:
        return Claim(body=_refusal("IDEMPOTENCY_KEY_REUSE", "This Idempotency-Key was already used with a different request payload.", 409), status=409)
    if existing.response_body_json is None:
        return Claim(body=_refusal("IDEMPOTENCY_REQUEST_IN_PROGRESS", "A request with this Idempotency-Key is still being processed.", 409), status=409)
    return Claim(body=json.loads(existing.response_body_json), status=int(existing.response_code or 200))
