from __future__ import annotations

import os

import requests

from nemy.integrations.messaging.base import MessagingProvider, MessageResult


def _map_http_error(status: int) -> str:
    if status in (401, 403):
        return "WEBHOOK_AUTH_FAILED"
    if status == 429:
        return "WEBHOOK_RATE_LIMITED"
    if status in (400, 422):
        return "WEBHOOK_REJECTED"
    return "PROVIDER_DOWN"


class WebhookMessagingProvider(MessagingProvider):
    """Posts each notification as JSON to a delivery service the platform operates."""

    name = "webhook"

    def __init__(self, *, url: str, token: str = "", timeout: float = 12.0):
        self.url = url
        self.token = token
        self.timeout = timeout

    def send(self, *, user_id: str, channel: str, title: str, message: str, reference: str = "", meta: dict | None = None) -> MessageResult:
        payload = {
            "user_id": user_id,
            "channel": channel,
            "title": title,
            "message": message,
            "reference": reference[:64],
            "meta": meta or {},
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            r = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            try:
                data = r.json() if r.content else {}
            except ValueError:
                data = {"payload": r.text[:200]}
            if not isinstance(data, dict):
                data = {"payload": data}
            if 200 <= r.status_code < 300:
                return MessageResult(ok=True, code="OK", message="sent", raw=data)
            detail = str(data.get("message") or data.get("error") or "")
            return MessageResult.failed(_map_http_error(r.status_code), detail or f"http_{r.status_code}", raw=data)
        except requests.Timeout:
            return MessageResult.failed("PROVIDER_DOWN", "timeout")
        except requests.RequestException as e:
            return MessageResult.failed("PROVIDER_DOWN", str(e))


def webhook_health() -> dict:
    missing = []
    if not (os.getenv("NOTIFY_WEBHOOK_URL") or "").strip():
        missing.append("NOTIFY_WEBHOOK_URL")
    return {"missing": missing}
