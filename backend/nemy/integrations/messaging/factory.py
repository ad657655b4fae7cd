from __future__ import annotations

import os

from nemy.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from nemy.integrations.messaging.base import MessagingProvider
from nemy.integrations.messaging.mock_provider import MockMessagingProvider
from nemy.integrations.messaging.webhook_provider import WebhookMessagingProvider, webhook_health


def notifications_mode() -> str:
    return (os.getenv("NOTIFICATIONS_MODE") or "disabled").strip().lower()


def build_messaging_provider(mode: str | None = None) -> MessagingProvider:
    mode = (mode or notifications_mode()).strip().lower()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:notifications")
    if mode == "mock":
        return MockMessagingProvider()
    if mode != "webhook":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:unknown mode {mode}")

    url = (os.getenv("NOTIFY_WEBHOOK_URL") or "").strip()
    if not url:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing NOTIFY_WEBHOOK_URL")
    token = (os.getenv("NOTIFY_WEBHOOK_TOKEN") or "").strip()
    return WebhookMessagingProvider(url=url, token=token)


def messaging_health() -> dict:
    mode = notifications_mode()
    missing = webhook_health().get("missing", []) if mode == "webhook" else []
    if mode == "disabled":
        status = "disabled"
    elif mode not in ("mock", "webhook") or missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "missing": missing}
