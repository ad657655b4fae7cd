from __future__ import annotations

import os

from nemy.integrations.messaging.base import MessagingProvider, MessageResult


class MockMessagingProvider(MessagingProvider):
    name = "mock"

    def __init__(self):
        self.sent: list[dict] = []

    def _force_failure(self, message: str) -> bool:
        msg = (message or "").lower()
        return "[fail]" in msg or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"

    def send(self, *, user_id: str, channel: str, title: str, message: str, reference: str = "", meta: dict | None = None) -> MessageResult:
        if self._force_failure(message):
            return MessageResult.failed("PROVIDER_DOWN", "mock forced failure")
        self.sent.append({"user_id": user_id, "channel": channel, "title": title, "message": message, "reference": reference})
        return MessageResult.delivered("mock_sent", to=user_id, reference=reference)
