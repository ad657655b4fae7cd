from __future__ import annotations

from dataclasses import dataclass, field

# Result codes a dispatcher may retry; anything else fails the notification at once.
RETRYABLE_CODES = frozenset({"PROVIDER_DOWN", "WEBHOOK_RATE_LIMITED"})


@dataclass
class MessageResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict = field(default_factory=dict)

    @classmethod
    def delivered(cls, message: str = "sent", **raw) -> "MessageResult":
        return cls(ok=True, code="OK", message=message, raw=raw)

    @classmethod
    def failed(cls, code: str, message: str, raw: dict | None = None) -> "MessageResult":
        return cls(ok=False, code=code, message=(message or code)[:200], raw=raw or {})

    @property
    def retryable(self) -> bool:
        return not self.ok and self.code in RETRYABLE_CODES


class MessagingProvider:
    """Hands a status-change notification to whatever delivers it to a device."""

    name = "unknown"

    def send(self, *, user_id: str, channel: str, title: str, message: str, reference: str = "", meta: dict | None = None) -> MessageResult:
        raise NotImplementedError
