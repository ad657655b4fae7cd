from __future__ import annotations


class OrderFlowError(Exception):
    """Base for every failure the order/settlement core reports to a caller."""

    code = "ORDER_FLOW_ERROR"
    http_status = 400

    def __init__(self, reason: str = "", *, current: str | None = None, requested: str | None = None):
        self.reason = (reason or self.code).strip()
        self.current = current
        self.requested = requested
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.reason,
            "status": int(self.http_status),
        }
        if self.current is not None:
            payload["current_status"] = self.current
        if self.requested is not None:
            payload["requested_status"] = self.requested
        return payload


class TransitionError(OrderFlowError):
    code = "TRANSITION_ERROR"
    http_status = 409


class InvalidTransition(TransitionError):
    code = "INVALID_TRANSITION"
    http_status = 409


class Forbidden(TransitionError):
    code = "FORBIDDEN"
    http_status = 403


class NotOwner(TransitionError):
    code = "NOT_OWNER"
    http_status = 403


class NotAssigned(TransitionError):
    code = "NOT_ASSIGNED"
    http_status = 403


class ConflictAlreadyAssigned(TransitionError):
    code = "CONFLICT_ALREADY_ASSIGNED"
    http_status = 409


class OrderNotFound(OrderFlowError):
    code = "ORDER_NOT_FOUND"
    http_status = 404


class InvalidOrder(OrderFlowError):
    code = "INVALID_ORDER"
    http_status = 400


class LedgerRejected(OrderFlowError):
    code = "LEDGER_REJECTED"
    http_status = 422


class WithdrawalRejected(LedgerRejected):
    code = "WITHDRAWAL_REJECTED"
    http_status = 422


class StorageFailure(OrderFlowError):
    """Persistence failed and the unit of work was rolled back. Callers decide on retry."""

    code = "STORAGE_FAILURE"
    http_status = 503
