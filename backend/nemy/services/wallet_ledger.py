from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import update

from nemy.errors import LedgerRejected, StorageFailure, WithdrawalRejected
from nemy.extensions import db
from nemy.models import Wallet, WalletTxn


class TxnType:
    INCOME = "income"
    CASH_INCOME = "cash_income"
    COMMISSION = "commission"
    CASH_DEBT = "cash_debt"
    CASH_DEBT_PAYMENT = "cash_debt_payment"
    WITHDRAWAL = "withdrawal"
    RESET = "reset"

    CREDITS = {INCOME, CASH_INCOME, COMMISSION}
    ALL = {INCOME, CASH_INCOME, COMMISSION, CASH_DEBT, CASH_DEBT_PAYMENT, WITHDRAWAL, RESET}


class TxnStatus:
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


def _positive_minor(amount_minor) -> int:
    try:
        value = int(amount_minor)
    except (TypeError, ValueError):
        raise LedgerRejected(f"amount_minor must be an integer, got {amount_minor!r}") from None
    if value <= 0:
        raise LedgerRejected("amount_minor must be greater than zero")
    return value


def _lock_wallet(user_id: str) -> Wallet | None:
    return Wallet.query.filter_by(user_id=str(user_id)).with_for_update().populate_existing().first()


def _wallet_for_posting(user_id: str) -> Wallet:
    wallet = _lock_wallet(user_id)
    if wallet is None:
        wallet = Wallet(
            user_id=str(user_id),
            balance_minor=0,
            pending_balance_minor=0,
            cash_owed_minor=0,
            total_earned_minor=0,
            total_withdrawn_minor=0,
        )
        db.session.add(wallet)
        db.session.flush()
    return wallet


def _shift(wallet: Wallet, *guards, **deltas) -> bool:
    """Apply relative changes to one wallet row in a single UPDATE.

    ``guards`` are extra WHERE terms evaluated against the stored row, so two
    writers can never both pass a check on figures the other already changed.
    On success the in-memory wallet is reloaded with the stored values.
    """
    values = {name: getattr(Wallet, name) + int(delta) for name, delta in deltas.items()}
    values["updated_at"] = datetime.utcnow()
    res = db.session.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id, *guards)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(wallet)
    return res.rowcount == 1


def _shift_unguarded(wallet: Wallet, **deltas) -> None:
    if not _shift(wallet, **deltas):
        raise StorageFailure(f"Wallet {wallet.user_id} could not be updated; retry the request.")


def _existing_entry(order_id: str | None, user_id: str, txn_type: str) -> WalletTxn | None:
    if order_id is None:
        return None
    return WalletTxn.query.filter_by(order_id=str(order_id), user_id=str(user_id), type=txn_type).first()


def _append(
    wallet: Wallet,
    *,
    txn_type: str,
    amount_minor: int,
    order_id: str | None,
    description: str,
    status: str = TxnStatus.COMPLETED,
    metadata: dict | None = None,
) -> WalletTxn:
    now = datetime.utcnow()
    txn = WalletTxn(
        wallet_id=int(wallet.id),
        user_id=wallet.user_id,
        order_id=str(order_id) if order_id is not None else None,
        type=txn_type,
        amount_minor=int(amount_minor),
        balance_after_minor=int(wallet.balance_minor or 0),
        cash_owed_after_minor=int(wallet.cash_owed_minor or 0),
        description=(description or "")[:240] or None,
        status=status,
        metadata_json=json.dumps(metadata) if metadata else None,
        created_at=now,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def credit(
    user_id: str,
    amount_minor: int,
    *,
    order_id: str | None = None,
    txn_type: str = TxnType.INCOME,
    description: str = "",
) -> WalletTxn:
    """Add spendable funds to an owner's wallet, creating the wallet on first use.

    Re-posting the same (order, owner, type) returns the existing entry untouched.
    Only flushes: the caller commits.
    """
    if txn_type not in TxnType.CREDITS:
        raise LedgerRejected(f"{txn_type} is not a credit type")
    amount = int(amount_minor or 0)
    if amount < 0:
        raise LedgerRejected("credit amount cannot be negative")

    existing = _existing_entry(order_id, user_id, txn_type)
    if existing is not None:
        return existing

    wallet = _wallet_for_posting(user_id)
    _shift_unguarded(wallet, balance_minor=amount, total_earned_minor=amount)
    return _append(wallet, txn_type=txn_type, amount_minor=amount, order_id=order_id, description=description)


def record_debt(
    user_id: str,
    amount_minor: int,
    *,
    order_id: str | None = None,
    description: str = "",
) -> WalletTxn:
    """Track cash a driver holds on the platform's behalf. Touches `cash_owed` only."""
    amount = int(amount_minor or 0)
    if amount < 0:
        raise LedgerRejected("debt amount cannot be negative")

    existing = _existing_entry(order_id, user_id, TxnType.CASH_DEBT)
    if existing is not None:
        return existing

    wallet = _wallet_for_posting(user_id)
    _shift_unguarded(wallet, cash_owed_minor=amount)
    return _append(
        wallet,
        txn_type=TxnType.CASH_DEBT,
        amount_minor=amount,
        order_id=order_id,
        description=description,
        status=TxnStatus.PENDING,
    )


def get_wallet(user_id: str) -> Wallet | None:
    return Wallet.query.filter_by(user_id=str(user_id)).first()


def withdrawable_minor(wallet: Wallet | None) -> int:
    if wallet is None:
        return 0
    return wallet.withdrawable_minor


def list_transactions(user_id: str, *, limit: int = 50) -> list[WalletTxn]:
    limit = max(1, min(int(limit or 50), 200))
    return (
        WalletTxn.query.filter_by(user_id=str(user_id))
        .order_by(WalletTxn.created_at.desc())
        .limit(limit)
        .all()
    )


def _withdrawal_refusal(amount: int, wallet: Wallet) -> WithdrawalRejected:
    return WithdrawalRejected(
        f"Requested {amount} exceeds withdrawable {withdrawable_minor(wallet)} "
        f"(balance {int(wallet.balance_minor or 0)}, cash owed {int(wallet.cash_owed_minor or 0)})."
    )


def request_withdrawal(user_id: str, amount_minor, *, description: str = "") -> WalletTxn:
    """Move funds out of the spendable balance into a pending payout.

    Outstanding cash debt is held back: the request is rejected if it would
    leave `balance - cash_owed` below zero. The check runs inside the UPDATE,
    so concurrent requests cannot overdraw the wallet between them.
    """
    try:
        amount = _positive_minor(amount_minor)
    except LedgerRejected as e:
        raise WithdrawalRejected(e.reason) from e
    wallet = _lock_wallet(user_id)
    if wallet is None:
        raise WithdrawalRejected("No wallet exists for this account yet.")
    if amount > withdrawable_minor(wallet):
        raise _withdrawal_refusal(amount, wallet)
    applied = _shift(
        wallet,
        Wallet.balance_minor - Wallet.cash_owed_minor >= amount,
        balance_minor=-amount,
        total_withdrawn_minor=amount,
    )
    if not applied:
        raise _withdrawal_refusal(amount, wallet)
    return _append(
        wallet,
        txn_type=TxnType.WITHDRAWAL,
        amount_minor=amount,
        order_id=None,
        description=description or "Withdrawal request",
        status=TxnStatus.PENDING,
    )


def settle_cash_debt(user_id: str, amount_minor, *, actor_id: str | None = None, note: str = "") -> WalletTxn:
    """Record that a driver handed over cash they owed. Balance is not touched."""
    amount = _positive_minor(amount_minor)
    wallet = _lock_wallet(user_id)
    if wallet is None:
        raise LedgerRejected("No wallet exists for this account.")
    if not _shift(wallet, Wallet.cash_owed_minor >= amount, cash_owed_minor=-amount):
        raise LedgerRejected(f"Settlement of {amount} exceeds outstanding cash debt {int(wallet.cash_owed_minor or 0)}.")
    return _append(
        wallet,
        txn_type=TxnType.CASH_DEBT_PAYMENT,
        amount_minor=amount,
        order_id=None,
        description=note or "Cash debt settled",
        metadata={"actor_id": actor_id, "cash_owed_before_minor": int(wallet.cash_owed_minor) + amount},
    )


def reset_wallet(user_id: str, *, actor_id: str | None = None, note: str = "") -> WalletTxn:
    """Zero a wallet's balances. Refused if the wallet moved after it was read."""
    wallet = _lock_wallet(user_id)
    if wallet is None:
        raise LedgerRejected("No wallet exists for this account.")
    prior = {
        "balance_minor": int(wallet.balance_minor or 0),
        "pending_balance_minor": int(wallet.pending_balance_minor or 0),
        "cash_owed_minor": int(wallet.cash_owed_minor or 0),
    }
    applied = _shift(
        wallet,
        *(getattr(Wallet, name) == value for name, value in prior.items()),
        **{name: -value for name, value in prior.items()},
    )
    if not applied:
        raise LedgerRejected("Wallet changed while it was being reset; retry the reset.")
    return _append(
        wallet,
        txn_type=TxnType.RESET,
        amount_minor=0,
        order_id=None,
        description=note or "Administrative wallet reset",
        metadata={"actor_id": actor_id, **prior},
    )
