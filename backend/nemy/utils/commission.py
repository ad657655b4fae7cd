from __future__ import annotations

import os
from decimal import Decimal, ROUND_HALF_UP

SNAPSHOT_VERSION = 1

SETTLEMENT_RULE_V1 = "MARKUP_1500_BPS_DRIVER_ON_TOTAL_V1"

BPS_DENOMINATOR = 10000
DEFAULT_MARKUP_BPS = 1500

PAYMENT_CARD = "card"
PAYMENT_CASH = "cash"
PAYMENT_METHODS = (PAYMENT_CARD, PAYMENT_CASH)


def _clamp_minor(value: int | float | Decimal | None) -> int:
    try:
        parsed = int(value or 0)
    except Exception:
        parsed = 0
    return parsed if parsed > 0 else 0


def _half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def money_minor_to_major(minor: int | float | Decimal | None) -> float:
    try:
        parsed = Decimal(int(minor or 0))
    except Exception:
        parsed = Decimal("0")
    return float((parsed / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def markup_bps() -> int:
    raw = (os.getenv("NEMY_MARKUP_BPS") or "").strip()
    if not raw:
        return DEFAULT_MARKUP_BPS
    try:
        value = int(raw)
    except Exception:
        return DEFAULT_MARKUP_BPS
    return min(max(value, 0), BPS_DENOMINATOR)


def remove_markup_minor(amount_minor: int, bps: int) -> int:
    """Recover the pre-markup price from an amount that already carries `bps` markup."""
    amt = Decimal(_clamp_minor(amount_minor))
    rate = Decimal(int(max(0, bps)))
    return _half_up((amt * Decimal(BPS_DENOMINATOR)) / (Decimal(BPS_DENOMINATOR) + rate))


def bps_of_minor(amount_minor: int, bps: int) -> int:
    amt = Decimal(_clamp_minor(amount_minor))
    rate = Decimal(int(max(0, bps)))
    return _half_up((amt * rate) / Decimal(BPS_DENOMINATOR))


def normalize_payment_method(value: str | None) -> str:
    method = (value or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValueError(f"unknown_payment_method {value!r}")
    return method


def compute_settlement_minor(
    *,
    subtotal_minor: int,
    total_minor: int,
    payment_method: str,
    bps: int | None = None,
) -> dict:
    """Split an order's money into platform fee, business earnings, driver commission and cash debt.

    The subtotal already carries the markup, so the business share is recovered by
    dividing it out and the platform keeps the remainder; the two always add up to
    the subtotal exactly. The driver's commission is a share of the order total,
    not of the delivery fee. On cash orders the driver holds the whole total and
    owes back everything except that commission.
    """
    rate = markup_bps() if bps is None else int(bps)
    method = normalize_payment_method(payment_method)
    subtotal = _clamp_minor(subtotal_minor)
    total = _clamp_minor(total_minor)

    business_earnings = remove_markup_minor(subtotal, rate)
    platform_fee = subtotal - business_earnings
    delivery_earnings = bps_of_minor(total, rate)
    cash_owed = total - delivery_earnings if method == PAYMENT_CASH else 0
    if cash_owed < 0:
        cash_owed = 0

    return {
        "snapshot_version": SNAPSHOT_VERSION,
        "rule": SETTLEMENT_RULE_V1 if rate == DEFAULT_MARKUP_BPS else f"MARKUP_{rate}_BPS_DRIVER_ON_TOTAL_V1",
        "inputs": {
            "subtotal_minor": int(subtotal),
            "total_minor": int(total),
            "payment_method": method,
            "markup_bps": int(rate),
        },
        "platform_fee_minor": int(platform_fee),
        "business_earnings_minor": int(business_earnings),
        "delivery_earnings_minor": int(delivery_earnings),
        "cash_owed_minor": int(cash_owed),
    }


def compute_settlement(order, *, bps: int | None = None) -> dict:
    return compute_settlement_minor(
        subtotal_minor=int(getattr(order, "subtotal_minor", 0) or 0),
        total_minor=int(getattr(order, "total_minor", 0) or 0),
        payment_method=str(getattr(order, "payment_method", "") or ""),
        bps=bps,
    )
