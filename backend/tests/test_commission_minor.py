from __future__ import annotations

import os
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from nemy.utils.commission import (
    DEFAULT_MARKUP_BPS,
    bps_of_minor,
    compute_settlement,
    compute_settlement_minor,
    markup_bps,
    money_minor_to_major,
    normalize_payment_method,
    remove_markup_minor,
)


class CommissionMinorTestCase(unittest.TestCase):
    def test_business_share_divides_out_the_markup(self):
        split = compute_settlement_minor(subtotal_minor=12000, total_minor=14500, payment_method="card")
        # 12000 / 1.15 = 10434.78 -> 10435 (half-up); platform keeps the remainder.
        self.assertEqual(split["business_earnings_minor"], 10435)
        self.assertEqual(split["platform_fee_minor"], 1565)
        self.assertEqual(split["delivery_earnings_minor"], 2175)
        self.assertEqual(split["cash_owed_minor"], 0)
        self.assertEqual(split["inputs"]["markup_bps"], DEFAULT_MARKUP_BPS)
        self.assertEqual(split["rule"], "MARKUP_1500_BPS_DRIVER_ON_TOTAL_V1")

    def test_cash_order_driver_owes_total_less_commission(self):
        split = compute_settlement_minor(subtotal_minor=12000, total_minor=14500, payment_method="CASH")
        self.assertEqual(split["inputs"]["payment_method"], "cash")
        self.assertEqual(split["delivery_earnings_minor"], 2175)
        self.assertEqual(split["cash_owed_minor"], 12325)

    def test_business_and_platform_always_add_up_to_subtotal(self):
        for subtotal in (0, 1, 7, 99, 115, 1000, 12000, 33333, 1234567):
            with self.subTest(subtotal=subtotal):
                split = compute_settlement_minor(subtotal_minor=subtotal, total_minor=subtotal, payment_method="card")
                self.assertEqual(split["business_earnings_minor"] + split["platform_fee_minor"], subtotal)
                self.assertGreaterEqual(split["platform_fee_minor"], 0)

    def test_half_up_rounding(self):
        self.assertEqual(bps_of_minor(10, 1500), 2)  # 1.5 -> 2
        self.assertEqual(bps_of_minor(3, 1500), 0)  # 0.45 -> 0
        self.assertEqual(remove_markup_minor(115, 1500), 100)
        self.assertEqual(remove_markup_minor(0, 1500), 0)

    def test_markup_can_be_configured(self):
        with patch.dict(os.environ, {"NEMY_MARKUP_BPS": "1000"}, clear=False):
            self.assertEqual(markup_bps(), 1000)
            split = compute_settlement_minor(subtotal_minor=11000, total_minor=12000, payment_method="card")
        self.assertEqual(split["business_earnings_minor"], 10000)
        self.assertEqual(split["platform_fee_minor"], 1000)
        self.assertEqual(split["delivery_earnings_minor"], 1200)
        self.assertEqual(split["rule"], "MARKUP_1000_BPS_DRIVER_ON_TOTAL_V1")

    def test_bad_markup_env_falls_back_to_default(self):
        with patch.dict(os.environ, {"NEMY_MARKUP_BPS": "lots"}, clear=False):
            self.assertEqual(markup_bps(), DEFAULT_MARKUP_BPS)

    def test_explicit_rate_wins_over_env(self):
        with patch.dict(os.environ, {"NEMY_MARKUP_BPS": "1000"}, clear=False):
            split = compute_settlement_minor(subtotal_minor=12000, total_minor=14500, payment_method="card", bps=1500)
        self.assertEqual(split["platform_fee_minor"], 1565)

    def test_unknown_payment_method_is_rejected(self):
        with self.assertRaises(ValueError):
            normalize_payment_method("crypto")
        with self.assertRaises(ValueError):
            compute_settlement_minor(subtotal_minor=100, total_minor=100, payment_method="")

    def test_compute_settlement_reads_order_fields(self):
        order = SimpleNamespace(subtotal_minor=12000, total_minor=14500, payment_method="cash")
        split = compute_settlement(order)
        self.assertEqual(split["cash_owed_minor"], 12325)

    def test_minor_to_major_display(self):
        self.assertEqual(money_minor_to_major(14500), 145.0)
        self.assertEqual(money_minor_to_major(1), 0.01)
        self.assertEqual(money_minor_to_major(None), 0.0)


if __name__ == "__main__":
    unittest.main()
