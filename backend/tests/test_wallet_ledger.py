from __future__ import annotations

import unittest
from unittest.mock import patch

from order_fixtures import FileSqliteAppTestCase, SqliteAppTestCase

from nemy.errors import LedgerRejected, WithdrawalRejected
from nemy.extensions import db
from nemy.models import Wallet, WalletTxn
from nemy.services import wallet_ledger
from nemy.services.wallet_ledger import TxnStatus, TxnType


class WalletLedgerTestCase(SqliteAppTestCase):
    def test_credit_creates_wallet_and_records_entry(self):
        txn = wallet_ledger.credit("biz-1", 10435, order_id="o-1", description="Order #o-1 earnings")
        db.session.commit()

        wallet = wallet_ledger.get_wallet("biz-1")
        self.assertIsNotNone(wallet)
        self.assertEqual(wallet.balance_minor, 10435)
        self.assertEqual(wallet.total_earned_minor, 10435)
        self.assertEqual(txn.type, TxnType.INCOME)
        self.assertEqual(txn.balance_after_minor, 10435)
        self.assertEqual(txn.status, TxnStatus.COMPLETED)

    def test_credit_is_idempotent_per_order_owner_and_type(self):
        first = wallet_ledger.credit("drv-1", 2175, order_id="o-1")
        again = wallet_ledger.credit("drv-1", 2175, order_id="o-1")
        db.session.commit()

        self.assertEqual(first.id, again.id)
        self.assertEqual(wallet_ledger.get_wallet("drv-1").balance_minor, 2175)
        self.assertEqual(WalletTxn.query.filter_by(user_id="drv-1").count(), 1)

    def test_credit_rejects_debit_types_and_negative_amounts(self):
        with self.assertRaises(LedgerRejected):
            wallet_ledger.credit("drv-1", 100, txn_type=TxnType.WITHDRAWAL)
        with self.assertRaises(LedgerRejected):
            wallet_ledger.credit("drv-1", -1)
        self.assertIsNone(wallet_ledger.get_wallet("drv-1"))

    def test_record_debt_touches_cash_owed_only(self):
        wallet_ledger.credit("drv-1", 2175, order_id="o-1", txn_type=TxnType.CASH_INCOME)
        txn = wallet_ledger.record_debt("drv-1", 12325, order_id="o-1")
        wallet_ledger.record_debt("drv-1", 12325, order_id="o-1")
        db.session.commit()

        wallet = wallet_ledger.get_wallet("drv-1")
        self.assertEqual(wallet.balance_minor, 2175)
        self.assertEqual(wallet.cash_owed_minor, 12325)
        self.assertEqual(wallet.withdrawable_minor, 0)
        self.assertEqual(txn.status, TxnStatus.PENDING)
        self.assertEqual(txn.cash_owed_after_minor, 12325)
        self.assertEqual(WalletTxn.query.filter_by(user_id="drv-1", type=TxnType.CASH_DEBT).count(), 1)

    def test_withdrawal_respects_cash_debt(self):
        wallet_ledger.credit("drv-1", 5000, order_id="o-1")
        wallet_ledger.record_debt("drv-1", 3000, order_id="o-2")
        db.session.commit()

        with self.assertRaises(WithdrawalRejected) as cm:
            wallet_ledger.request_withdrawal("drv-1", 2001)
        self.assertEqual(cm.exception.http_status, 422)

        txn = wallet_ledger.request_withdrawal("drv-1", 2000)
        db.session.commit()
        wallet = wallet_ledger.get_wallet("drv-1")
        self.assertEqual(txn.type, TxnType.WITHDRAWAL)
        self.assertEqual(txn.status, TxnStatus.PENDING)
        self.assertEqual(wallet.balance_minor, 3000)
        self.assertEqual(wallet.total_withdrawn_minor, 2000)
        self.assertEqual(wallet.withdrawable_minor, 0)

    def test_withdrawal_guard_holds_even_when_the_read_was_stale(self):
        wallet_ledger.credit("drv-1", 1000, order_id="o-1")
        db.session.commit()

        with patch("nemy.services.wallet_ledger.withdrawable_minor", return_value=10**9):
            with self.assertRaises(WithdrawalRejected):
                wallet_ledger.request_withdrawal("drv-1", 1001)
        db.session.rollback()

        wallet = wallet_ledger.get_wallet("drv-1")
        self.assertEqual((wallet.balance_minor, wallet.total_withdrawn_minor), (1000, 0))
        self.assertEqual(WalletTxn.query.filter_by(type=TxnType.WITHDRAWAL).count(), 0)

    def test_withdrawal_rejects_bad_amounts_and_missing_wallet(self):
        with self.assertRaises(WithdrawalRejected):
            wallet_ledger.request_withdrawal("nobody", 100)
        wallet_ledger.credit("drv-1", 500)
        db.session.commit()
        for amount in (0, -5, "abc", None):
            with self.subTest(amount=amount):
                with self.assertRaises(WithdrawalRejected):
                    wallet_ledger.request_withdrawal("drv-1", amount)

    def test_settle_cash_debt_reduces_owed_and_keeps_balance(self):
        wallet_ledger.credit("drv-1", 2175, order_id="o-1", txn_type=TxnType.CASH_INCOME)
        wallet_ledger.record_debt("drv-1", 12325, order_id="o-1")
        db.session.commit()

        with self.assertRaises(LedgerRejected):
            wallet_ledger.settle_cash_debt("drv-1", 12326)
        txn = wallet_ledger.settle_cash_debt("drv-1", 12325, actor_id="admin-1", note="handed over at depot")
        db.session.commit()

        wallet = wallet_ledger.get_wallet("drv-1")
        self.assertEqual(wallet.cash_owed_minor, 0)
        self.assertEqual(wallet.balance_minor, 2175)
        self.assertEqual(wallet.withdrawable_minor, 2175)
        self.assertEqual(txn.type, TxnType.CASH_DEBT_PAYMENT)
        self.assertEqual(txn.description, "handed over at depot")

    def test_reset_zeroes_figures_and_keeps_audit_trail(self):
        wallet_ledger.credit("drv-1", 900, order_id="o-1")
        wallet_ledger.record_debt("drv-1", 400, order_id="o-2")
        db.session.commit()

        txn = wallet_ledger.reset_wallet("drv-1", actor_id="admin-1")
        db.session.commit()

        wallet = db.session.get(Wallet, wallet_ledger.get_wallet("drv-1").id)
        self.assertEqual((wallet.balance_minor, wallet.cash_owed_minor, wallet.pending_balance_minor), (0, 0, 0))
        self.assertEqual(wallet.total_earned_minor, 900)
        self.assertEqual(txn.type, TxnType.RESET)
        self.assertEqual(txn.amount_minor, 0)
        self.assertIn('"balance_minor": 900', txn.metadata_json)
        self.assertEqual(WalletTxn.query.filter_by(user_id="drv-1").count(), 3)

    def test_reset_and_debt_settlement_need_existing_wallet(self):
        with self.assertRaises(LedgerRejected):
            wallet_ledger.reset_wallet("ghost")
        with self.assertRaises(LedgerRejected):
            wallet_ledger.settle_cash_debt("ghost", 10)

    def test_list_transactions_is_scoped_and_clamped(self):
        for i in range(3):
            wallet_ledger.credit("drv-1", 100, order_id=f"o-{i}")
        wallet_ledger.credit("drv-2", 100, order_id="o-9")
        db.session.commit()

        items = wallet_ledger.list_transactions("drv-1")
        self.assertEqual(len(items), 3)
        self.assertTrue(all(t.user_id == "drv-1" for t in items))
        self.assertEqual(len(wallet_ledger.list_transactions("drv-1", limit=2)), 2)
        self.assertEqual(len(wallet_ledger.list_transactions("drv-1", limit=0)), 3)


class WalletConcurrencyTestCase(FileSqliteAppTestCase):
    def setUp(self):
        super().setUp()
        wallet_ledger.credit("drv-1", 1000, order_id="o-1")
        db.session.commit()

    def _wallet(self) -> Wallet:
        return Wallet.query.filter_by(user_id="drv-1").populate_existing().one()

    def test_concurrent_withdrawals_cannot_overdraw(self):
        def withdraw():
            return wallet_ledger.request_withdrawal("drv-1", 800)

        results = self.run_together(withdraw, withdraw)

        accepted = [r for r in results if isinstance(r, WalletTxn)]
        refused = [r for r in results if isinstance(r, WithdrawalRejected)]
        self.assertEqual((len(accepted), len(refused)), (1, 1), results)

        wallet = self._wallet()
        self.assertEqual(wallet.balance_minor, 200)
        self.assertEqual(wallet.total_withdrawn_minor, 800)
        self.assertEqual(WalletTxn.query.filter_by(user_id="drv-1", type=TxnType.WITHDRAWAL).count(), 1)

    def test_debt_posted_during_cash_settlement_is_kept(self):
        wallet_ledger.record_debt("drv-1", 12325, order_id="o-1")
        db.session.commit()

        results = self.run_together(
            lambda: wallet_ledger.settle_cash_debt("drv-1", 12325, actor_id="admin-1"),
            lambda: wallet_ledger.record_debt("drv-1", 500, order_id="o-2"),
        )
        self.assertTrue(all(isinstance(r, WalletTxn) for r in results), results)

        wallet = self._wallet()
        self.assertEqual(wallet.cash_owed_minor, 500)
        self.assertEqual(wallet.balance_minor, 1000)


if __name__ == "__main__":
    unittest.main()
