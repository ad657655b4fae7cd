from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from order_fixtures import FileSqliteAppTestCase, SqliteAppTestCase

from nemy.errors import InvalidTransition, OrderNotFound, StorageFailure
from nemy.extensions import db
from nemy.jobs.settlement_runner import run_settlement_backlog
from nemy.models import JobRun, Notification, Order, OrderEvent, PlatformEvent, Wallet, WalletTxn
from nemy.services import wallet_ledger
from nemy.services.order_flow_service import accept_order, request_transition
from nemy.services.settlement_service import platform_wallet_id, settle_order
from nemy.services.wallet_ledger import TxnType


class SettlementEngineTestCase(SqliteAppTestCase):
    def setUp(self):
        super().setUp()
        self.p = self.make_parties()
        self.owner = self.actor(self.p["owner"], "business_owner")
        self.driver = self.actor(self.p["driver"], "delivery_driver")
        self.customer = self.actor(self.p["customer"], "customer")

    def _walk_to_en_route(self, order_id: str) -> None:
        for status in ("confirmed", "preparing", "ready"):
            request_transition(order_id, status, actor=self.owner)
        accept_order(order_id, actor=self.driver)
        request_transition(order_id, "on_the_way", actor=self.driver)

    def _balance(self, owner_id: str) -> tuple[int, int]:
        wallet = wallet_ledger.get_wallet(owner_id)
        if wallet is None:
            return 0, 0
        db.session.refresh(wallet)
        return int(wallet.balance_minor), int(wallet.cash_owed_minor)

    def test_card_order_full_lifecycle_settles_once(self):
        order_id = self.make_order(self.p, payment_method="card")
        self._walk_to_en_route(order_id)

        outcome = request_transition(order_id, "delivered", actor=self.driver)
        summary = outcome.settlement
        self.assertEqual(outcome.from_status, "on_the_way")
        self.assertEqual(outcome.order.status, "delivered")
        self.assertIsNotNone(outcome.order.delivered_at)
        self.assertFalse(summary.already_settled)
        self.assertEqual(summary.platform_fee_minor, 1565)
        self.assertEqual(summary.business_earnings_minor, 10435)
        self.assertEqual(summary.delivery_earnings_minor, 2175)
        self.assertEqual(summary.cash_owed_minor, 0)
        self.assertEqual(len(summary.postings), 3)

        self.assertEqual(self._balance(self.p["business"]), (10435, 0))
        self.assertEqual(self._balance(platform_wallet_id()), (1565, 0))
        self.assertEqual(self._balance(self.p["driver"]), (2175, 0))

        order = db.session.get(Order, order_id)
        snapshot = order.commission_snapshot()
        self.assertEqual(snapshot["inputs"]["payment_method"], "card")
        self.assertEqual(snapshot["delivery_earnings_minor"], 2175)

    def test_repeat_settlement_is_a_no_op(self):
        order_id = self.make_order(self.p)
        self._walk_to_en_route(order_id)
        request_transition(order_id, "delivered", actor=self.driver)
        txns_before = WalletTxn.query.count()

        again = settle_order(order_id)
        self.assertTrue(again.already_settled)
        self.assertEqual(again.business_earnings_minor, 10435)
        self.assertEqual(WalletTxn.query.count(), txns_before)
        self.assertEqual(self._balance(self.p["driver"]), (2175, 0))

        with self.assertRaises(InvalidTransition):
            request_transition(order_id, "delivered", actor=self.driver)

    def test_cash_order_books_driver_debt(self):
        order_id = self.make_order(self.p, payment_method="cash")
        self._walk_to_en_route(order_id)
        en_route = request_transition(order_id, "in_transit", actor=self.driver)
        self.assertEqual(en_route.order.to_dict()["display_status"], "on_the_way")

        summary = request_transition(order_id, "delivered", actor=self.driver).settlement
        self.assertEqual(summary.cash_owed_minor, 12325)
        self.assertEqual(self._balance(self.p["driver"]), (2175, 12325))
        self.assertEqual(wallet_ledger.get_wallet(self.p["driver"]).withdrawable_minor, 0)
        types = {t.type for t in WalletTxn.query.filter_by(order_id=order_id, user_id=self.p["driver"]).all()}
        self.assertEqual(types, {TxnType.CASH_INCOME, TxnType.CASH_DEBT})

    def test_cancelled_order_moves_no_money(self):
        order_id = self.make_order(self.p)
        outcome = request_transition(order_id, "cancelled", actor=self.customer, reason="changed my mind")

        self.assertEqual(outcome.order.status, "cancelled")
        self.assertEqual(outcome.order.cancelled_by, self.p["customer"])
        self.assertEqual(outcome.order.cancellation_reason, "changed my mind")
        self.assertEqual(WalletTxn.query.count(), 0)
        self.assertEqual(PlatformEvent.query.filter_by(event_type="order_cancelled").count(), 1)
        with self.assertRaises(InvalidTransition):
            settle_order(order_id)
        with self.assertRaises(InvalidTransition):
            request_transition(order_id, "confirmed", actor=self.owner)

    def test_admin_cancel_of_en_route_cash_order_moves_no_money(self):
        earlier = self.make_order(self.p, payment_method="cash")
        self._walk_to_en_route(earlier)
        request_transition(earlier, "delivered", actor=self.driver)
        owners = (self.p["business"], self.p["driver"], platform_wallet_id())
        before = {owner: self._balance(owner) for owner in owners}
        txns_before = WalletTxn.query.count()

        order_id = self.make_order(self.p, payment_method="cash")
        self._walk_to_en_route(order_id)
        admin = self.actor(self.p["admin"], "admin")
        outcome = request_transition(order_id, "cancelled", actor=admin, reason="customer unreachable")

        self.assertEqual(outcome.order.status, "cancelled")
        self.assertEqual(outcome.order.delivery_person_id, self.p["driver"])
        self.assertIsNone(outcome.settlement)
        self.assertEqual(WalletTxn.query.filter_by(order_id=order_id).count(), 0)
        self.assertEqual(WalletTxn.query.count(), txns_before)
        self.assertEqual({owner: self._balance(owner) for owner in owners}, before)
        with self.assertRaises(InvalidTransition):
            settle_order(order_id)

    def test_ledger_collision_rolls_back_the_claim(self):
        order_id = self.make_order(self.p)
        self._walk_to_en_route(order_id)
        # Another writer already holds the business income entry for this order.
        wallet_ledger.credit(self.p["business"], 0)
        wallet = Wallet.query.filter_by(user_id=self.p["business"]).one()
        db.session.add(
            WalletTxn(wallet_id=wallet.id, user_id=self.p["business"], order_id=order_id, type=TxnType.INCOME, amount_minor=1)
        )
        db.session.commit()

        with patch("nemy.services.wallet_ledger._existing_entry", return_value=None):
            with self.assertRaises(StorageFailure):
                settle_order(order_id)

        order = db.session.get(Order, order_id, populate_existing=True)
        self.assertEqual(order.status, "on_the_way")
        self.assertIsNone(order.platform_fee_minor)
        self.assertEqual(self._balance(self.p["business"]), (0, 0))
        self.assertIsNone(wallet_ledger.get_wallet(self.p["driver"]))
        self.assertIsNone(wallet_ledger.get_wallet(platform_wallet_id()))
        self.assertEqual(WalletTxn.query.filter_by(order_id=order_id).count(), 1)

    def test_storage_failure_rolls_back_everything_and_retry_succeeds(self):
        order_id = self.make_order(self.p, payment_method="cash")
        self._walk_to_en_route(order_id)

        boom = OperationalError("INSERT INTO transactions", {}, Exception("disk I/O error"))
        with patch("nemy.services.wallet_ledger.record_debt", side_effect=boom):
            with self.assertRaises(StorageFailure):
                request_transition(order_id, "delivered", actor=self.driver)

        order = db.session.get(Order, order_id, populate_existing=True)
        self.assertEqual(order.status, "on_the_way")
        self.assertIsNone(order.platform_fee_minor)
        self.assertIsNone(order.delivered_at)
        self.assertEqual(WalletTxn.query.count(), 0)
        self.assertIsNone(wallet_ledger.get_wallet(self.p["business"]))

        summary = request_transition(order_id, "delivered", actor=self.driver).settlement
        self.assertFalse(summary.already_settled)
        self.assertEqual(self._balance(self.p["driver"]), (2175, 12325))

    def test_settle_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            settle_order("missing")

    def test_settle_requires_en_route_status(self):
        order_id = self.make_order(self.p, status="ready")
        with self.assertRaises(InvalidTransition):
            settle_order(order_id)
        order_id = self.make_order(self.p, status="on_the_way", driver_id=self.p["driver"])
        with self.assertRaises(InvalidTransition):
            settle_order(order_id, expected_status="in_transit")

    def test_transitions_write_events_and_notifications(self):
        order_id = self.make_order(self.p)
        self._walk_to_en_route(order_id)
        request_transition(order_id, "delivered", actor=self.driver)

        statuses = [e.to_status for e in OrderEvent.query.filter_by(order_id=order_id).order_by(OrderEvent.id).all()]
        self.assertEqual(statuses, ["pending", "confirmed", "preparing", "ready", "picked_up", "on_the_way", "delivered"])
        delivered_for = {n.user_id for n in Notification.query.filter_by(order_id=order_id).all() if "delivered" in n.message}
        # The driver marked it delivered, so only the other parties hear about it.
        self.assertEqual(delivered_for, {self.p["customer"], self.p["owner"]})
        applied = PlatformEvent.query.filter_by(event_type="settlement_applied").one()
        self.assertEqual(applied.subject_id, order_id)
        self.assertEqual(applied.details["platform_fee_minor"], 1565)
        self.assertEqual(applied.details["delivery_earnings_minor"], 2175)

    def test_backlog_settles_stranded_deliveries(self):
        stranded = self.make_order(self.p, status="delivered", driver_id=self.p["driver"])
        no_driver = self.make_order(self.p, status="delivered")

        result = run_settlement_backlog()
        self.assertTrue(result["ok"])
        self.assertEqual(result["processed"], 2)
        self.assertEqual(result["settled"], 2)
        self.assertTrue(db.session.get(Order, stranded, populate_existing=True).is_settled)
        self.assertEqual(WalletTxn.query.filter_by(order_id=no_driver).count(), 2)
        self.assertEqual(JobRun.query.filter_by(job_name="settlement_backlog").count(), 1)

        again = run_settlement_backlog()
        self.assertEqual(again["processed"], 0)

    def test_backlog_surfaces_storage_failures_for_retry(self):
        self.make_order(self.p, status="delivered", driver_id=self.p["driver"])
        failure = StorageFailure("Settlement could not be saved; no funds were moved. Retry the request.")
        with patch("nemy.jobs.settlement_runner.settle_order", side_effect=failure):
            with self.assertRaises(StorageFailure):
                run_settlement_backlog()

        run = JobRun.query.filter_by(job_name="settlement_backlog").one()
        self.assertFalse(run.ok)
        self.assertEqual(WalletTxn.query.count(), 0)


class SettlementRaceTestCase(FileSqliteAppTestCase):
    def test_concurrent_settlements_post_once(self):
        p = self.make_parties()
        order_id = self.make_order(p, payment_method="cash", status="on_the_way", driver_id=p["driver"])

        def settle():
            return settle_order(order_id)

        results = self.run_together(settle, settle)

        self.assertEqual(sorted(r.already_settled for r in results), [False, True], results)
        self.assertEqual(WalletTxn.query.filter_by(order_id=order_id).count(), 4)
        driver = Wallet.query.filter_by(user_id=p["driver"]).populate_existing().one()
        self.assertEqual((driver.balance_minor, driver.cash_owed_minor), (2175, 12325))
        business = Wallet.query.filter_by(user_id=p["business"]).populate_existing().one()
        self.assertEqual(business.balance_minor, 10435)
        order = db.session.get(Order, order_id, populate_existing=True)
        self.assertEqual((order.status, order.version), ("delivered", 2))
        self.assertEqual(order.platform_fee_minor, 1565)


if __name__ == "__main__":
    unittest.main()
