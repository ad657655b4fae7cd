from __future__ import annotations

import os
import shutil
import tempfile
import threading
import unittest
import uuid

from nemy import create_app
from nemy.extensions import db
from nemy.models import Business, Order, User
from nemy.services.order_flow_service import Actor
from nemy.services.order_intake_service import register_order
from nemy.utils.jwt_utils import create_token


class SqliteAppTestCase(unittest.TestCase):
    """Boots the app on its own SQLite database; every test starts from empty tables."""

    db_uri = "sqlite:///:memory:"

    @classmethod
    def setUpClass(cls):
        cls._prev_env = {k: os.getenv(k) for k in ("SQLALCHEMY_DATABASE_URI", "DATABASE_URL", "NOTIFICATIONS_MODE")}
        os.environ["SQLALCHEMY_DATABASE_URI"] = cls.db_uri
        os.environ["DATABASE_URL"] = cls.db_uri
        os.environ["NOTIFICATIONS_MODE"] = "disabled"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.engine.dispose()
        for key, value in cls._prev_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.drop_all()
        db.create_all()

    def tearDown(self):
        db.session.rollback()
        db.session.remove()
        self.ctx.pop()

    # data helpers

    def make_user(self, role: str = "customer", name: str = "") -> str:
        user = User(name=name or role, email=f"{uuid.uuid4().hex[:10]}@nemy.test", role=role)
        db.session.add(user)
        db.session.commit()
        return user.id

    def make_business(self, owner_id: str, name: str = "Taqueria") -> str:
        business = Business(owner_id=owner_id, name=name)
        db.session.add(business)
        db.session.commit()
        return business.id

    def make_parties(self) -> dict:
        owner = self.make_user("business_owner")
        return {
            "customer": self.make_user("customer"),
            "owner": owner,
            "business": self.make_business(owner),
            "driver": self.make_user("delivery_driver"),
            "driver2": self.make_user("delivery_driver"),
            "admin": self.make_user("admin"),
        }

    def make_order(
        self,
        parties: dict,
        *,
        subtotal_minor: int = 12000,
        delivery_fee_minor: int = 2500,
        payment_method: str = "card",
        status: str | None = None,
        driver_id: str | None = None,
    ) -> str:
        order = register_order(
            customer_id=parties["customer"],
            business_id=parties["business"],
            subtotal_minor=subtotal_minor,
            delivery_fee_minor=delivery_fee_minor,
            total_minor=subtotal_minor + delivery_fee_minor,
            payment_method=payment_method,
        )
        if status is not None or driver_id is not None:
            row = db.session.get(Order, order.id)
            if status is not None:
                row.status = status
            if driver_id is not None:
                row.delivery_person_id = driver_id
            db.session.commit()
        return order.id

    @staticmethod
    def actor(user_id: str, role: str) -> Actor:
        return Actor(id=user_id, role=role)

    @staticmethod
    def auth(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_token(user_id)}"}


class FileSqliteAppTestCase(SqliteAppTestCase):
    """Runs on a temp-file database so worker threads each get their own connection."""

    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.mkdtemp(prefix="nemy-race-")
        cls.db_uri = "sqlite:///" + os.path.join(cls._tmpdir, "race.db").replace(os.sep, "/")
        super().setUpClass()

    @classmethod
    def tearDownClass(cls):
        super().tearDownClass()
        shutil.rmtree(cls._tmpdir, ignore_errors=True)

    def run_together(self, *calls, timeout: float = 30) -> list:
        """Start every call at once, each in its own thread and app context.

        Returns each call's result, or the exception it raised, in call order.
        A call that returns normally has its session committed.
        """
        barrier = threading.Barrier(len(calls))
        results: list = [None] * len(calls)

        def worker(index: int, call):
            with self.app.app_context():
                try:
                    barrier.wait(timeout=5)
                    results[index] = call()
                    db.session.commit()
                except Exception as e:
                    db.session.rollback()
                    results[index] = e
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=timeout)
        return results
