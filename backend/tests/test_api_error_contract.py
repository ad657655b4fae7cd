from __future__ import annotations

import unittest
from unittest.mock import patch

from order_fixtures import SqliteAppTestCase


class ApiErrorContractTestCase(SqliteAppTestCase):
    def test_unknown_api_route_returns_json_error_shape(self):
        res = self.client.get("/api/does-not-exist")
        self.assertEqual(res.status_code, 404)
        self.assertTrue(res.is_json)
        body = res.get_json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error"], "Not Found")
        self.assertTrue(body["message"])
        self.assertEqual(body["status"], 404)
        self.assertEqual(body["trace_id"], res.headers["X-Request-ID"])

    def test_wrong_method_returns_json(self):
        res = self.client.delete("/api/orders")
        self.assertEqual(res.status_code, 405)
        self.assertEqual(res.get_json()["status"], 405)

    def test_unexpected_failure_is_a_generic_500(self):
        user_id = self.make_user("customer")
        with patch("nemy.segments.segment_orders_api.load_order_for_actor", side_effect=RuntimeError("db on fire")):
            res = self.client.get("/api/orders/any", headers=self.auth(user_id))
        self.assertEqual(res.status_code, 500)
        body = res.get_json()
        self.assertEqual(body["error"], "InternalServerError")
        self.assertNotIn("db on fire", res.get_data(as_text=True))


if __name__ == "__main__":
    unittest.main()
