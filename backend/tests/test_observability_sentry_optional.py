from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from flask import Flask

from nemy.utils.observability import _before_send_scrub, init_sentry


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        with patch.dict(os.environ, {"SENTRY_DSN": ""}, clear=False):
            init_sentry(app)

    def test_scrubs_credentials_and_idempotency_keys(self):
        event = {"request": {"headers": {"Authorization": "Bearer abc", "Idempotency-Key": "k1", "Accept": "json"}}}
        scrubbed = _before_send_scrub(event, None)
        headers = scrubbed["request"]["headers"]
        self.assertEqual(headers["Authorization"], "[REDACTED]")
        self.assertEqual(headers["Idempotency-Key"], "[REDACTED]")
        self.assertEqual(headers["Accept"], "json")


if __name__ == "__main__":
    unittest.main()
