"""
tests/test_transport.py
=======================
Unit tests for the CRL / OCSP transport, the cancellation context and
the config loader. HTTP is served by httpx.MockTransport.
"""

import json
import os
import tempfile
import threading
import time
import unittest
from unittest import mock

import httpx

from tlsinspect.config import DEFAULTS, load_config
from tlsinspect.context import CheckContext
from tlsinspect.errors import CheckCancelled, FetchError
from tlsinspect.paths import CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH, config_path
from tlsinspect.transport import fetch_crl, post_ocsp


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestFetchCRL(unittest.TestCase):
    """GET of CRL distribution points."""

    def test_returns_body(self):
        seen = {}

        def handler(request):
            seen["accept"] = request.headers["Accept"]
            return httpx.Response(200, content=b"crl-bytes")

        body = fetch_crl("https://crl.example.com/a.crl", client=mock_client(handler))
        self.assertEqual(body, b"crl-bytes")
        self.assertIn("application/pkix-crl", seen["accept"])

    def test_http_error_status(self):
        client = mock_client(lambda request: httpx.Response(404))
        with self.assertRaises(FetchError) as ctx:
            fetch_crl("https://crl.example.com/a.crl", client=client)
        self.assertIn("404", str(ctx.exception))

    def test_size_limit(self):
        cfg = dict(DEFAULTS, max_crl_bytes=16)
        client = mock_client(lambda request: httpx.Response(200, content=b"x" * 64))
        with self.assertRaises(FetchError) as ctx:
            fetch_crl("https://crl.example.com/a.crl", cfg=cfg, client=client)
        self.assertIn("too large", str(ctx.exception))

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(FetchError) as ctx:
            fetch_crl("https://crl.example.com/a.crl", client=mock_client(handler))
        self.assertIn("connection refused", str(ctx.exception))

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with self.assertRaises(FetchError) as ctx:
            fetch_crl("https://crl.example.com/a.crl", client=mock_client(handler))
        self.assertIn("timeout", str(ctx.exception))

    def test_ldap_has_no_client(self):
        with self.assertRaises(FetchError) as ctx:
            fetch_crl("ldap://ldap.example.com/cn=crl")
        self.assertEqual(str(ctx.exception), 'unsupported protocol scheme "ldap"')


class TestPostOCSP(unittest.TestCase):
    """POST of DER OCSP requests."""

    def test_posts_der_request(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["content_type"] = request.headers["Content-Type"]
            seen["body"] = request.content
            return httpx.Response(200, content=b"ocsp-response")

        body = post_ocsp("http://ocsp.example.com", b"request", client=mock_client(handler))
        self.assertEqual(body, b"ocsp-response")
        self.assertEqual(seen["method"], "POST")
        self.assertEqual(seen["content_type"], "application/ocsp-request")
        self.assertEqual(seen["body"], b"request")

    def test_error_status(self):
        client = mock_client(lambda request: httpx.Response(500))
        with self.assertRaises(FetchError):
            post_ocsp("http://ocsp.example.com", b"request", client=client)


class TestCheckContext(unittest.TestCase):
    """Cancellation token and deadline."""

    def test_call_returns_value(self):
        self.assertEqual(CheckContext().call(lambda a, b: a + b, 2, 3), 5)

    def test_call_propagates_errors(self):
        def boom():
            raise FetchError("boom")

        with self.assertRaises(FetchError):
            CheckContext().call(boom)

    def test_cancel_before_call(self):
        ctx = CheckContext()
        ctx.cancel()
        self.assertTrue(ctx.cancelled)
        with self.assertRaises(CheckCancelled):
            ctx.call(lambda: None)

    def test_cancel_during_call(self):
        release = threading.Event()
        self.addCleanup(release.set)
        ctx = CheckContext(poll_interval=0.01)
        threading.Timer(0.05, ctx.cancel).start()
        started = time.monotonic()
        with self.assertRaises(CheckCancelled):
            ctx.call(release.wait, 30)
        self.assertLess(time.monotonic() - started, 5)

    def test_shared_event(self):
        event = threading.Event()
        ctx = CheckContext(cancel_event=event)
        event.set()
        self.assertTrue(ctx.cancelled)

    def test_timeout_for(self):
        self.assertEqual(CheckContext().timeout_for(10.0), 10.0)
        self.assertIsNone(CheckContext().remaining())
        self.assertLessEqual(CheckContext(timeout=1.0).timeout_for(10.0), 1.0)

    def test_expired_deadline(self):
        ctx = CheckContext(timeout=0)
        with self.assertRaises(CheckCancelled) as raised:
            ctx.check()
        self.assertEqual(str(raised.exception), "deadline exceeded")

    def test_from_config(self):
        cfg = dict(DEFAULTS, check_timeout_seconds=5.0, cancel_poll_interval_seconds=0.2)
        ctx = CheckContext.from_config(cfg)
        self.assertEqual(ctx.poll_interval, 0.2)
        self.assertLessEqual(ctx.remaining(), 5.0)


class TestConfig(unittest.TestCase):
    """config.json loading."""

    def _write(self, text: str) -> str:
        fd, path = tempfile.mkstemp(suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        self.addCleanup(os.remove, path)
        return path

    def test_missing_file_gives_defaults(self):
        self.assertEqual(load_config("/nonexistent/tlsinspect.json"), DEFAULTS)

    def test_partial_override(self):
        path = self._write(json.dumps({"crl_schemes": ["http", "https"], "unknown": 1}))
        cfg = load_config(path)
        self.assertEqual(cfg["crl_schemes"], ["http", "https"])
        self.assertEqual(cfg["max_crl_bytes"], DEFAULTS["max_crl_bytes"])
        self.assertNotIn("unknown", cfg)

    def test_invalid_json(self):
        with self.assertRaises(ValueError):
            load_config(self._write("{not json"))

    def test_not_an_object(self):
        with self.assertRaises(ValueError):
            load_config(self._write("[1, 2]"))

    def test_bundled_config_matches_defaults(self):
        self.assertEqual(load_config(DEFAULT_CONFIG_PATH), DEFAULTS)

    def test_env_override(self):
        path = self._write(json.dumps({"user_agent": "custom"}))
        with mock.patch.dict(os.environ, {CONFIG_ENV_VAR: path}):
            self.assertEqual(config_path(), path)
            self.assertEqual(load_config()["user_agent"], "custom")


if __name__ == "__main__":
    unittest.main(verbosity=2)
