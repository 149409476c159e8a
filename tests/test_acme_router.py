"""Unit tests for the port 80 challenge and redirect app."""

import unittest

from fastapi.testclient import TestClient

from lnurlpay.api.acme_app import create_acme_app
from lnurlpay.infrastructure.tls.cache import DirCache
from lnurlpay.infrastructure.tls.manager import CertificateManager


class TestAcmeRouter(unittest.TestCase):
    """Test cases for challenge responses and HTTPS redirection."""

    def setUp(self):
        """Set up test fixtures."""
        self.manager = CertificateManager(
            ["example.com"], DirCache("/nonexistent"), "https://acme.invalid/directory"
        )
        self.app = create_acme_app(self.manager)
        self.client = TestClient(self.app, base_url="http://example.com")

    def test_redirects_to_https(self):
        """Test that plain requests are permanently redirected to HTTPS."""
        response = self.client.get("/foo?x=1", follow_redirects=False)

        self.assertEqual(response.status_code, 308)
        self.assertEqual(response.headers["location"], "https://example.com/foo?x=1")

    def test_redirects_root_and_other_methods(self):
        """Test redirection of the root path and of non-GET methods."""
        response = self.client.post("/pay/callback/alice", follow_redirects=False)

        self.assertEqual(response.status_code, 308)
        self.assertEqual(
            response.headers["location"], "https://example.com/pay/callback/alice"
        )

        response = self.client.get("/", follow_redirects=False)
        self.assertEqual(response.headers["location"], "https://example.com/")

    def test_serves_pending_challenge(self):
        """Test that a pending token is answered with its key authorization."""
        self.manager._add_token("abc123", "abc123.thumbprint")

        response = self.client.get("/.well-known/acme-challenge/abc123")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "abc123.thumbprint")

    def test_unknown_challenge(self):
        """Test that an unknown token is not redirected."""
        response = self.client.get(
            "/.well-known/acme-challenge/missing", follow_redirects=False
        )

        self.assertEqual(response.status_code, 404)

    def test_challenge_for_disallowed_host(self):
        """Test that challenges are only answered for configured domains."""
        self.manager._add_token("abc123", "abc123.thumbprint")
        client = TestClient(self.app, base_url="http://evil.com")

        response = client.get("/.well-known/acme-challenge/abc123")

        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
