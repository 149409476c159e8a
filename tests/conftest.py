"""Shared pytest fixtures for LNURL-pay tests."""

from __future__ import annotations

from typing import Any

import pytest
import yaml

from lnurlpay.api.app import build_service
from lnurlpay.application.use_cases.pay import LnurlPayService
from lnurlpay.env import Settings
from tests.fixtures import FakePaymentBackend, make_image_bytes


@pytest.fixture
def icon_bytes() -> bytes:
    """A tiny PNG icon."""
    return make_image_bytes("PNG")


@pytest.fixture
def settings_data() -> dict[str, Any]:
    """Raw configuration for alice@example.com, range [100, 10000] sats, 600s expiry."""
    return {
        "webserver": {"bind_address": "127.0.0.1:8080"},
        "lnurl": {
            "url_authority": "https://example.com",
            "icon_file": "icon.png",
            "short_description": "Pay alice",
            "min_pay_request_sats": 100,
            "max_pay_request_sats": 10000,
            "invoice_expiry": "10m",
        },
        "lightning_address_usernames": ["alice", "bob"],
        "lnd": {
            "host": "127.0.0.1:8080",
            "tls_cert_file": "tls.cert",
            "macaroon_file": "invoice.macaroon",
        },
    }


@pytest.fixture
def settings(settings_data: dict[str, Any]) -> Settings:
    return Settings.model_validate(settings_data)


@pytest.fixture
def write_config(tmp_path):
    """Write a configuration mapping to a YAML file and return its path."""

    def _write(data: dict[str, Any]) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def fake_backend() -> FakePaymentBackend:
    return FakePaymentBackend()


@pytest.fixture
def pay_service(
    settings: Settings, fake_backend: FakePaymentBackend, icon_bytes: bytes
) -> LnurlPayService:
    return build_service(settings, fake_backend, icon_bytes)
