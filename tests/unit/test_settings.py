"""Tests for YAML configuration loading and validation."""

from __future__ import annotations

import copy
from datetime import timedelta

import pytest

from lnurlpay.domain.errors import ConfigurationError
from lnurlpay.env import (
    TlsStrategy,
    get_settings,
    load_settings,
    parse_bind_address,
    parse_duration,
)


@pytest.fixture
def data(settings_data):
    return copy.deepcopy(settings_data)


def test_load_valid_config(write_config, data) -> None:
    settings = load_settings(write_config(data))

    assert settings.lightning_address_usernames == ["alice", "bob"]
    assert settings.lnurl.url_authority == "https://example.com"
    assert settings.lnurl.invoice_expiry_seconds == 600
    assert settings.webserver.tls_strategy is TlsStrategy.PLAINTEXT


def test_url_authority_trailing_slash_removed(write_config, data) -> None:
    data["lnurl"]["url_authority"] = "https://example.com/"
    settings = load_settings(write_config(data))
    assert settings.lnurl.url_authority == "https://example.com"


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda d: d["lnurl"].update(url_authority=""), "url_authority"),
        (lambda d: d["lnurl"].update(url_authority="example.com"), "url_authority"),
        (lambda d: d["lnurl"].update(icon_file=""), "icon_file"),
        (lambda d: d["lnurl"].update(min_pay_request_sats=0), "min_pay_request_sats"),
        (lambda d: d["lnurl"].update(max_pay_request_sats=-1), "max_pay_request_sats"),
        (
            lambda d: d["lnurl"].update(min_pay_request_sats=20000),
            "min_pay_request_sats must not exceed",
        ),
        (lambda d: d["lnurl"].update(invoice_expiry="soon"), "invalid duration"),
        (lambda d: d.update(lightning_address_usernames=[]), "lightning_address_usernames"),
        (
            lambda d: d.update(lightning_address_usernames=["Alice"]),
            "invalid lightning address username",
        ),
        (
            lambda d: d.update(lightning_address_usernames=["alice", "alice"]),
            "duplicate lightning address username",
        ),
        (lambda d: d["lnd"].update(host=""), "lnd.host"),
        (lambda d: d["lnd"].update(macaroon_file=""), "lnd.macaroon_file"),
        (lambda d: d["lnd"].update(tls_cert_file=""), "unsafe_allow_plaintext"),
        (lambda d: d["webserver"].update(bind_address=""), "bind_address"),
        (lambda d: d["webserver"].update(bind_address="localhost"), "bind_address"),
        (
            lambda d: d["webserver"].update(tls_cert_file="cert.pem"),
            "tls_cert_file and tls_key_file",
        ),
    ],
)
def test_invalid_config_rejected(write_config, data, mutate, message) -> None:
    mutate(data)
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(write_config(data))
    assert message in str(exc_info.value)


def test_plaintext_lnd_allowed_when_opted_in(write_config, data) -> None:
    data["lnd"]["tls_cert_file"] = ""
    data["lnd"]["unsafe_allow_plaintext"] = True
    settings = load_settings(write_config(data))
    assert settings.lnd.unsafe_allow_plaintext is True


def test_static_tls_strategy(write_config, data) -> None:
    data["webserver"].update(tls_cert_file="cert.pem", tls_key_file="key.pem")
    settings = load_settings(write_config(data))
    assert settings.webserver.tls_strategy is TlsStrategy.STATIC


def test_automatic_tls_strategy(write_config, data) -> None:
    data["webserver"] = {
        "autocert_domains": ["example.com"],
        "autocert_dir": "/var/lib/lnurlp/certs",
    }
    settings = load_settings(write_config(data))
    assert settings.webserver.tls_strategy is TlsStrategy.AUTOMATIC
    assert settings.webserver.autocert_directory_url.startswith("https://")


@pytest.mark.parametrize(
    "webserver, message",
    [
        ({"autocert_domains": ["example.com"]}, "autocert_dir"),
        ({"autocert_dir": "/tmp/certs", "bind_address": ":8080"}, "autocert_dir"),
        (
            {
                "autocert_domains": ["example.com"],
                "autocert_dir": "/tmp/certs",
                "bind_address": ":8080",
            },
            "don't combine autocert_domains and bind_address",
        ),
        (
            {
                "autocert_domains": ["example.com"],
                "autocert_dir": "/tmp/certs",
                "tls_cert_file": "cert.pem",
            },
            "don't combine autocert_domains and tls_cert_file",
        ),
    ],
)
def test_automatic_tls_conflicts(write_config, data, webserver, message) -> None:
    data["webserver"] = webserver
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(write_config(data))
    assert message in str(exc_info.value)


def test_missing_file() -> None:
    with pytest.raises(ConfigurationError, match="cannot read config file"):
        load_settings("/nonexistent/lnurlp.yaml")


def test_invalid_yaml(tmp_path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("lnurl: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="invalid YAML"):
        load_settings(str(path))


def test_non_mapping_yaml(tmp_path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="must contain a mapping"):
        load_settings(str(path))


def test_get_settings_reads_env(monkeypatch, write_config, data) -> None:
    monkeypatch.setenv("LNURLP_CONFIG", write_config(data))
    assert get_settings().lnurl.max_pay_request_sats == 10000


def test_get_settings_without_path(monkeypatch) -> None:
    monkeypatch.delenv("LNURLP_CONFIG", raising=False)
    with pytest.raises(ConfigurationError, match="LNURLP_CONFIG"):
        get_settings()


@pytest.mark.parametrize(
    "value, expected",
    [
        ("10m", timedelta(minutes=10)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("90s", timedelta(seconds=90)),
        ("1.5h", timedelta(minutes=90)),
        ("600", timedelta(seconds=600)),
        (600, timedelta(seconds=600)),
        (0, timedelta(0)),
    ],
)
def test_parse_duration(value, expected) -> None:
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "m10", "10x", "10m junk", True])
def test_parse_duration_invalid(value) -> None:
    with pytest.raises(ValueError):
        parse_duration(value)


@pytest.mark.parametrize(
    "address, expected",
    [
        ("127.0.0.1:8080", ("127.0.0.1", 8080)),
        (":443", ("", 443)),
        ("[::1]:8080", ("::1", 8080)),
    ],
)
def test_parse_bind_address(address, expected) -> None:
    assert parse_bind_address(address) == expected


@pytest.mark.parametrize("address", ["localhost", "host:http", "host:70000"])
def test_parse_bind_address_invalid(address) -> None:
    with pytest.raises(ValueError):
        parse_bind_address(address)
