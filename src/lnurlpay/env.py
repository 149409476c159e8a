from __future__ import annotations

import enum
import os
import re
from datetime import timedelta
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .domain.errors import ConfigurationError

CONFIG_PATH_ENV = "LNURLP_CONFIG"
LETS_ENCRYPT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"

USERNAME_PATTERN = re.compile(r"^[a-z0-9._-]+$")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> timedelta:
    """Parse durations written as ``"1h30m"``, ``"600s"`` or plain seconds."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    text = str(value).strip()
    if text.isdigit():
        return timedelta(seconds=int(text))
    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=seconds)


def parse_bind_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` bind address; an empty host means all interfaces."""
    host, sep, port_text = address.rpartition(":")
    if not sep or not port_text.isdigit():
        raise ValueError(f"invalid bind_address {address!r}, expected host:port")
    port = int(port_text)
    if not 0 <= port <= 65535:
        raise ValueError(f"invalid port in bind_address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port


class TlsStrategy(str, enum.Enum):
    PLAINTEXT = "plaintext"
    STATIC = "static"
    AUTOMATIC = "automatic"


class WebserverSettings(BaseModel):
    bind_address: str = ""
    tls_cert_file: str = ""
    tls_key_file: str = ""

    # Automatic mode; excludes bind_address, tls_cert_file and tls_key_file.
    autocert_domains: list[str] = Field(default_factory=list)
    autocert_dir: str = ""
    autocert_email: str = ""
    autocert_directory_url: str = LETS_ENCRYPT_DIRECTORY_URL

    @model_validator(mode="after")
    def validate_strategy(self) -> "WebserverSettings":
        if bool(self.autocert_dir) != bool(self.autocert_domains):
            raise ValueError(
                "specify autocert_dir when autocert_domains is specified"
            )
        if self.autocert_domains:
            if self.bind_address:
                raise ValueError("don't combine autocert_domains and bind_address")
            if self.tls_cert_file:
                raise ValueError("don't combine autocert_domains and tls_cert_file")
            if self.tls_key_file:
                raise ValueError("don't combine autocert_domains and tls_key_file")
        elif not self.bind_address:
            raise ValueError("missing 'bind_address' in config")
        else:
            parse_bind_address(self.bind_address)
        if bool(self.tls_cert_file) != bool(self.tls_key_file):
            raise ValueError("tls_cert_file and tls_key_file must be given together")
        return self

    @property
    def tls_strategy(self) -> TlsStrategy:
        if self.autocert_domains:
            return TlsStrategy.AUTOMATIC
        if self.tls_cert_file:
            return TlsStrategy.STATIC
        return TlsStrategy.PLAINTEXT


class LnurlSettings(BaseModel):
    url_authority: str
    icon_file: str
    short_description: str = ""
    max_pay_request_sats: int = Field(..., gt=0)
    min_pay_request_sats: int = Field(..., gt=0)
    invoice_expiry: timedelta = timedelta(0)

    @field_validator("url_authority")
    @classmethod
    def validate_url_authority(cls, v: str) -> str:
        if not v:
            raise ValueError("missing 'url_authority' in config")
        if not v.startswith(("http://", "https://")):
            raise ValueError("url_authority must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("icon_file")
    @classmethod
    def validate_icon_file(cls, v: str) -> str:
        if not v:
            raise ValueError("missing 'icon_file' in config")
        return v

    @field_validator("invoice_expiry", mode="before")
    @classmethod
    def validate_invoice_expiry(cls, v: Any) -> timedelta:
        return parse_duration(v)

    @model_validator(mode="after")
    def validate_range(self) -> "LnurlSettings":
        if self.min_pay_request_sats > self.max_pay_request_sats:
            raise ValueError(
                "min_pay_request_sats must not exceed max_pay_request_sats"
            )
        return self

    @property
    def invoice_expiry_seconds(self) -> int:
        return int(self.invoice_expiry.total_seconds())


class LndSettings(BaseModel):
    host: str
    tls_cert_file: str = ""
    macaroon_file: str
    unsafe_allow_plaintext: bool = False

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        if not v:
            raise ValueError("missing 'lnd.host' in config")
        return v

    @field_validator("macaroon_file")
    @classmethod
    def validate_macaroon_file(cls, v: str) -> str:
        if not v:
            raise ValueError("missing 'lnd.macaroon_file' in config")
        return v

    @model_validator(mode="after")
    def validate_transport(self) -> "LndSettings":
        if not self.tls_cert_file and not self.unsafe_allow_plaintext:
            raise ValueError(
                "missing 'lnd.tls_cert_file' in config; "
                "unsafe_allow_plaintext=true is required for plaintext transport"
            )
        return self


class Settings(BaseModel):
    """Typed application settings loaded from the YAML configuration file."""

    webserver: WebserverSettings
    lnurl: LnurlSettings
    lightning_address_usernames: list[str] = Field(..., min_length=1)
    lnd: LndSettings

    @field_validator("lightning_address_usernames")
    @classmethod
    def validate_usernames(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        for username in v:
            if not USERNAME_PATTERN.match(username):
                raise ValueError(f"invalid lightning address username: {username!r}")
            if username in seen:
                raise ValueError(f"duplicate lightning address username: {username!r}")
            seen.add(username)
        return v


def load_settings(path: str) -> Settings:
    """Read and validate the YAML configuration file at `path`.

    Raises:
        ConfigurationError: If the file is unreadable or fails validation.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")

    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def get_settings(path: Optional[str] = None) -> Settings:
    """Return settings from `path`, or from the file named by LNURLP_CONFIG."""
    path = path or os.environ.get(CONFIG_PATH_ENV)
    if not path:
        raise ConfigurationError(
            f"Please provide path to YAML config file (or set {CONFIG_PATH_ENV})."
        )
    return load_settings(path)
