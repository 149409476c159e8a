"""LND REST client issuing description-hash invoices."""

from __future__ import annotations

import base64
import logging
import ssl
from typing import Optional, Type, Union
from types import TracebackType

import httpx

from ...domain.errors import BackendError, ConfigurationError
from ...env import LndSettings
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)

ADD_INVOICE_PATH = "/v1/invoices"
MACAROON_HEADER = "Grpc-Metadata-macaroon"
DEFAULT_TIMEOUT = 15.0


def load_macaroon_hex(path: str) -> str:
    """Read a binary macaroon file and return its hex encoding."""
    try:
        with open(path, "rb") as f:
            return f.read().hex()
    except OSError as e:
        raise ConfigurationError(f"error reading macaroon file {path!r}: {e}") from e


def load_ca_context(path: str) -> ssl.SSLContext:
    """Return a client SSL context trusting only the CA certificate at `path`."""
    try:
        return ssl.create_default_context(cafile=path)
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(f"error reading cert file {path!r}: {e}") from e


def lnd_error(response: httpx.Response) -> str:
    """Extract a human-readable error message from an LND response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return f"{response.status_code}: {body['message']}"
    text = response.text.strip()
    return f"{response.status_code}: {text}" if text else str(response.status_code)


class AsyncLndClient:
    """Asynchronous client for LND's AddInvoice REST endpoint.

    Authenticates every request with the macaroon header and verifies the
    node's certificate against the configured CA.
    """

    def __init__(
        self,
        base_url: str,
        macaroon_hex: str,
        verify: Union[ssl.SSLContext, bool] = True,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._http = AsyncHttpClient(
            base_url,
            timeout=timeout,
            headers={MACAROON_HEADER: macaroon_hex},
            verify=verify,
            transport=transport,
        )

    async def create_payment_request(
        self,
        value_msat: int,
        description_hash: bytes,
        expiry_seconds: int,
    ) -> str:
        payload = {
            "value_msat": str(value_msat),
            "description_hash": base64.b64encode(description_hash).decode("ascii"),
            "expiry": str(expiry_seconds),
        }
        try:
            resp = await self._http.post(ADD_INVOICE_PATH, json=payload)
        except httpx.HTTPStatusError as e:
            cause = lnd_error(e.response)
            logger.error("LND AddInvoice failed: %s", cause)
            raise BackendError(cause) from e
        except httpx.HTTPError as e:
            cause = str(e) or type(e).__name__
            logger.error("LND AddInvoice request error: %s", cause)
            raise BackendError(cause) from e

        try:
            body = resp.json()
        except ValueError as e:
            raise BackendError(f"invalid JSON in response: {e}") from e
        payment_request = body.get("payment_request") if isinstance(body, dict) else None
        if not payment_request:
            raise BackendError("response has no payment_request")
        return payment_request

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AsyncLndClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()


def build_lnd_client(settings: LndSettings) -> AsyncLndClient:
    """Create the LND client from settings, reading credential files once."""
    macaroon_hex = load_macaroon_hex(settings.macaroon_file)
    if settings.tls_cert_file:
        return AsyncLndClient(
            f"https://{settings.host}",
            macaroon_hex,
            verify=load_ca_context(settings.tls_cert_file),
        )
    logger.warning("Connecting to LND at %s without TLS", settings.host)
    return AsyncLndClient(f"http://{settings.host}", macaroon_hex, verify=False)
