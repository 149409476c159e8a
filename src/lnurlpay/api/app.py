"""FastAPI application configuration (LNURL-pay API)."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from ..application.dtos import ErrorResponseDTO
from ..application.metadata import build_metadata_from_png_base64, encode_icon_png_base64
from ..application.use_cases.pay import LnurlPayService
from ..domain.entities import Identity, IdentityRegistry, PayRequestRange
from ..domain.errors import ConfigurationError, LnurlRequestError
from ..domain.payment_backend_protocol import PaymentBackendProtocol
from ..env import Settings
from .routers import lnurlp

logger = logging.getLogger(__name__)

APP_NAME = "lnurlp-server"
APP_VERSION = "1.0.0"


def parse_domain_name(url_authority: str) -> str:
    """Return the host[:port] part of the configured URL authority."""
    domain = urlsplit(url_authority).netloc
    if not domain:
        raise ConfigurationError(f"cannot parse domain from url_authority {url_authority!r}")
    return domain


def build_service(
    settings: Settings,
    backend: PaymentBackendProtocol,
    icon_bytes: bytes,
) -> LnurlPayService:
    """Build the pay service with one precomputed identity per username.

    The icon is transcoded once and shared; each identity's metadata and
    description hash are computed here and never again.

    Raises:
        InvalidIconError: If the icon does not decode as an image.
        ConfigurationError: If the URL authority has no host.
    """
    lnurl = settings.lnurl
    domain = parse_domain_name(lnurl.url_authority)
    png_base64 = encode_icon_png_base64(icon_bytes)

    identities = IdentityRegistry(
        Identity(
            username=username,
            domain=domain,
            metadata=build_metadata_from_png_base64(
                f"{username}@{domain}", lnurl.short_description, png_base64
            ),
        )
        for username in settings.lightning_address_usernames
    )
    for identity in identities.values():
        logger.info("Serving lightning address %s", identity.lightning_address)

    return LnurlPayService(
        identities=identities,
        pay_range=PayRequestRange(
            min_sats=lnurl.min_pay_request_sats,
            max_sats=lnurl.max_pay_request_sats,
        ),
        url_authority=lnurl.url_authority,
        invoice_expiry_seconds=lnurl.invoice_expiry_seconds,
        backend=backend,
    )


async def lnurl_error_handler(request: Request, exc: LnurlRequestError) -> JSONResponse:
    """Render per-request errors in the LNURL error shape."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.reason)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponseDTO(reason=exc.reason).model_dump(),
    )


def create_app(pay_service: LnurlPayService) -> FastAPI:
    """Create and configure an isolated FastAPI application for `pay_service`."""
    app = FastAPI(
        title=APP_NAME,
        version=APP_VERSION,
        description="LNURL-pay and Lightning Address server",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.pay_service = pay_service

    app.add_exception_handler(LnurlRequestError, lnurl_error_handler)

    app.include_router(lnurlp.router)
    app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": APP_NAME,
            "version": APP_VERSION,
            "identities": len(pay_service.identities),
        }

    return app
