"""LNURL-pay API routes: discovery and invoice callback."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Path, Request
from prometheus_client import Counter, Histogram

from ...domain.errors import LnurlRequestError
from ..dependencies import get_pay_service
from ...application.dtos import (
    ErrorResponseDTO,
    InvoiceResponseDTO,
    PayRequestResponseDTO,
)
from ...application.use_cases.pay import LnurlPayService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["lnurlp"])


pay_requests_total = Counter(
    "lnurlp_pay_requests_total",
    "Total LNURL-pay discovery requests served",
)

invoice_requests_total = Counter(
    "lnurlp_invoice_requests_total",
    "Total LNURL-pay callback requests processed",
    ["status"],
)

invoice_request_duration_seconds = Histogram(
    "lnurlp_invoice_request_duration_seconds",
    "Wall time to process an LNURL-pay callback request",
    ["status"],
)


def _log_request(request: Request) -> None:
    logger.info("%s %s", request.method, request.url.path)


@router.get(
    "/.well-known/lnurlp/{username}",
    response_model=PayRequestResponseDTO,
    responses={404: {"model": ErrorResponseDTO}},
)
async def get_pay_request(
    request: Request,
    username: str = Path(..., description="Lightning address username"),
    pay_service: LnurlPayService = Depends(get_pay_service),
) -> PayRequestResponseDTO:
    """Return the payRequest document for a lightning address."""
    _log_request(request)
    result = pay_service.get_pay_request(username)
    pay_requests_total.inc()
    return result


@router.get(
    "/pay/callback/{username}",
    response_model=InvoiceResponseDTO,
    responses={
        400: {"model": ErrorResponseDTO},
        404: {"model": ErrorResponseDTO},
        500: {"model": ErrorResponseDTO},
    },
)
async def pay_callback(
    request: Request,
    username: str = Path(..., description="Lightning address username"),
    pay_service: LnurlPayService = Depends(get_pay_service),
) -> InvoiceResponseDTO:
    """Issue an invoice for `amount` millisats bound to the user's metadata."""
    _log_request(request)
    start_time = time.perf_counter()
    # A repeated parameter counts by its first occurrence.
    amounts = request.query_params.getlist("amount")
    amount = amounts[0] if amounts else None
    try:
        result = await pay_service.create_invoice(username, amount)
    except LnurlRequestError as e:
        label = "server_error" if e.status_code >= 500 else "client_error"
        invoice_requests_total.labels(status=label).inc()
        elapsed = time.perf_counter() - start_time
        invoice_request_duration_seconds.labels(status=label).observe(elapsed)
        raise
    invoice_requests_total.labels(status="success").inc()
    elapsed = time.perf_counter() - start_time
    invoice_request_duration_seconds.labels(status="success").observe(elapsed)
    return result
