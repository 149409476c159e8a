"""FastAPI dependencies for the LNURL-pay API."""

from __future__ import annotations

from fastapi import Request

from ..application.use_cases.pay import LnurlPayService


def get_pay_service(request: Request) -> LnurlPayService:
    """Get the pay service bound to the application serving this request."""
    return request.app.state.pay_service
