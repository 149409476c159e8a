"""Use cases for the LNURL-pay protocol: discovery and invoice callback."""

from __future__ import annotations

import logging
from typing import Optional

from ...domain.entities import IdentityRegistry, PayRequestRange
from ...domain.payment_backend_protocol import PaymentBackendProtocol
from ..dtos import InvoiceResponseDTO, PayRequestResponseDTO
from ..validators import parse_amount_msat, validate_amount_in_range

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/pay/callback/"


class LnurlPayService:
    """Service answering LNURL-pay requests for a fixed set of identities.

    Holds only read-only state: the identity registry built at startup and a
    handle to the payment backend. Safe to share across concurrent requests.
    """

    def __init__(
        self,
        identities: IdentityRegistry,
        pay_range: PayRequestRange,
        url_authority: str,
        invoice_expiry_seconds: int,
        backend: PaymentBackendProtocol,
    ) -> None:
        self.identities = identities
        self.pay_range = pay_range
        self.url_authority = url_authority.rstrip("/")
        self.invoice_expiry_seconds = invoice_expiry_seconds
        self.backend = backend

    def callback_url(self, username: str) -> str:
        return f"{self.url_authority}{CALLBACK_PATH}{username}"

    def get_pay_request(self, username: str) -> PayRequestResponseDTO:
        """Return the payRequest document for `username`."""
        identity = self.identities.lookup(username)
        return PayRequestResponseDTO(
            callback=self.callback_url(identity.username),
            max_sendable=self.pay_range.max_sendable_msat,
            min_sendable=self.pay_range.min_sendable_msat,
            metadata=identity.metadata.metadata,
        )

    async def create_invoice(
        self, username: str, raw_amount: Optional[str]
    ) -> InvoiceResponseDTO:
        """Validate the requested amount and issue an invoice for it.

        Raises:
            UnknownIdentityError: If `username` is not configured.
            MalformedAmountError: If `raw_amount` is not an unsigned integer.
            AmountOutOfRangeError: If the amount is outside the sendable range.
            BackendError: If the backend fails to create the invoice.
        """
        identity = self.identities.lookup(username)
        amount_msat = parse_amount_msat(raw_amount)
        validate_amount_in_range(amount_msat, self.pay_range)

        payment_request = await self.backend.create_payment_request(
            value_msat=amount_msat,
            description_hash=identity.metadata.description_hash,
            expiry_seconds=self.invoice_expiry_seconds,
        )
        logger.info(
            "Issued invoice for %d msat to %s", amount_msat, identity.lightning_address
        )
        return InvoiceResponseDTO(pr=payment_request, routes=[])
