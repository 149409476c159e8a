"""Protocol interface for payment backend implementations.

The LNURL-pay service only needs one operation from the node that issues
invoices. Depending on this protocol instead of a concrete client keeps the
service testable with in-memory fakes.
"""

from __future__ import annotations

from typing import Optional, Protocol, Type
from types import TracebackType


class PaymentBackendProtocol(Protocol):
    """Protocol defining the contract of an invoice-issuing backend.

    Implementations must be safe for concurrent use by simultaneous callback
    requests, and must report every failure as `BackendError` carrying a
    human-readable cause.
    """

    async def create_payment_request(
        self,
        value_msat: int,
        description_hash: bytes,
        expiry_seconds: int,
    ) -> str:
        """Create a payment request bound to `description_hash`.

        Args:
            value_msat: Invoice amount in millisats
            description_hash: 32-byte digest of the LNURL metadata
            expiry_seconds: Invoice expiry; 0 lets the backend choose

        Returns:
            The encoded payment request, relayed verbatim to the payer

        Raises:
            BackendError: If the backend cannot be reached or refuses
        """
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...

    async def __aenter__(self: "PaymentBackendProtocol") -> "PaymentBackendProtocol":
        ...

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        ...
