"""Domain-specific exceptions."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Raised when the configuration file is missing or invalid."""


class InvalidIconError(Exception):
    """Raised when the icon file cannot be read or decoded as an image."""


class ListenerError(Exception):
    """Raised when a listener fails to bind or fails while serving."""


class LnurlRequestError(Exception):
    """Base class for per-request errors reported with the LNURL error shape."""

    status_code: int = 400

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class MalformedAmountError(LnurlRequestError):
    """Raised when the callback `amount` parameter is not an unsigned integer."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"cannot parse amount: {detail}")


class AmountOutOfRangeError(LnurlRequestError):
    """Raised when the requested amount lies outside the sendable range."""

    def __init__(self) -> None:
        super().__init__("amount is out of acceptable range")


class BackendError(LnurlRequestError):
    """Raised when the payment backend fails to construct an invoice."""

    status_code = 500

    def __init__(self, cause: str) -> None:
        super().__init__(f"error constructing invoice: {cause}")
        self.cause = cause


class UnknownIdentityError(LnurlRequestError):
    """Raised when a username has no configured identity."""

    status_code = 404

    def __init__(self, username: str) -> None:
        super().__init__(f"unknown user: {username}")
        self.username = username
