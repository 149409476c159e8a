"""Test fixtures for in-memory implementations."""

from .certificates import in_days, make_bundle, make_key_and_cert
from .fake_payment_backend import FakePaymentBackend
from .images import make_image_bytes

__all__ = [
    "FakePaymentBackend",
    "in_days",
    "make_bundle",
    "make_image_bytes",
    "make_key_and_cert",
]
