"""Domain entities: Identity, LnurlMetadata and PayRequestRange."""

from __future__ import annotations

from types import MappingProxyType
from collections.abc import Iterable, Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import UnknownIdentityError

MSAT_PER_SAT = 1000


class LnurlMetadata(BaseModel):
    """Canonical metadata array text and the SHA-256 digest of its bytes."""

    model_config = ConfigDict(frozen=True)

    metadata: str
    description_hash: bytes = Field(..., min_length=32, max_length=32)


class PayRequestRange(BaseModel):
    """Inclusive sendable range configured in sats, compared in millisats."""

    model_config = ConfigDict(frozen=True)

    min_sats: int = Field(..., gt=0)
    max_sats: int = Field(..., gt=0)

    @model_validator(mode="after")
    def check_order(self) -> "PayRequestRange":
        if self.min_sats > self.max_sats:
            raise ValueError(
                f"min_sats {self.min_sats} must not exceed max_sats {self.max_sats}"
            )
        return self

    @property
    def min_sendable_msat(self) -> int:
        return self.min_sats * MSAT_PER_SAT

    @property
    def max_sendable_msat(self) -> int:
        return self.max_sats * MSAT_PER_SAT

    def contains(self, amount_msat: int) -> bool:
        return self.min_sendable_msat <= amount_msat <= self.max_sendable_msat


class Identity(BaseModel):
    """A configured username bound to a domain, with its static metadata."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    metadata: LnurlMetadata

    @property
    def lightning_address(self) -> str:
        return f"{self.username}@{self.domain}"


class IdentityRegistry(Mapping[str, Identity]):
    """Read-only mapping of username to identity, fixed at construction."""

    def __init__(self, identities: Iterable[Identity]) -> None:
        by_username: dict[str, Identity] = {}
        for identity in identities:
            if identity.username in by_username:
                raise ValueError(f"duplicate username: {identity.username}")
            by_username[identity.username] = identity
        self._identities = MappingProxyType(by_username)

    def __getitem__(self, username: str) -> Identity:
        return self._identities[username]

    def __iter__(self) -> Iterator[str]:
        return iter(self._identities)

    def __len__(self) -> int:
        return len(self._identities)

    def lookup(self, username: str) -> Identity:
        """Return the identity for `username` or raise UnknownIdentityError."""
        try:
            return self._identities[username]
        except KeyError:
            raise UnknownIdentityError(username) from None
