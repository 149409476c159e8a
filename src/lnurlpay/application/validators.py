"""Pure validation functions for LNURL-pay callback requests.

These functions contain the callback's input rules and can be tested in
isolation without a backend or an HTTP stack.
"""

from __future__ import annotations

from typing import Optional

from ..domain.entities import PayRequestRange
from ..domain.errors import AmountOutOfRangeError, MalformedAmountError

MAX_UINT64 = (1 << 64) - 1


def parse_amount_msat(raw: Optional[str]) -> int:
    """Parse the `amount` query parameter as an unsigned 64-bit integer.

    Only plain base-10 digits are accepted: no sign, whitespace, underscores
    or exponent.

    Raises:
        MalformedAmountError: If the value is absent, not numeric or too large.
    """
    if raw is None or raw == "":
        raise MalformedAmountError('parsing "": invalid syntax')
    if not (raw.isascii() and raw.isdigit()):
        raise MalformedAmountError(f'parsing "{raw}": invalid syntax')
    value = int(raw)
    if value > MAX_UINT64:
        raise MalformedAmountError(f'parsing "{raw}": value out of range')
    return value


def validate_amount_in_range(amount_msat: int, pay_range: PayRequestRange) -> None:
    """Check `amount_msat` against the inclusive sendable range. Pure function.

    Raises:
        AmountOutOfRangeError: If the amount is below min or above max.
    """
    if not pay_range.contains(amount_msat):
        raise AmountOutOfRangeError()
