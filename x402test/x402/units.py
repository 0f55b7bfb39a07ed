# x402test/x402/units.py
"""
Conversion between human token amounts and atomic units.

Prices are configured as decimal strings in whole tokens ("0.01" USDC) while
the wire format carries integer smallest units ("10000"). All arithmetic is
done with Decimal so no amount ever passes through binary floating point.
"""
from decimal import Decimal, InvalidOperation
from typing import Union

USDC_DECIMALS = 6

Amount = Union[str, int, Decimal]


def to_atomic_units(amount: Amount, decimals: int = USDC_DECIMALS) -> int:
    """
    Convert a token amount to integer smallest units.

    Args:
        amount: Amount in whole tokens, e.g. "0.01"
        decimals: Number of decimals of the token

    Returns:
        Amount in smallest units, e.g. 10000

    Raises:
        ValueError: If the amount is not a number, is negative, or has more
            fractional digits than the token supports
    """
    if isinstance(amount, float):
        raise ValueError("Token amounts must be given as str, int or Decimal, not float")

    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid token amount: {amount!r}") from e

    if not value.is_finite():
        raise ValueError(f"Invalid token amount: {amount!r}")
    if value < 0:
        raise ValueError(f"Token amount cannot be negative: {amount!r}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Token amount {amount!r} has more than {decimals} decimal places"
        )
    return int(scaled)


def from_atomic_units(atomic: Union[int, str], decimals: int = USDC_DECIMALS) -> Decimal:
    """Convert smallest units back to a Decimal amount in whole tokens."""
    return Decimal(int(atomic)).scaleb(-decimals)
