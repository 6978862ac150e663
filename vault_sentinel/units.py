"""Fixed-point (10^18) <-> human-decimal conversion.

Human-decimal strings are for display only; contract calls always take the
raw integer.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext

DECIMALS = 18
SCALE = 10**DECIMALS


def as_int(value: int | str) -> int:
    """Coerce an on-chain amount (int or decimal-string) to a non-negative int."""
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    amount = int(value)
    if amount < 0:
        raise ValueError(f"Negative amount: {amount}")
    return amount


def format_units(raw: int | str, decimals: int = DECIMALS) -> str:
    """Render a fixed-point integer as a human-decimal string, e.g. 1.5."""
    amount = as_int(raw)
    whole, frac = divmod(amount, 10**decimals)
    if not frac:
        return str(whole)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{frac_str}"


def parse_units(human: str | int | Decimal, decimals: int = DECIMALS) -> int:
    """Convert a human-decimal amount into its fixed-point integer.

    Raises ValueError on negative, non-numeric, or over-precise input.
    """
    try:
        value = Decimal(str(human).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal amount: {human!r}") from e
    if not value.is_finite():
        raise ValueError(f"Not a finite amount: {human!r}")
    if value < 0:
        raise ValueError(f"Negative amount: {human!r}")

    with localcontext() as ctx:
        ctx.prec = 80
        scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{human!r} has more than {decimals} decimal places")
    return int(scaled)


def to_fixed(value: float) -> int:
    """Scale an off-chain float (e.g. a USD price) to 10^18 fixed point."""
    return int(Decimal(str(value)) * SCALE)
