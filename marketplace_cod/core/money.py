"""
Integer-cents money helpers.

All amounts are integer minor units. Rates are Decimal so no binary floating
point enters a calculation that has to balance. Percentages are truncated
toward zero, and derived amounts are obtained by subtraction so that
``gross == commission + net`` always holds exactly.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Tuple, Union

RateLike = Union[Decimal, int, float, str]

HUNDRED = Decimal("100")


def to_decimal(value: RateLike) -> Decimal:
    """Convert a rate to Decimal; floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def percent_of(amount_cents: int, fraction: RateLike) -> int:
    """
    Truncated share of an amount.

    ``fraction`` is a plain ratio (0.02 = 2%).

    Examples:
        >>> percent_of(10000, "0.02")
        200
        >>> percent_of(999, "0.02")
        19
    """
    share = Decimal(amount_cents) * to_decimal(fraction)
    return int(share.to_integral_value(rounding=ROUND_DOWN))


def apply_commission(gross_cents: int, rate_percent: RateLike) -> Tuple[int, int]:
    """
    Split a gross amount into (commission_cents, net_cents).

    Commission is truncated to whole cents; net is the remainder.

    Examples:
        >>> apply_commission(10000, 10)
        (1000, 9000)
        >>> apply_commission(999, "12.5")
        (124, 875)
    """
    if gross_cents < 0:
        raise ValueError("Gross amount cannot be negative")

    rate = to_decimal(rate_percent)
    if rate < 0 or rate > HUNDRED:
        raise ValueError(f"Commission rate must be between 0 and 100, got {rate}")

    commission_cents = percent_of(gross_cents, rate / HUNDRED)
    net_cents = gross_cents - commission_cents
    return commission_cents, net_cents


def higher_of(fixed_fee_cents: int, percent_fee_cents: int) -> int:
    """Pick the larger of a fixed fee and a percentage fee."""
    return max(fixed_fee_cents, percent_fee_cents)


def format_cents(amount_cents: int) -> str:
    """
    Human-readable dollar amount for messages.

    Examples:
        >>> format_cents(123456)
        '$1,234.56'
        >>> format_cents(-500)
        '-$5.00'
    """
    sign = "-" if amount_cents < 0 else ""
    dollars = Decimal(abs(amount_cents)) / HUNDRED
    return f"{sign}${dollars:,.2f}"
