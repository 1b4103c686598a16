"""
Token cost estimation.

Converts observed token counts into an estimated spend for a
user-supplied per-million-token rate.
"""

from decimal import ROUND_UP, Decimal, InvalidOperation
from typing import Union

Rate = Union[Decimal, float, int, str]

TOKENS_PER_RATE_UNIT = Decimal("1000000")


def parse_rate(rate: Rate) -> Decimal:
    """Validate a cost per million tokens.

    Raises:
        ValueError: If the rate is not a non-negative number
    """
    try:
        value = Decimal(str(rate))
    except InvalidOperation:
        raise ValueError(f"Invalid cost rate: {rate!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Cost rate must be a non-negative number: {rate!r}")
    return value


def estimate_cost(total_tokens: int, cost_per_million_tokens: Rate) -> Decimal:
    """Estimate spend for a token count with conservative rounding.

    Args:
        total_tokens: Observed token count
        cost_per_million_tokens: Price per 1M tokens

    Returns:
        Estimated cost rounded UP to 4 decimal places

    Raises:
        ValueError: If total_tokens is negative or the rate is invalid
    """
    if total_tokens < 0:
        raise ValueError("total_tokens cannot be negative")
    rate = parse_rate(cost_per_million_tokens)
    cost = (Decimal(total_tokens) / TOKENS_PER_RATE_UNIT) * rate
    return cost.quantize(Decimal("0.0001"), rounding=ROUND_UP)
