"""
Pricing calculations for completion backends.

Backends declare a single blended price per 1K tokens.
"""

from decimal import Decimal, ROUND_UP

from .token_counter import TokenUsage

# Recorded costs keep micro-dollar precision so cheap backends don't round to zero
COST_QUANTUM = Decimal("0.000001")


def estimate_cost(cost_per_1k_tokens: float, tokens: int) -> float:
    """Estimate the cost of sending `tokens` tokens to a backend.

    Unrounded, since the router compares these values against a tight
    epsilon.
    """
    return cost_per_1k_tokens * tokens / 1000


def calculate_cost(cost_per_1k_tokens: float, usage: TokenUsage) -> float:
    """Calculate the cost of a completed request with conservative rounding.

    Args:
        cost_per_1k_tokens: Blended price per 1K tokens in dollars
        usage: Token usage reported by the backend

    Returns:
        Total cost rounded UP to the nearest micro-dollar

    Raises:
        ValueError: If the price is negative
    """
    if cost_per_1k_tokens < 0:
        raise ValueError("cost_per_1k_tokens cannot be negative")

    price = Decimal(str(cost_per_1k_tokens))
    total_cost = (Decimal(usage.total_tokens) / Decimal("1000")) * price
    return float(total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP))
