"""
Pricing calculations.

A single fixed price pair per provider; every cost figure in the
project (single task, batch aggregate, ledger totals) goes through
estimate_cost so that values only ever diverge by rounding.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .token_counter import TokenUsage

PROVIDER_NAME = "minimax-m2.5"

_MILLION = Decimal("1000000")
_SIX_PLACES = Decimal("0.000001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token pricing for the remote model."""
    input_per_million: Decimal  # USD per 1M input tokens
    output_per_million: Decimal  # USD per 1M output tokens

    def __post_init__(self):
        """Validate rates are non-negative."""
        if self.input_per_million < 0:
            raise ValueError("input_per_million cannot be negative")
        if self.output_per_million < 0:
            raise ValueError("output_per_million cannot be negative")


# MiniMax M2.5 list price - fixed, no dynamic fetching
DEFAULT_PRICING = ModelPricing(
    input_per_million=Decimal("0.15"),
    output_per_million=Decimal("1.20")
)


def estimate_cost(usage: TokenUsage, pricing: ModelPricing = DEFAULT_PRICING) -> float:
    """Estimate the USD cost of a token usage.

    Args:
        usage: Token usage data
        pricing: Price pair to apply (defaults to MiniMax M2.5)

    Returns:
        Cost rounded half-up to 6 decimal places
    """
    input_cost = (Decimal(usage.input_tokens) / _MILLION) * pricing.input_per_million
    output_cost = (Decimal(usage.output_tokens) / _MILLION) * pricing.output_per_million

    total_cost = input_cost + output_cost
    return float(total_cost.quantize(_SIX_PLACES, rounding=ROUND_HALF_UP))
