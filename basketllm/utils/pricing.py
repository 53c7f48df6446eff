"""Model pricing table.

Uses Decimal for precise financial calculations; per-token costs are tiny
(e.g. $0.00000014/token for deepseek-chat) and floats would drift when
summed over a ledger.
"""

from decimal import Decimal
from dataclasses import dataclass


PER_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class PricingInfo:
    """Pricing for a model in USD per million tokens."""

    input_per_million: Decimal = Decimal("0")
    output_per_million: Decimal = Decimal("0")

    @property
    def input_cost_per_token(self) -> Decimal:
        return self.input_per_million / PER_MILLION

    @property
    def output_cost_per_token(self) -> Decimal:
        return self.output_per_million / PER_MILLION


# USD per million tokens
MODEL_PRICES: dict[str, PricingInfo] = {
    # DeepSeek
    "deepseek-chat": PricingInfo(Decimal("0.14"), Decimal("0.28")),
    "deepseek-reasoner": PricingInfo(Decimal("0.55"), Decimal("2.19")),
    # OpenAI
    "gpt-4o": PricingInfo(Decimal("2.50"), Decimal("10.00")),
    "gpt-4o-mini": PricingInfo(Decimal("0.15"), Decimal("0.60")),
    # Anthropic
    "claude-sonnet-4-20250514": PricingInfo(Decimal("3.00"), Decimal("15.00")),
    "claude-haiku-3.5": PricingInfo(Decimal("0.80"), Decimal("4.00")),
    # Google
    "gemini-2.0-flash": PricingInfo(Decimal("0.10"), Decimal("0.40")),
    "gemini-1.5-flash": PricingInfo(Decimal("0.075"), Decimal("0.30")),
    "gemini-1.5-pro": PricingInfo(Decimal("1.25"), Decimal("5.00")),
}


def get_pricing_info(model: str) -> PricingInfo:
    """Get pricing information for a model.

    Only exact model ids are priced. Unknown models are free so that a
    missing table entry never blocks a request.
    """
    return MODEL_PRICES.get(model, PricingInfo())


def is_priced(model: str) -> bool:
    """Whether the model has an entry in the pricing table."""
    return model in MODEL_PRICES


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> Decimal:
    """Calculate the cost of a call in USD.

    Args:
        model: The model id
        input_tokens: Number of prompt tokens
        output_tokens: Number of completion tokens

    Returns:
        Total cost as Decimal
    """
    pricing = get_pricing_info(model)
    input_cost = Decimal(input_tokens) * pricing.input_per_million / PER_MILLION
    output_cost = Decimal(output_tokens) * pricing.output_per_million / PER_MILLION
    return input_cost + output_cost
