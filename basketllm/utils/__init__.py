"""Utility functions for basketllm."""

from .background import BackgroundWrites
from .pricing import MODEL_PRICES, PricingInfo, calculate_cost, get_pricing_info, is_priced
from .token_counter import TokenCounter, estimate_tokens

__all__ = [
    "BackgroundWrites",
    "MODEL_PRICES",
    "PricingInfo",
    "calculate_cost",
    "get_pricing_info",
    "is_priced",
    "TokenCounter",
    "estimate_tokens",
]
