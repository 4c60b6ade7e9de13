"""Price resolution for the payout asset."""

from swapback.pricing.resolver import (
    NO_PRICE,
    PriceResolver,
    PriceSample,
    query_window,
    select_price,
)

__all__ = ["NO_PRICE", "PriceResolver", "PriceSample", "query_window", "select_price"]
