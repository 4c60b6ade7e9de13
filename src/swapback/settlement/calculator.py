"""Fee and payout arithmetic.

USDC amounts are integers with 6 decimals, ARB amounts integers with 18
decimals. The price (USD per ARB) is carried at 6-decimal precision.

Example: 1 USDC (1_000_000) at 2.0 USD/ARB
    fee        = 1_000_000 - 1_000_000 * 99 // 100  = 10_000
    after_fee  = 990_000
    payout     = 990_000 * 10**18 // 2_000_000      = 495_000_000_000_000_000 (0.495 ARB)
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from swapback.errors import ArithmeticSettlementError

logger = logging.getLogger(__name__)

USDC_DECIMALS = 6
ARB_DECIMALS = 18
PRICE_DECIMALS = 6

# The sender gets 99/100 of what was received; the remainder is the fee
PAYOUT_NUMERATOR = 99
PAYOUT_DENOMINATOR = 100


@dataclass(frozen=True)
class Settlement:
    """Result of converting a received USDC amount into an ARB payout."""

    received: int
    fee: int
    after_fee: int
    price: Decimal
    price_scaled: int
    payout: int


def split_fee(received: int) -> tuple[int, int]:
    """Split a received amount into (after_fee, fee)."""
    if received < 0:
        raise ArithmeticSettlementError(f"Received amount is negative: {received}")
    after_fee = received * PAYOUT_NUMERATOR // PAYOUT_DENOMINATOR
    return after_fee, received - after_fee


def scale_price(price: Decimal) -> int:
    """floor(price * 10**6) as an integer."""
    if isinstance(price, float):
        # Use the shortest repr so 1.936062 scales to 1936062, not 1936061
        price = Decimal(repr(price))
    try:
        scaled = (Decimal(price) * 10**PRICE_DECIMALS).to_integral_value(rounding=ROUND_FLOOR)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ArithmeticSettlementError(f"Invalid price: {price}") from e
    if not scaled.is_finite():
        raise ArithmeticSettlementError(f"Invalid price: {price}")
    return int(scaled)


def calculate_settlement(received: int, price: Decimal) -> Settlement:
    """Compute fee and payout for a transfer.

    Raises:
        ArithmeticSettlementError: price scales to zero or below, or the
            received amount is negative
    """
    after_fee, fee = split_fee(received)
    price_scaled = scale_price(price)
    if price_scaled <= 0:
        raise ArithmeticSettlementError(f"Cannot settle at price {price}: division by zero")

    payout = after_fee * 10**ARB_DECIMALS // price_scaled

    logger.info(f"Received {format_units(received, USDC_DECIMALS)} USDC")
    logger.info(f"After 1% fee deduction {format_units(after_fee, USDC_DECIMALS)} USDC")
    logger.info(f"Equivalent to {format_units(payout, ARB_DECIMALS)} ARB on Arbitrum")

    return Settlement(
        received=received,
        fee=fee,
        after_fee=after_fee,
        price=Decimal(repr(price)) if isinstance(price, float) else Decimal(price),
        price_scaled=price_scaled,
        payout=payout,
    )


def format_units(value: int, decimals: int) -> str:
    """Render a base-unit integer as a decimal string (1500000, 6 -> '1.5')."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**decimals)
    frac_str = str(frac).zfill(decimals).rstrip("0")
    return f"{sign}{whole}.{frac_str}" if frac_str else f"{sign}{whole}.0"
