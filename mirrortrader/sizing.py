"""
Proportional position sizing.

The follower copies a trade at the same fraction of their capital that the
trader committed of theirs:

    ratio  = your_balance / (trader_balance + trader_trade_usd)
    target = trader_trade_usd * ratio * multiplier   (capped at max_trade_amount)
    shares = floor(target / price, 0.01)
"""

from decimal import Decimal
from typing import Optional
import logging

from mirrortrader.config import SizingConfig
from mirrortrader.models import SizingResult, round_shares

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")

# Rejection reasons
INSUFFICIENT_BALANCE = "insufficient_balance"
SIZE_TOO_SMALL = "size_too_small"
BELOW_MIN_ORDER_SIZE = "below_min_order_size"
INVALID_PRICE = "invalid_price"


def compute_proportional_sizing(
    your_balance: Decimal,
    trader_balance: Decimal,
    trader_trade_usd: Decimal,
    multiplier: Decimal,
    price: Decimal,
    max_trade_amount: Optional[Decimal],
    min_order_size: Decimal,
    min_trade_usd: Decimal = ONE,
) -> SizingResult:
    """
    Size a copy trade. Pure function, no I/O.

    A rejected result still carries the computed values; `reason` names the
    first rule that failed.
    """
    denominator = max(ONE, trader_balance + max(ZERO, trader_trade_usd))
    ratio = max(ZERO, your_balance / denominator)
    base = max(ZERO, trader_trade_usd * ratio)
    target = max(ZERO, base * max(ZERO, multiplier))
    if max_trade_amount is not None:
        target = min(target, max_trade_amount)

    if price <= ZERO:
        return SizingResult(target, ZERO, ratio, INVALID_PRICE)

    shares = round_shares(target / price)

    if your_balance < min_trade_usd:
        reason = INSUFFICIENT_BALANCE
    elif target < min_trade_usd:
        reason = SIZE_TOO_SMALL
    elif shares < min_order_size:
        reason = BELOW_MIN_ORDER_SIZE
    else:
        reason = None

    return SizingResult(
        target_usd_size=target,
        target_shares=shares,
        ratio=ratio,
        reason=reason,
    )


class PositionSizer:
    """Binds a SizingConfig to the proportional sizing rule."""

    def __init__(self, config: SizingConfig):
        self._config = config

    def size(
        self,
        your_balance: Decimal,
        trader_balance: Decimal,
        trader_trade_usd: Decimal,
        price: Decimal,
        min_order_size: Optional[Decimal] = None,
    ) -> SizingResult:
        if min_order_size is None:
            min_order_size = self._config.default_min_order_size

        result = compute_proportional_sizing(
            your_balance=your_balance,
            trader_balance=trader_balance,
            trader_trade_usd=trader_trade_usd,
            multiplier=self._config.multiplier,
            price=price,
            max_trade_amount=self._config.max_trade_amount,
            min_order_size=min_order_size,
            min_trade_usd=self._config.min_trade_usd,
        )
        logger.debug(
            f"Sizing: yours=${your_balance} trader=${trader_balance} "
            f"trade=${trader_trade_usd} -> ${result.target_usd_size:.2f} "
            f"({result.target_shares} shares, ratio={result.ratio:.4f}, reason={result.reason})"
        )
        return result
