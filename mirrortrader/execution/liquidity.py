"""
Liquidity screening.

A signal on a thin or wide book is skipped before any balance query or
order attempt is made.
"""

from decimal import Decimal
from typing import Optional
import logging

from mirrortrader.models import (
    ExecutionResult,
    ExecutionStatus,
    LiquidityHealth,
    LiquidityMetrics,
    OrderBook,
    Side,
)

logger = logging.getLogger(__name__)

INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"

# Depth is counted within this distance of the best crossing level
DEPTH_BAND = Decimal("0.05")

# (health, max spread %, min depth USD), best first
HEALTH_THRESHOLDS = (
    (LiquidityHealth.HIGH, Decimal("2"), Decimal("2000")),
    (LiquidityHealth.MEDIUM, Decimal("5"), Decimal("500")),
    (LiquidityHealth.LOW, Decimal("10"), Decimal("50")),
)


def assess_order_book(book: OrderBook, side: Side) -> LiquidityMetrics:
    """
    Grade a book for an order on `side`.

    spread_percent is relative to mid; depth is the USD notional on the
    crossing side within 5% of its best price.
    """
    levels = book.crossing_levels(side)
    if not levels:
        return LiquidityMetrics(LiquidityHealth.CRITICAL, Decimal("100"), Decimal("0"))

    best = levels[0].price
    if side == Side.BUY:
        in_band = [lvl for lvl in levels if lvl.price <= best * (1 + DEPTH_BAND)]
    else:
        in_band = [lvl for lvl in levels if lvl.price >= best * (1 - DEPTH_BAND)]
    depth = sum((lvl.notional for lvl in in_band), Decimal("0"))

    mid = book.mid_price
    if mid is None or mid <= 0:
        spread_pct = Decimal("100")
    else:
        spread_pct = (book.best_ask - book.best_bid) / mid * 100

    for health, max_spread, min_depth in HEALTH_THRESHOLDS:
        if spread_pct <= max_spread and depth >= min_depth:
            return LiquidityMetrics(health, spread_pct, depth)
    return LiquidityMetrics(LiquidityHealth.CRITICAL, spread_pct, depth)


class LiquidityGuard:
    """Rejects signals whose book health is below a minimum."""

    def __init__(self, minimum: LiquidityHealth = LiquidityHealth.LOW):
        self._minimum = minimum

    @property
    def minimum(self) -> LiquidityHealth:
        return self._minimum

    async def screen(self, adapter, token_id: str, side: Side) -> Optional[ExecutionResult]:
        """
        Returns None to proceed, or an ILLIQUID result.

        Adapters without get_liquidity_metrics pass unconditionally.
        """
        get_metrics = getattr(adapter, "get_liquidity_metrics", None)
        if get_metrics is None:
            return None

        metrics = await get_metrics(token_id, side)
        if metrics.health.meets(self._minimum):
            return None

        logger.info(
            f"Skipping {side.value} on {token_id[:12]}: liquidity {metrics.health.value} "
            f"(spread {metrics.spread_percent:.2f}%, depth ${metrics.available_depth_usd:.2f}) "
            f"below {self._minimum.value}"
        )
        return ExecutionResult.skipped(INSUFFICIENT_LIQUIDITY, status=ExecutionStatus.ILLIQUID)
