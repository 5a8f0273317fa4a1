"""Order execution: liquidity screening and book sweeping."""

from mirrortrader.execution.executor import OrderExecutor
from mirrortrader.execution.liquidity import LiquidityGuard, assess_order_book

__all__ = ["OrderExecutor", "LiquidityGuard", "assess_order_book"]
