"""
mirrortrader - proportional copy trading for Polymarket.

Components:
- monitor: detects tracked traders' fills
- sizing: proportional position sizing
- execution: liquidity guard and book-sweeping executor
- funds: profit-share fees and auto-cashout throttling
- engine: the per-account orchestrator
"""

from mirrortrader.config import (
    BotConfig,
    CashoutConfig,
    ExecutionConfig,
    FeeConfig,
    MonitorConfig,
    PolymarketConfig,
    SizingConfig,
)
from mirrortrader.engine import CopyEngine, EngineCallbacks
from mirrortrader.models import (
    ExecutionResult,
    ExecutionStatus,
    LiquidityHealth,
    Side,
    TradeSignal,
)
from mirrortrader.sizing import PositionSizer, compute_proportional_sizing

__version__ = "0.1.0"

__all__ = [
    # Config
    "BotConfig",
    "CashoutConfig",
    "ExecutionConfig",
    "FeeConfig",
    "MonitorConfig",
    "PolymarketConfig",
    "SizingConfig",
    # Engine
    "CopyEngine",
    "EngineCallbacks",
    # Models
    "ExecutionResult",
    "ExecutionStatus",
    "LiquidityHealth",
    "Side",
    "TradeSignal",
    # Sizing
    "PositionSizer",
    "compute_proportional_sizing",
]
