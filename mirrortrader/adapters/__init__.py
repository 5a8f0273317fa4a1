"""Exchange adapters."""

from mirrortrader.adapters.base import (
    CashoutHandler,
    ExchangeAdapter,
    LiquidityProvider,
    ListerLookup,
    TransferHandler,
)

__all__ = [
    "CashoutHandler",
    "ExchangeAdapter",
    "LiquidityProvider",
    "ListerLookup",
    "TransferHandler",
]
