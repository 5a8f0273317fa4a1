"""
Interfaces the core consumes.

Structural protocols: any object with matching async methods can be
plugged into the engine (the Polymarket adapter, an in-memory mock, a
paper-trading wrapper).
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from mirrortrader.models import (
    LiquidityMetrics,
    OrderBook,
    OrderRequest,
    OrderResponse,
    PositionSnapshot,
    Side,
)


@runtime_checkable
class ExchangeAdapter(Protocol):
    """
    Exchange access used by the monitor, executor and engine.

    Optional capabilities, detected with hasattr():
        get_liquidity_metrics(token_id, side) -> LiquidityMetrics
        is_market_open(market_id) -> bool
    """

    async def fetch_balance(self, address: str) -> Decimal:
        """Spendable USDC of an address."""
        ...

    async def get_order_book(self, token_id: str) -> OrderBook:
        ...

    async def create_order(self, request: OrderRequest) -> OrderResponse:
        """Submit one fill-or-kill order. Must not raise on rejection."""
        ...

    async def get_positions(self, address: str) -> List[PositionSnapshot]:
        ...

    async def fetch_public_trades(self, address: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Raw activity records for an address, any order."""
        ...


@runtime_checkable
class LiquidityProvider(Protocol):
    async def get_liquidity_metrics(self, token_id: str, side: Side) -> LiquidityMetrics:
        ...


@runtime_checkable
class ListerLookup(Protocol):
    """Resolves who listed a trader on the platform."""

    async def get_lister(self, trader: str) -> Optional[str]:
        ...


@runtime_checkable
class TransferHandler(Protocol):
    """Sends USDC; returns a settlement reference or raises."""

    async def transfer(self, to_address: str, amount: Decimal) -> str:
        ...


@runtime_checkable
class CashoutHandler(Protocol):
    """
    Moves surplus funds to the owner's wallet; returns a settlement reference.

    A handler that sends from its own wallet exposes it as `address`; the
    engine then sweeps that wallet's balance instead of the proxy wallet's.
    """

    async def cashout(self, destination: str, amount: Decimal) -> str:
        ...
