"""
In-memory exchange for testing.

Implements the ExchangeAdapter protocol with deterministic books, balances
and activity feeds. No network calls, no py-clob-client or web3 imports.
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from mirrortrader.models import (
    BookLevel,
    LiquidityHealth,
    LiquidityMetrics,
    OrderBook,
    OrderRequest,
    OrderResponse,
    PositionSnapshot,
    Side,
)


class MockExchange:
    """
    Mock exchange adapter.

    Filled orders consume size from the matching book level, so a sweep
    sees the book shrink between attempts. Every call is recorded in
    `calls` as (method, args).
    """

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []
        self.orders: List[OrderRequest] = []
        self.balances: Dict[str, Decimal] = {}
        self.positions: Dict[str, List[PositionSnapshot]] = {}
        self.activities: Dict[str, List[Dict[str, Any]]] = {}
        self.closed_markets: set = set()

        self._books: Dict[str, OrderBook] = {}
        self._reject_next = 0
        self._raise_next = 0
        self._script: List[bool] = []
        self.reject_message = "FOK order not filled"
        self.activity_error: Optional[Exception] = None
        self.positions_error: Optional[Exception] = None

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def set_book(
        self,
        token_id: str,
        bids: List[Tuple[str, str]] = (),
        asks: List[Tuple[str, str]] = (),
        min_order_size: Optional[str] = None,
    ) -> None:
        self._books[token_id] = OrderBook.from_levels(
            token_id, list(bids), list(asks), min_order_size
        )

    def reject_next(self, count: int = 1, message: Optional[str] = None) -> None:
        """Reject the next `count` orders."""
        self._reject_next = count
        if message:
            self.reject_message = message

    def raise_next(self, count: int = 1) -> None:
        """Raise from the next `count` create_order calls."""
        self._raise_next = count

    def script_outcomes(self, *accept: bool) -> None:
        """Accept or reject upcoming orders in sequence."""
        self._script.extend(accept)

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    # ------------------------------------------------------------------
    # ExchangeAdapter
    # ------------------------------------------------------------------

    async def fetch_balance(self, address: str) -> Decimal:
        self.calls.append(("fetch_balance", (address,)))
        return self.balances.get(address, Decimal("0"))

    async def get_order_book(self, token_id: str) -> OrderBook:
        self.calls.append(("get_order_book", (token_id,)))
        book = self._books.get(token_id)
        if book is None:
            return OrderBook(token_id=token_id)
        # Copy so callers never hold a live reference
        return OrderBook(
            token_id=token_id,
            bids=list(book.bids),
            asks=list(book.asks),
            min_order_size=book.min_order_size,
        )

    async def create_order(self, request: OrderRequest) -> OrderResponse:
        self.calls.append(("create_order", (request,)))
        self.orders.append(request)

        if self._raise_next > 0:
            self._raise_next -= 1
            raise ConnectionError("mock transport failure")

        if self._reject_next > 0:
            self._reject_next -= 1
            return OrderResponse(success=False, error=self.reject_message)

        if self._script and not self._script.pop(0):
            return OrderResponse(success=False, error=self.reject_message)

        book = self._books.get(request.token_id)
        if book is None:
            return OrderResponse(success=False, error="no book")

        levels = book.crossing_levels(request.side)
        for i, level in enumerate(levels):
            if level.price == request.price and level.size >= request.shares:
                left = level.size - request.shares
                if left > 0:
                    levels[i] = BookLevel(level.price, left)
                else:
                    del levels[i]
                return OrderResponse(
                    success=True,
                    shares_filled=request.shares,
                    price_filled=request.price,
                    order_id=f"order-{len(self.orders)}",
                )
        return OrderResponse(success=False, error="FOK: insufficient size at price")

    async def get_positions(self, address: str) -> List[PositionSnapshot]:
        self.calls.append(("get_positions", (address,)))
        if self.positions_error is not None:
            raise self.positions_error
        return list(self.positions.get(address, []))

    async def fetch_public_trades(self, address: str, limit: int = 20) -> List[Dict[str, Any]]:
        self.calls.append(("fetch_public_trades", (address, limit)))
        if self.activity_error is not None:
            raise self.activity_error
        return list(self.activities.get(address, []))[:limit]

    async def is_market_open(self, market_id: str) -> bool:
        self.calls.append(("is_market_open", (market_id,)))
        return market_id not in self.closed_markets


class LiquidityAwareExchange(MockExchange):
    """MockExchange that also reports liquidity metrics per token."""

    def __init__(self, health: LiquidityHealth = LiquidityHealth.HIGH):
        super().__init__()
        self.health: Dict[str, LiquidityHealth] = {}
        self.default_health = health

    async def get_liquidity_metrics(self, token_id: str, side: Side) -> LiquidityMetrics:
        self.calls.append(("get_liquidity_metrics", (token_id, side)))
        return LiquidityMetrics(
            health=self.health.get(token_id, self.default_health),
            spread_percent=Decimal("1"),
            available_depth_usd=Decimal("5000"),
        )


class RecordingTransfer:
    """TransferHandler / CashoutHandler double."""

    def __init__(self, fail_addresses: Optional[set] = None, address: Optional[str] = None):
        self.transfers: List[Tuple[str, Decimal]] = []
        self.fail_addresses = fail_addresses or set()
        self.address = address

    async def transfer(self, to_address: str, amount: Decimal) -> str:
        if to_address in self.fail_addresses:
            raise RuntimeError(f"transfer to {to_address} reverted")
        self.transfers.append((to_address, amount))
        return f"0xtx{len(self.transfers)}"

    async def cashout(self, destination: str, amount: Decimal) -> str:
        return await self.transfer(destination, amount)


class StaticLister:
    """ListerLookup double."""

    def __init__(self, listers: Optional[Dict[str, str]] = None):
        self.listers = listers or {}
        self.lookups: List[str] = []

    async def get_lister(self, trader: str) -> Optional[str]:
        self.lookups.append(trader)
        return self.listers.get(trader)


class GatedTransfer(RecordingTransfer):
    """RecordingTransfer that holds every transfer until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def transfer(self, to_address: str, amount: Decimal) -> str:
        await self.gate.wait()
        return await super().transfer(to_address, amount)
