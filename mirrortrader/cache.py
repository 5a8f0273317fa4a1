"""
Balance caching for the copy engine.

- BalanceCache: TTL cache of trader balances, so sizing does not hit the
  data API on every signal.
- TraderBalanceResolver: estimates a tracked trader's capital from their
  open positions.
- PendingSpend: USD committed by BUY fills that the exchange balance may
  not reflect yet.
"""

from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple
import logging
import time

from mirrortrader.adapters.base import ExchangeAdapter
from mirrortrader.config import SizingConfig

logger = logging.getLogger(__name__)


class BalanceCache:
    """
    Address -> balance cache with a fixed time-to-live.

    Entries are replaced on refresh and never grow beyond the number of
    tracked addresses.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Decimal, float]] = {}

    def get(self, address: str) -> Optional[Decimal]:
        """Return the cached balance, or None if missing or expired."""
        entry = self._entries.get(address)
        if entry is None:
            return None
        balance, stored_at = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[address]
            return None
        return balance

    def set(self, address: str, balance: Decimal) -> None:
        self._entries[address] = (balance, self._clock())

    def invalidate(self, address: Optional[str] = None) -> None:
        if address is None:
            self._entries.clear()
        else:
            self._entries.pop(address, None)

    async def get_or_fetch(
        self, address: str, fetch: Callable[[str], Awaitable[Decimal]]
    ) -> Decimal:
        cached = self.get(address)
        if cached is not None:
            return cached
        balance = await fetch(address)
        self.set(address, balance)
        return balance

    def __len__(self) -> int:
        return len(self._entries)


class TraderBalanceResolver:
    """
    Resolves the capital of a tracked trader for proportional sizing.

    The estimate is the summed USD value of the trader's open positions,
    floored so a mostly-cash trader does not inflate copy sizes. If the
    positions cannot be read, a configurable fallback is used.
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        config: SizingConfig,
        cache: Optional[BalanceCache] = None,
    ):
        self._adapter = adapter
        self._config = config
        self._cache = cache or BalanceCache(config.balance_cache_ttl_seconds)

    @property
    def cache(self) -> BalanceCache:
        return self._cache

    async def resolve(self, trader: str) -> Decimal:
        return await self._cache.get_or_fetch(trader, self._fetch)

    async def _fetch(self, trader: str) -> Decimal:
        try:
            positions = await self._adapter.get_positions(trader)
        except Exception as e:
            logger.warning(
                f"Could not resolve balance for {trader[:10]}: {e}; "
                f"using fallback ${self._config.trader_balance_fallback}"
            )
            return self._config.trader_balance_fallback

        total = sum((p.value_usd for p in positions), Decimal("0"))
        return max(total, self._config.trader_balance_floor)


@dataclass
class _PendingEntry:
    amount: Decimal
    created_at: float


class PendingSpend:
    """
    FIFO ledger of USD spent on BUY fills but not yet visible in the
    exchange balance.

    Entries leave the ledger when a fresh balance snapshot shows a drop
    covering them, or when they are older than the TTL.
    """

    def __init__(self, ttl_seconds: float = 120.0, clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Deque[_PendingEntry] = deque()
        self._last_balance: Optional[Decimal] = None

    @property
    def total(self) -> Decimal:
        self._expire()
        return sum((e.amount for e in self._entries), Decimal("0"))

    def commit(self, amount: Decimal) -> None:
        if amount > 0:
            self._entries.append(_PendingEntry(amount, self._clock()))

    def reconcile(self, fresh_balance: Decimal) -> Decimal:
        """
        Settle pending entries against a fresh balance snapshot.

        A drop since the previous snapshot settles entries oldest first.
        Returns the spendable balance (fresh balance minus what is still
        pending, never negative).
        """
        self._expire()
        if self._last_balance is not None and fresh_balance < self._last_balance:
            drop = self._last_balance - fresh_balance
            while self._entries and self._entries[0].amount <= drop:
                drop -= self._entries.popleft().amount
            if self._entries and drop > 0:
                self._entries[0].amount -= drop
        self._last_balance = fresh_balance

        available = fresh_balance - sum((e.amount for e in self._entries), Decimal("0"))
        return max(available, Decimal("0"))

    def clear(self) -> None:
        self._entries.clear()
        self._last_balance = None

    def _expire(self) -> None:
        now = self._clock()
        while self._entries and now - self._entries[0].created_at >= self._ttl:
            self._entries.popleft()

    def __len__(self) -> int:
        self._expire()
        return len(self._entries)
