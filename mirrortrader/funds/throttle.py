"""
Rate limiting for expensive periodic fund checks, and the auto-cashout
check it usually wraps.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Any, Awaitable, Callable, Optional
import asyncio
import logging
import time

from mirrortrader.adapters.base import CashoutHandler
from mirrortrader.config import CashoutConfig
from mirrortrader.models import CashoutRecord

logger = logging.getLogger(__name__)


class FundThrottle:
    """
    Runs `check` at most once per min_interval_seconds.

    force=True bypasses the interval (used right after a trade). Concurrent
    callers are serialized on one lock, so the check never runs twice in
    parallel.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[Any]],
        min_interval_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._check = check
        self._interval = min_interval_seconds
        self._clock = clock
        self._last_run: Optional[float] = None
        self._lock = asyncio.Lock()
        self.runs = 0

    @property
    def last_run(self) -> Optional[float]:
        return self._last_run

    def due(self) -> bool:
        return self._last_run is None or self._clock() - self._last_run >= self._interval

    async def maybe_run(self, force: bool = False) -> Optional[Any]:
        """Returns the check's result, or None when throttled or failed."""
        async with self._lock:
            if not force and not self.due():
                return None
            self._last_run = self._clock()
            self.runs += 1
            try:
                return await self._check()
            except Exception as e:
                logger.error(f"Fund check failed: {e}")
                return None


class ProfitSweeper:
    """
    Moves any balance above the retention amount to the owner's wallet.
    """

    def __init__(
        self,
        fetch_balance: Callable[[], Awaitable[Decimal]],
        handler: CashoutHandler,
        config: CashoutConfig,
    ):
        self._fetch_balance = fetch_balance
        self._handler = handler
        self._config = config

    async def __call__(self) -> Optional[CashoutRecord]:
        balance = await self._fetch_balance()
        excess = balance - self._config.max_retention_amount
        if excess <= 0:
            logger.debug(
                f"Balance ${balance:.2f} within retention ${self._config.max_retention_amount}"
            )
            return None

        amount = excess.quantize(Decimal("0.01"), rounding=ROUND_DOWN)
        if amount <= 0:
            return None

        logger.info(f"Auto-cashout: sweeping ${amount} to {self._config.destination[:10]}")
        tx_ref = await self._handler.cashout(self._config.destination, amount)
        return CashoutRecord(amount=amount, destination=self._config.destination, tx_ref=tx_ref)
