"""
Signal monitor: polls tracked traders' public activity and emits one
TradeSignal per newly observed fill.

A fill is emitted at most once. Identity is the transaction hash; the
processed log is pruned by age once it grows past its capacity, so memory
stays bounded over weeks of polling.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union
import asyncio
import inspect
import logging
import time

import httpx
from pydantic import ValidationError

from mirrortrader.adapters.base import ExchangeAdapter
from mirrortrader.config import MonitorConfig
from mirrortrader.models import ActivityEntry, TradeSignal

logger = logging.getLogger(__name__)

MIN_ADDRESS_LENGTH = 10

SignalCallback = Callable[[TradeSignal], Union[None, Awaitable[None]]]


class ProcessedSignalLog:
    """
    identity -> activity timestamp (epoch seconds).

    Pruned only when the size exceeds capacity, in one pass that drops every
    entry older than the cutoff.
    """

    def __init__(self, capacity: int = 2000):
        self._capacity = capacity
        self._entries: Dict[str, int] = {}

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, identity: str, timestamp: int) -> None:
        self._entries[identity] = timestamp

    def prune(self, cutoff: int) -> int:
        """Drop entries older than cutoff if over capacity. Returns the number removed."""
        if len(self._entries) <= self._capacity:
            return 0
        before = len(self._entries)
        self._entries = {k: ts for k, ts in self._entries.items() if ts >= cutoff}
        removed = before - len(self._entries)
        if removed:
            logger.debug(f"Pruned {removed} processed signals ({len(self._entries)} kept)")
        return removed


def _identity(entry: ActivityEntry) -> str:
    if entry.transaction_hash:
        return entry.transaction_hash
    return f"{entry.asset}:{entry.timestamp}:{entry.side}:{entry.size}"


def _is_transient(error: Exception) -> bool:
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 404
    return False


class SignalMonitor:
    """
    Polls every tracked trader on a fixed interval.

    Ticks never overlap: the loop awaits each tick before sleeping, and
    stop() wakes the sleep immediately.
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        traders: Iterable[str],
        config: MonitorConfig,
        on_signal: SignalCallback,
        clock: Callable[[], float] = time.time,
    ):
        self._adapter = adapter
        self._traders: List[str] = list(traders)
        self._config = config
        self._on_signal = on_signal
        self._clock = clock

        self._processed = ProcessedSignalLog(config.dedup_capacity)
        self._high_water: Dict[str, int] = {}
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def processed(self) -> ProcessedSignalLog:
        return self._processed

    @property
    def traders(self) -> List[str]:
        return list(self._traders)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def high_water_mark(self, trader: str) -> int:
        return self._high_water.get(trader, 0)

    async def start(self, start_cursor: Optional[int] = None) -> None:
        """Seed high-water marks and launch the poll loop."""
        logger.info(f"Initializing monitor for {len(self._traders)} target wallets")
        if start_cursor:
            for trader in self._traders:
                self._high_water[trader] = start_cursor
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="signal-monitor")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Monitor tick error: {e}")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._config.poll_interval_seconds
                )
            except asyncio.TimeoutError:
                pass
        logger.info("Monitor stopped")

    async def tick(self) -> None:
        """Poll every trader once, in concurrent batches."""
        now = int(self._clock())
        cutoff = now - self._config.cutoff_seconds
        self._processed.prune(cutoff)

        traders = [t for t in self._traders if t and len(t) >= MIN_ADDRESS_LENGTH]
        size = self._config.batch_size
        for i in range(0, len(traders), size):
            batch = traders[i:i + size]
            await asyncio.gather(*(self._poll_trader(t, cutoff) for t in batch))
        self.ticks += 1

    async def _poll_trader(self, trader: str, cutoff: int) -> None:
        if self._stop_event.is_set():
            return

        try:
            raw = await self._adapter.fetch_public_trades(trader, self._config.activity_limit)
        except Exception as e:
            if _is_transient(e):
                logger.debug(f"Transient error polling {trader[:10]}: {e}")
            else:
                logger.warning(f"Error polling {trader[:10]}: {e}")
            return

        entries = self._parse(trader, raw)
        entries.sort(key=lambda entry: entry.timestamp)

        # Mark as of the start of this poll, so same-second fills all pass
        mark = self._high_water.get(trader, 0)

        for entry in entries:
            if not entry.is_trade:
                continue
            if entry.timestamp < cutoff:
                continue
            identity = _identity(entry)
            if identity in self._processed:
                continue
            if entry.timestamp <= mark:
                continue

            try:
                signal = entry.to_signal(trader)
            except ValidationError as e:
                logger.warning(f"Dropping malformed fill {identity[:16]} from {trader[:10]}: {e}")
                self._processed.record(identity, entry.timestamp)
                continue

            self._processed.record(identity, entry.timestamp)
            self._high_water[trader] = max(self._high_water.get(trader, 0), entry.timestamp)

            logger.info(
                f"[SIGNAL] {signal.side.value} {signal.outcome} @ {signal.price} "
                f"(${signal.size_usd:.0f}) from {trader[:6]}"
            )
            await self._emit(signal)

    def _parse(self, trader: str, raw: List[Dict[str, Any]]) -> List[ActivityEntry]:
        entries = []
        for item in raw or []:
            try:
                entries.append(ActivityEntry.model_validate(item))
            except (ValidationError, ValueError, TypeError) as e:
                logger.debug(f"Unparseable activity from {trader[:10]}: {e}")
        return entries

    async def _emit(self, signal: TradeSignal) -> None:
        try:
            result = self._on_signal(signal)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Signal handler failed for {signal.transaction_hash[:16]}: {e}")
