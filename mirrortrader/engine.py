"""
Copy Engine

The orchestrator for one follower account. It wires together:
- SignalMonitor (detects tracked traders' fills)
- LiquidityGuard + PositionSizer (decide whether and how much to copy)
- OrderExecutor (sweeps the book)
- FeeDistributor + FundThrottle (profit share and auto-cashout)

and owns the account state: active positions, PendingSpend and stats.
"""

from collections import defaultdict
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
import asyncio
import logging
import time
import uuid

from mirrortrader.adapters.base import CashoutHandler, ExchangeAdapter
from mirrortrader.cache import PendingSpend, TraderBalanceResolver
from mirrortrader.config import BotConfig
from mirrortrader.execution.executor import OrderExecutor
from mirrortrader.execution.liquidity import LiquidityGuard
from mirrortrader.funds.fees import FeeDistributor
from mirrortrader.funds.throttle import FundThrottle, ProfitSweeper
from mirrortrader.models import (
    ActivePosition,
    CashoutRecord,
    EngineStats,
    ExecutionResult,
    ExecutionStatus,
    FeeDistributionEvent,
    Side,
    TradeRecord,
    TradeSignal,
)
from mirrortrader.monitor.signals import SignalMonitor
from mirrortrader.sizing import PositionSizer

logger = logging.getLogger(__name__)

NO_POSITION_TO_SELL = "no_position_to_sell"
NO_POSITION = "no_position"


@dataclass
class EngineCallbacks:
    """Optional async hooks for the persistence / notification layer."""
    on_position_opened: Optional[Callable[[ActivePosition], Awaitable[None]]] = None
    on_position_closed: Optional[Callable[[ActivePosition, Optional[Decimal]], Awaitable[None]]] = None
    on_stats_updated: Optional[Callable[[EngineStats], Awaitable[None]]] = None
    on_trade_complete: Optional[Callable[[TradeRecord], Awaitable[None]]] = None
    on_fee_distributed: Optional[Callable[[FeeDistributionEvent], Awaitable[None]]] = None
    on_cashout: Optional[Callable[[CashoutRecord], Awaitable[None]]] = None


class CopyEngine:
    """
    Copy-trading engine for one account.

    Signals are processed as independent tasks. Signals for the same token
    are serialized, and BUY pipelines share one account lock so that the
    balance read, the sweep and the PendingSpend commit happen atomically.
    """

    def __init__(
        self,
        config: BotConfig,
        adapter: ExchangeAdapter,
        fee_distributor: Optional[FeeDistributor] = None,
        cashout_handler: Optional[CashoutHandler] = None,
        callbacks: Optional[EngineCallbacks] = None,
        positions: Optional[List[ActivePosition]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize engine.

        Args:
            config: Account configuration
            adapter: Exchange adapter
            fee_distributor: Profit-share payer (None disables fees)
            cashout_handler: Auto-cashout transport (required for auto-cashout)
            callbacks: Persistence / notification hooks
            positions: Positions restored from a previous session
            clock: Time source (epoch seconds)
        """
        self._config = config
        self._adapter = adapter
        self._fees = fee_distributor
        self._callbacks = callbacks or EngineCallbacks()
        self._clock = clock

        # Components
        self._guard = LiquidityGuard(config.sizing.min_liquidity)
        self._sizer = PositionSizer(config.sizing)
        self._executor = OrderExecutor(adapter, config.execution)
        self._trader_balances = TraderBalanceResolver(adapter, config.sizing)
        self._pending = PendingSpend(config.pending_spend_ttl_seconds, clock)
        self._monitor = SignalMonitor(
            adapter, config.traders, config.monitor, self._on_signal, clock
        )

        # Cashout is swept from the wallet that signs it
        self._cashout_source = getattr(cashout_handler, "address", None) or config.proxy_wallet
        self._throttle: Optional[FundThrottle] = None
        if config.cashout.enabled and cashout_handler is not None:
            sweeper = ProfitSweeper(self._fetch_cashout_balance, cashout_handler, config.cashout)
            self._throttle = FundThrottle(sweeper, config.cashout.check_interval_seconds)
        elif config.cashout.enabled:
            logger.warning("Auto-cashout enabled but no cashout handler configured; disabled")

        # State
        self._positions: Dict[str, ActivePosition] = {p.token_id: p for p in positions or []}
        self._stats = EngineStats()
        self._running = False
        self._stop_event = asyncio.Event()
        self._watchdog: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._token_locks: Dict[str, asyncio.Lock] = {}
        self._token_lock_users: Dict[str, int] = defaultdict(int)
        self._buy_lock = asyncio.Lock()
        self._withheld_fees: Dict[str, Tuple[Decimal, str]] = {}   # trade_id -> (profit, trader)

        logger.info(
            f"CopyEngine initialized: {len(config.traders)} traders, "
            f"multiplier={config.sizing.multiplier}, min_liquidity={config.sizing.min_liquidity.value}"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> EngineStats:
        return self._stats

    @property
    def positions(self) -> List[ActivePosition]:
        return list(self._positions.values())

    @property
    def pending_spend(self) -> PendingSpend:
        return self._pending

    @property
    def monitor(self) -> SignalMonitor:
        return self._monitor

    @property
    def executor(self) -> OrderExecutor:
        return self._executor

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event.clear()

        logger.info("=" * 60)
        logger.info("COPY ENGINE STARTING")
        logger.info("=" * 60)

        await self._monitor.start(self._config.start_cursor)
        self._watchdog = asyncio.create_task(self._watchdog_loop(), name="engine-watchdog")
        logger.info("Engine online. Watching traders...")

    async def run(self) -> None:
        """Start and block until stop() is called; in-flight signals are drained."""
        await self.start()
        await self._stop_event.wait()
        await self._monitor.stop()
        if self._watchdog is not None:
            await self._watchdog
            self._watchdog = None
        await self.drain()
        logger.info(f"Engine stopped. Final stats: {self._stats.to_dict()}")

    async def stop(self) -> None:
        """Halt polling and the watchdog now; executions already running finish."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        await self._monitor.stop()
        if self._watchdog is not None:
            await self._watchdog
            self._watchdog = None
        logger.info("Engine stopping")

    async def drain(self) -> None:
        """Wait for in-flight signal tasks and callbacks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _on_signal(self, signal: TradeSignal) -> None:
        if not self._running:
            return
        self._stats.signals_seen += 1
        self._spawn(self._process_signal(signal))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process_signal(self, signal: TradeSignal) -> ExecutionResult:
        token_id = signal.token_id
        lock = self._token_locks.setdefault(token_id, asyncio.Lock())
        self._token_lock_users[token_id] += 1
        try:
            async with lock:
                return await self.copy_trade(signal)
        finally:
            self._token_lock_users[token_id] -= 1
            if self._token_lock_users[token_id] == 0:
                del self._token_lock_users[token_id]
                self._token_locks.pop(token_id, None)

    async def copy_trade(self, signal: TradeSignal) -> ExecutionResult:
        """Run the full copy pipeline for one signal. Never raises."""
        try:
            if signal.side == Side.BUY:
                async with self._buy_lock:
                    result = await self._copy(signal)
            else:
                result = await self._copy(signal)
        except Exception as e:
            logger.error(f"Failed to copy trade {signal!r}: {e}", exc_info=True)
            result = ExecutionResult.failed(str(e))

        await self._record(signal, result)
        return result

    async def _copy(self, signal: TradeSignal) -> ExecutionResult:
        rejected = await self._guard.screen(self._adapter, signal.token_id, signal.side)
        if rejected is not None:
            return rejected

        held_shares: Optional[Decimal] = None
        if signal.side == Side.BUY:
            chain_balance = await self._adapter.fetch_balance(self._config.proxy_wallet)
            usable = self._pending.reconcile(chain_balance)
        else:
            snapshots = await self._adapter.get_positions(self._config.proxy_wallet)
            mine = next((p for p in snapshots if p.token_id == signal.token_id), None)
            if mine is None or mine.balance <= 0:
                logger.info(f"No position to sell on {signal.token_id[:12]}")
                return ExecutionResult.skipped(NO_POSITION_TO_SELL)
            usable = mine.value_usd
            held_shares = mine.balance

        trader_balance = await self._trader_balances.resolve(signal.trader)
        min_order_size = await self._min_order_size(signal.token_id)

        sizing = self._sizer.size(
            your_balance=usable,
            trader_balance=trader_balance,
            trader_trade_usd=signal.size_usd,
            price=signal.price,
            min_order_size=min_order_size,
        )
        if not sizing.accepted:
            logger.info(f"Skipping {signal!r}: {sizing.reason} (target ${sizing.target_usd_size:.2f})")
            return ExecutionResult.skipped(sizing.reason)

        shares = sizing.target_shares
        if held_shares is not None:
            shares = min(shares, held_shares)

        limit = self._executor.price_limit(signal.side, signal.price)
        logger.info(
            f"[Sizing] Trader: ${trader_balance:.0f} | Signal: ${signal.size_usd:.0f} ({signal.side.value}) "
            f"| Target: ${sizing.target_usd_size:.2f} ({shares} shares) | Limit: {limit:.4f}"
        )

        result = await self._executor.sweep(
            market_id=signal.market_id,
            token_id=signal.token_id,
            outcome=signal.outcome,
            side=signal.side,
            target_shares=shares,
            price_limit=limit,
        )

        if signal.side == Side.BUY and result.has_fill:
            self._pending.commit(result.executed_amount)
        return result

    async def _min_order_size(self, token_id: str) -> Decimal:
        try:
            book = await self._adapter.get_order_book(token_id)
            if book.min_order_size:
                return book.min_order_size
        except Exception as e:
            logger.debug(f"Using default min order size for {token_id[:12]}: {e}")
        return self._config.sizing.default_min_order_size

    async def _fetch_cashout_balance(self) -> Decimal:
        return await self._adapter.fetch_balance(self._cashout_source)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _record(self, signal: TradeSignal, result: ExecutionResult) -> None:
        if not result.has_fill:
            if result.status == ExecutionStatus.FAILED:
                self._stats.failed += 1
            else:
                self._stats.skipped += 1
            return

        realized: Optional[Decimal] = None
        if signal.side == Side.BUY:
            self._open_or_extend(signal, result)
        else:
            realized = self._reduce(
                signal.token_id, result, trade_id=signal.transaction_hash
            )

        self._finish_trade(
            TradeRecord(
                trade_id=signal.transaction_hash,
                market_id=signal.market_id,
                token_id=signal.token_id,
                outcome=signal.outcome,
                side=signal.side,
                signal_size_usd=signal.size_usd,
                executed_usd=result.executed_amount,
                executed_shares=result.executed_shares,
                price=result.price_filled,
                status=result.status,
                realized_pnl=realized,
            ),
            result,
        )

    def _open_or_extend(self, signal: TradeSignal, result: ExecutionResult) -> None:
        existing = self._positions.get(signal.token_id)
        if existing is None:
            position = ActivePosition(
                market_id=signal.market_id,
                token_id=signal.token_id,
                outcome=signal.outcome,
                entry_price=result.price_filled,
                size_usd=result.executed_amount,
                shares=result.executed_shares,
                trader=signal.trader,
            )
        else:
            shares = existing.shares + result.executed_shares
            size_usd = existing.size_usd + result.executed_amount
            position = replace(
                existing,
                shares=shares,
                size_usd=size_usd,
                entry_price=size_usd / shares,
            )
        self._positions[signal.token_id] = position
        self._fire(self._callbacks.on_position_opened, position)

    def _reduce(
        self, token_id: str, result: ExecutionResult, trade_id: str
    ) -> Optional[Decimal]:
        """Apply a SELL fill to the tracked position. Returns realized PnL."""
        position = self._positions.get(token_id)
        if position is None:
            return None

        sold = min(result.executed_shares, position.shares)
        realized = (result.price_filled - position.entry_price) * sold

        self._stats.total_pnl += realized
        if realized > 0:
            self._stats.wins += 1
        elif realized < 0:
            self._stats.losses += 1

        remaining = position.shares - sold
        if remaining < self._config.execution.share_increment:
            del self._positions[token_id]
            self._fire(self._callbacks.on_position_closed, position, realized)
        else:
            self._positions[token_id] = replace(
                position,
                shares=remaining,
                size_usd=position.entry_price * remaining,
            )

        if realized > 0 and self._fees is not None:
            self._spawn(self._settle_fees(trade_id, realized, position.trader))

        return realized

    async def _settle_fees(self, trade_id: str, profit: Decimal, trader: str) -> None:
        event = await self._fees.distribute(trade_id, profit, trader)
        if event is not None:
            self._withheld_fees.pop(trade_id, None)
            self._stats.total_fees_paid += event.total_distributed
            self._fire(self._callbacks.on_fee_distributed, event)
        elif self._fees.is_withheld(trade_id):
            if trade_id not in self._withheld_fees:
                logger.warning(f"Fees on {trade_id} withheld; will retry")
            self._withheld_fees[trade_id] = (profit, trader)
        else:
            self._withheld_fees.pop(trade_id, None)

    async def retry_withheld_fees(self) -> None:
        """Retry fee distributions that failed part-way."""
        for trade_id, (profit, trader) in list(self._withheld_fees.items()):
            await self._settle_fees(trade_id, profit, trader)

    def _finish_trade(self, record: TradeRecord, result: ExecutionResult) -> None:
        self._stats.trades_count += 1
        self._stats.total_volume += result.executed_amount
        logger.info(f"Executed {record.side.value} {record.market_id[:8]}: {result!r}")

        self._fire(self._callbacks.on_trade_complete, record)
        self._fire(self._callbacks.on_stats_updated, self._stats)

        if self._throttle is not None:
            self._spawn(self._run_cashout(force=True))

    async def _run_cashout(self, force: bool = False) -> None:
        record = await self._throttle.maybe_run(force=force)
        if record is not None:
            logger.info(f"Cashout of ${record.amount} sent: {record.tx_ref}")
            self._fire(self._callbacks.on_cashout, record)

    def _fire(self, callback: Optional[Callable[..., Awaitable[None]]], *args: Any) -> None:
        if callback is None:
            return
        self._spawn(self._safe_callback(callback, *args))

    async def _safe_callback(self, callback: Callable[..., Awaitable[None]], *args: Any) -> None:
        try:
            await callback(*args)
        except Exception as e:
            name = getattr(callback, "__name__", repr(callback))
            logger.error(f"Callback {name} failed: {e}")

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    async def exit_position(self, token_id: str) -> ExecutionResult:
        """Liquidate a tracked position at any price above the floor."""
        lock = self._token_locks.setdefault(token_id, asyncio.Lock())
        self._token_lock_users[token_id] += 1
        try:
            async with lock:
                return await self._exit(token_id)
        finally:
            self._token_lock_users[token_id] -= 1
            if self._token_lock_users[token_id] == 0:
                del self._token_lock_users[token_id]
                self._token_locks.pop(token_id, None)

    async def _exit(self, token_id: str) -> ExecutionResult:
        position = self._positions.get(token_id)
        if position is None:
            return ExecutionResult.skipped(NO_POSITION)

        try:
            result = await self._executor.execute_exit(position)
        except Exception as e:
            logger.error(f"Exit of {token_id[:12]} failed: {e}")
            return ExecutionResult.failed(str(e))

        if not result.has_fill:
            logger.error(f"Exit attempt failed: {result.reason}")
            self._stats.failed += 1
            return result

        trade_id = f"exit-{uuid.uuid4().hex[:12]}"
        realized = self._reduce(token_id, result, trade_id=trade_id)
        self._finish_trade(
            TradeRecord(
                trade_id=trade_id,
                market_id=position.market_id,
                token_id=token_id,
                outcome=position.outcome,
                side=Side.SELL,
                signal_size_usd=position.size_usd,
                executed_usd=result.executed_amount,
                executed_shares=result.executed_shares,
                price=result.price_filled,
                status=result.status,
                realized_pnl=realized,
            ),
            result,
        )
        return result

    # ------------------------------------------------------------------
    # Watchdog
    # ------------------------------------------------------------------

    async def _watchdog_loop(self) -> None:
        while not self._stop_event.is_set():
            await self.check_positions()
            if self._fees is not None and self._withheld_fees:
                await self.retry_withheld_fees()
            if self._throttle is not None:
                await self._run_cashout()
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._config.watchdog_interval_seconds
                )
            except asyncio.TimeoutError:
                pass

    async def check_positions(self) -> None:
        """Drop positions on closed markets and take profit above auto_tp_percent."""
        tp = self._config.auto_tp_percent
        for position in list(self._positions.values()):
            try:
                is_open = getattr(self._adapter, "is_market_open", None)
                if is_open is not None and not await is_open(position.market_id):
                    logger.info(f"Market {position.market_id[:10]} closed; dropping position")
                    self._positions.pop(position.token_id, None)
                    self._fire(self._callbacks.on_position_closed, position, None)
                    continue

                if tp is None:
                    continue

                book = await self._adapter.get_order_book(position.token_id)
                if book.best_bid is None or position.entry_price <= 0:
                    continue
                gain = (book.best_bid - position.entry_price) / position.entry_price * 100
                if gain >= tp:
                    logger.info(f"Auto TP hit: {position.outcome} is up +{gain:.1f}%")
                    await self.exit_position(position.token_id)
            except Exception as e:
                logger.debug(f"Watchdog check failed for {position.token_id[:12]}: {e}")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "traders": len(self._config.traders),
            "open_positions": len(self._positions),
            "pending_spend": float(self._pending.total),
            "processed_signals": len(self._monitor.processed),
            "monitor_ticks": self._monitor.ticks,
            "in_flight": len(self._tasks),
            "withheld_fees": len(self._withheld_fees),
            "stats": self._stats.to_dict(),
        }
