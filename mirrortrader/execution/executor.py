"""
Order Executor for the copy engine

Fills a target share count by sweeping the live order book one level at a
time with fill-or-kill orders.

Features:
- Price protection (slippage-bounded limit per side)
- Fresh book on every attempt
- Retry budget that resets after each successful fill
- Exact partial-fill accounting (executed + residual == target)
"""

from decimal import Decimal
from typing import List, Optional
import asyncio
import logging

from mirrortrader.adapters.base import ExchangeAdapter
from mirrortrader.config import ExecutionConfig
from mirrortrader.models import (
    ActivePosition,
    ExecutionResult,
    ExecutionStatus,
    OrderRequest,
    Side,
    round_shares,
)

logger = logging.getLogger(__name__)

NO_LIQUIDITY = "no_liquidity"
PRICE_LIMIT_EXCEEDED = "price_limit_exceeded"
SIZE_TOO_SMALL = "size_too_small"


class OrderExecutor:
    """
    Sweeps the book for one signal or one exit.

    Each submission is a single FOK attempt; a rejected order is never
    resent as-is, the next attempt re-reads the book first.
    """

    def __init__(self, adapter: ExchangeAdapter, config: ExecutionConfig):
        """
        Initialize executor.

        Args:
            adapter: Exchange adapter used for books and orders
            config: Execution configuration
        """
        self._adapter = adapter
        self._config = config

    def price_limit(self, side: Side, signal_price: Decimal) -> Decimal:
        """Worst acceptable level price for copying a fill at signal_price."""
        if side == Side.BUY:
            return min(signal_price * (1 + self._config.buy_slippage), self._config.max_buy_price)
        return max(signal_price * (1 - self._config.sell_slippage), self._config.min_sell_price)

    def _breaches(self, side: Side, level_price: Decimal, limit: Decimal) -> bool:
        if side == Side.BUY:
            return level_price > limit
        return level_price < limit

    async def sweep(
        self,
        market_id: str,
        token_id: str,
        outcome: str,
        side: Side,
        target_shares: Decimal,
        price_limit: Decimal,
    ) -> ExecutionResult:
        """
        Fill up to target_shares at prices no worse than price_limit.

        Returns:
            FILLED when less than one share increment remains, PARTIAL with
            residual_shares when something filled, otherwise FAILED/SKIPPED.
        """
        increment = self._config.share_increment
        target_shares = round_shares(target_shares)
        if target_shares < increment:
            return ExecutionResult.skipped(SIZE_TOO_SMALL)

        remaining = target_shares
        filled_shares = Decimal("0")
        filled_usd = Decimal("0")
        order_ids: List[str] = []
        retries = 0
        attempts = 0
        last_error: Optional[str] = None

        while remaining >= increment and retries < self._config.max_retries:
            if attempts > 0:
                await self._sleep(self._config.retry_delay_ms / 1000)
            attempts += 1

            try:
                book = await self._adapter.get_order_book(token_id)
            except Exception as e:
                last_error = f"order book unavailable: {e}"
                logger.warning(f"Book fetch failed for {token_id[:12]} (attempt {attempts}): {e}")
                retries += 1
                continue

            # Levels thinner than one increment cannot take an order
            level = next(
                (lvl for lvl in book.crossing_levels(side) if round_shares(lvl.size) >= increment),
                None,
            )
            if level is None:
                if filled_shares == 0:
                    logger.warning(f"No {side.value} liquidity on {token_id[:12]}")
                    return ExecutionResult.failed(NO_LIQUIDITY)
                break

            if self._breaches(side, level.price, price_limit):
                logger.info(
                    f"Price protection: best {side.value} level {level.price} "
                    f"beyond limit {price_limit:.4f} on {token_id[:12]}"
                )
                if filled_shares == 0:
                    return ExecutionResult.skipped(PRICE_LIMIT_EXCEEDED)
                break

            size = round_shares(min(remaining, level.size))

            request = OrderRequest(
                market_id=market_id,
                token_id=token_id,
                outcome=outcome,
                side=side,
                shares=size,
                price=level.price,
            )

            try:
                response = await self._adapter.create_order(request)
            except Exception as e:
                last_error = str(e)
                retries += 1
                logger.error(f"Order attempt {attempts} failed: {e}")
                continue

            if not response.success:
                last_error = response.error or "order rejected"
                retries += 1
                logger.warning(f"FOK rejected ({last_error}), retry {retries}/{self._config.max_retries}")
                continue

            # FOK: a success fills the whole request
            fill_price = response.price_filled if response.price_filled > 0 else level.price
            filled_shares += size
            filled_usd += size * fill_price
            remaining -= size
            retries = 0
            if response.order_id:
                order_ids.append(response.order_id)
            logger.info(
                f"Filled {side.value} {size} @ {fill_price} on {token_id[:12]} "
                f"({remaining} remaining)"
            )

        return self._finalize(
            token_id, side, target_shares, filled_shares, filled_usd, order_ids, last_error
        )

    def _finalize(
        self,
        token_id: str,
        side: Side,
        target_shares: Decimal,
        filled_shares: Decimal,
        filled_usd: Decimal,
        order_ids: List[str],
        last_error: Optional[str],
    ) -> ExecutionResult:
        if filled_shares == 0:
            reason = last_error or NO_LIQUIDITY
            logger.error(f"{side.value} on {token_id[:12]} failed: {reason}")
            return ExecutionResult.failed(reason)

        residual = target_shares - filled_shares
        avg_price = filled_usd / filled_shares

        if residual < self._config.share_increment:
            status = ExecutionStatus.FILLED
        else:
            status = ExecutionStatus.PARTIAL
            if residual < self._config.exchange_min_shares:
                logger.error(
                    f"PARTIAL {side.value} on {token_id[:12]} left {residual} shares, "
                    f"below exchange minimum {self._config.exchange_min_shares} (unsellable dust)"
                )
            else:
                logger.warning(
                    f"PARTIAL {side.value} on {token_id[:12]}: "
                    f"{filled_shares}/{target_shares} shares filled"
                )

        return ExecutionResult(
            status=status,
            executed_amount=filled_usd,
            executed_shares=filled_shares,
            price_filled=avg_price,
            reason=last_error if status == ExecutionStatus.PARTIAL else None,
            residual_shares=residual,
            order_ids=tuple(order_ids),
        )

    async def execute_exit(self, position: ActivePosition) -> ExecutionResult:
        """Sell every held share down to the floor price."""
        logger.info(
            f"Exiting {position.shares} shares of {position.outcome} on {position.token_id[:12]}"
        )
        return await self.sweep(
            market_id=position.market_id,
            token_id=position.token_id,
            outcome=position.outcome,
            side=Side.SELL,
            target_shares=position.shares,
            price_limit=self._config.min_sell_price,
        )

    async def _sleep(self, seconds: float) -> None:
        """Async sleep helper."""
        await asyncio.sleep(seconds)
