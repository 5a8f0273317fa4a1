"""Tests for the book-sweeping order executor."""

import asyncio
import logging
from decimal import Decimal

import pytest

from mirrortrader.config import ExecutionConfig
from mirrortrader.execution.executor import (
    NO_LIQUIDITY,
    PRICE_LIMIT_EXCEEDED,
    OrderExecutor,
)
from mirrortrader.models import ActivePosition, ExecutionStatus, Side
from tests.mocks.mock_exchange import MockExchange


def run_async(coro):
    """Run async coroutine in sync test."""
    return asyncio.run(coro)


@pytest.fixture
def exchange():
    return MockExchange()


@pytest.fixture
def executor(exchange):
    return OrderExecutor(exchange, ExecutionConfig(retry_delay_ms=0))


def sweep(executor, side, shares, limit, token="tok"):
    return run_async(
        executor.sweep(
            market_id="mkt",
            token_id=token,
            outcome="YES",
            side=side,
            target_shares=Decimal(shares),
            price_limit=Decimal(limit),
        )
    )


class TestPriceLimit:
    """Tests for slippage-bounded limits."""

    def test_buy_limit(self, executor):
        assert executor.price_limit(Side.BUY, Decimal("0.40")) == Decimal("0.42")

    def test_buy_limit_capped(self, executor):
        assert executor.price_limit(Side.BUY, Decimal("0.97")) == Decimal("0.99")

    def test_sell_limit(self, executor):
        assert executor.price_limit(Side.SELL, Decimal("0.50")) == Decimal("0.45")

    def test_sell_limit_floored(self, executor):
        assert executor.price_limit(Side.SELL, Decimal("0.001")) == Decimal("0.001")


class TestSweep:
    """Tests for OrderExecutor.sweep."""

    def test_single_level_fill(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "500")])

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.FILLED
        assert result.executed_shares == Decimal("100")
        assert result.executed_amount == Decimal("40")
        assert result.price_filled == Decimal("0.40")
        assert result.residual_shares == 0
        assert len(result.order_ids) == 1

    def test_walks_multiple_levels(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "30"), ("0.41", "50"), ("0.42", "100")])

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.FILLED
        assert [o.shares for o in exchange.orders] == [Decimal("30"), Decimal("50"), Decimal("20")]
        assert [o.price for o in exchange.orders] == [Decimal("0.40"), Decimal("0.41"), Decimal("0.42")]
        assert result.executed_amount == Decimal("12") + Decimal("20.5") + Decimal("8.4")

    def test_every_order_respects_buy_limit(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "30"), ("0.43", "500")])

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert all(o.price <= Decimal("0.42") for o in exchange.orders)
        assert result.status == ExecutionStatus.PARTIAL
        assert result.executed_shares == Decimal("30")
        assert result.residual_shares == Decimal("70")

    def test_every_order_respects_sell_limit(self, exchange, executor):
        exchange.set_book("tok", bids=[("0.50", "10"), ("0.44", "500")])

        result = sweep(executor, Side.SELL, "50", "0.45")

        assert all(o.price >= Decimal("0.45") for o in exchange.orders)
        assert result.executed_shares == Decimal("10")

    def test_price_limit_before_any_fill_is_skipped(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.50", "500")])

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.SKIPPED
        assert result.reason == PRICE_LIMIT_EXCEEDED
        assert exchange.call_count("create_order") == 0

    def test_empty_book_fails(self, exchange, executor):
        exchange.set_book("tok", bids=[("0.40", "100")], asks=[])

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.FAILED
        assert result.reason == NO_LIQUIDITY

    def test_book_exhausted_after_fill_is_partial(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "60")])

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.PARTIAL
        assert result.executed_shares == Decimal("60")
        assert result.residual_shares == Decimal("40")

    def test_level_thinner_than_increment_is_skipped(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "0.005"), ("0.41", "100")])

        result = sweep(executor, Side.BUY, "50", "0.42")

        assert result.status == ExecutionStatus.FILLED
        assert [o.price for o in exchange.orders] == [Decimal("0.41")]

    def test_partial_accounting_is_exact(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "33.33"), ("0.41", "21.17")])

        result = sweep(executor, Side.BUY, "123.45", "0.42")

        assert result.executed_shares + result.residual_shares == Decimal("123.45")

    def test_dust_residual_logs_error(self, exchange, executor, caplog):
        exchange.set_book("tok", asks=[("0.40", "97")])

        with caplog.at_level(logging.WARNING, logger="mirrortrader.execution.executor"):
            result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.PARTIAL
        assert result.residual_shares == Decimal("3")
        assert any(r.levelno == logging.ERROR and "dust" in r.getMessage() for r in caplog.records)

    def test_large_residual_logs_warning_only(self, exchange, executor, caplog):
        exchange.set_book("tok", asks=[("0.40", "50")])

        with caplog.at_level(logging.WARNING, logger="mirrortrader.execution.executor"):
            sweep(executor, Side.BUY, "100", "0.42")

        partial = [r for r in caplog.records if "PARTIAL" in r.getMessage()]
        assert partial and all(r.levelno == logging.WARNING for r in partial)


class TestRetries:
    """Tests for the retry budget."""

    def test_rejections_exhaust_budget(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "500")])
        exchange.reject_next(10, message="not enough balance")

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.FAILED
        assert result.reason == "not enough balance"
        assert exchange.call_count("create_order") == 3

    def test_budget_resets_after_success(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "10"), ("0.41", "10"), ("0.42", "100")])
        # Four rejections in total, never three in a row
        exchange.script_outcomes(False, False, True, False, False, True)

        result = sweep(executor, Side.BUY, "20", "0.42")

        assert result.status == ExecutionStatus.FILLED
        assert result.executed_shares == Decimal("20")
        assert exchange.call_count("create_order") == 6

    def test_transport_errors_count_as_retries(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "500")])
        exchange.raise_next(2)

        result = sweep(executor, Side.BUY, "100", "0.42")

        assert result.status == ExecutionStatus.FILLED
        assert exchange.call_count("create_order") == 3

    def test_book_refetched_every_attempt(self, exchange, executor):
        exchange.set_book("tok", asks=[("0.40", "30"), ("0.41", "100")])

        sweep(executor, Side.BUY, "100", "0.42")

        assert exchange.call_count("get_order_book") == exchange.call_count("create_order")

    def test_sleeps_between_attempts(self, exchange):
        executor = OrderExecutor(exchange, ExecutionConfig(retry_delay_ms=200))
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        executor._sleep = fake_sleep
        exchange.set_book("tok", asks=[("0.40", "30"), ("0.41", "100")])

        sweep(executor, Side.BUY, "100", "0.42")

        assert delays == [0.2]


class TestExecuteExit:
    """Tests for forced exits."""

    def test_exit_sells_all_shares_to_floor(self, exchange, executor):
        exchange.set_book("tok", bids=[("0.30", "40"), ("0.05", "100")])
        position = ActivePosition(
            market_id="mkt",
            token_id="tok",
            outcome="YES",
            entry_price=Decimal("0.40"),
            size_usd=Decimal("40"),
            shares=Decimal("100"),
            trader="0xtrader",
        )

        result = run_async(executor.execute_exit(position))

        assert result.status == ExecutionStatus.FILLED
        assert all(o.side == Side.SELL for o in exchange.orders)
        assert result.executed_amount == Decimal("12") + Decimal("3")
