"""Tests for liquidity assessment and screening."""

import asyncio
from decimal import Decimal

import pytest

from mirrortrader.execution.liquidity import (
    INSUFFICIENT_LIQUIDITY,
    LiquidityGuard,
    assess_order_book,
)
from mirrortrader.models import ExecutionStatus, LiquidityHealth, OrderBook, Side
from tests.mocks.mock_exchange import LiquidityAwareExchange, MockExchange


def run_async(coro):
    """Run async coroutine in sync test."""
    return asyncio.run(coro)


class TestLiquidityHealth:
    def test_ordering(self):
        assert LiquidityHealth.HIGH.meets(LiquidityHealth.LOW)
        assert LiquidityHealth.LOW.meets(LiquidityHealth.LOW)
        assert not LiquidityHealth.CRITICAL.meets(LiquidityHealth.LOW)
        assert not LiquidityHealth.MEDIUM.meets(LiquidityHealth.HIGH)


class TestAssessOrderBook:
    """Tests for assess_order_book."""

    def test_deep_tight_book_is_high(self):
        book = OrderBook.from_levels(
            "tok",
            bids=[("0.50", "5000")],
            asks=[("0.51", "5000"), ("0.52", "1000")],
        )
        metrics = assess_order_book(book, Side.BUY)
        assert metrics.health == LiquidityHealth.HIGH
        assert metrics.spread_percent < Decimal("2")
        # 5000 * 0.51 + 1000 * 0.52, both within 5% of best ask
        assert metrics.available_depth_usd == Decimal("3070")

    def test_depth_band_excludes_far_levels(self):
        book = OrderBook.from_levels(
            "tok",
            bids=[("0.50", "100")],
            asks=[("0.51", "100"), ("0.60", "100000")],
        )
        metrics = assess_order_book(book, Side.BUY)
        assert metrics.available_depth_usd == Decimal("51")
        assert metrics.health == LiquidityHealth.LOW

    def test_wide_spread_is_critical(self):
        book = OrderBook.from_levels("tok", bids=[("0.30", "10000")], asks=[("0.50", "10000")])
        assert assess_order_book(book, Side.BUY).health == LiquidityHealth.CRITICAL

    def test_empty_crossing_side_is_critical(self):
        book = OrderBook.from_levels("tok", bids=[("0.50", "1000")], asks=[])
        metrics = assess_order_book(book, Side.BUY)
        assert metrics.health == LiquidityHealth.CRITICAL
        assert metrics.available_depth_usd == 0

    def test_sell_side_uses_bids(self):
        book = OrderBook.from_levels(
            "tok",
            bids=[("0.50", "2000"), ("0.49", "1000")],
            asks=[("0.51", "1")],
        )
        metrics = assess_order_book(book, Side.SELL)
        assert metrics.available_depth_usd == Decimal("1490")
        assert metrics.health == LiquidityHealth.MEDIUM


class TestLiquidityGuard:
    """Tests for LiquidityGuard."""

    def test_passes_without_metrics_capability(self):
        guard = LiquidityGuard(LiquidityHealth.HIGH)
        assert run_async(guard.screen(MockExchange(), "tok", Side.BUY)) is None

    def test_passes_healthy_market(self):
        exchange = LiquidityAwareExchange(LiquidityHealth.MEDIUM)
        guard = LiquidityGuard(LiquidityHealth.LOW)
        assert run_async(guard.screen(exchange, "tok", Side.BUY)) is None

    @pytest.mark.parametrize("minimum", [LiquidityHealth.LOW, LiquidityHealth.MEDIUM])
    def test_rejects_below_minimum(self, minimum):
        exchange = LiquidityAwareExchange(LiquidityHealth.CRITICAL)
        guard = LiquidityGuard(minimum)

        result = run_async(guard.screen(exchange, "tok", Side.BUY))

        assert result.status == ExecutionStatus.ILLIQUID
        assert result.reason == INSUFFICIENT_LIQUIDITY
        assert result.executed_shares == 0
        assert exchange.call_count("get_order_book") == 0
        assert exchange.call_count("create_order") == 0
