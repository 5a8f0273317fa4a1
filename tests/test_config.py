"""Tests for copy trader configuration."""

import pytest
from decimal import Decimal

from mirrortrader.config import (
    BotConfig,
    CashoutConfig,
    ExecutionConfig,
    FeeConfig,
    MonitorConfig,
    SizingConfig,
    parse_addresses,
)
from mirrortrader.models import LiquidityHealth


class TestMonitorConfig:
    """Tests for MonitorConfig."""

    def test_default_values(self):
        config = MonitorConfig()
        assert config.poll_interval_seconds == 2.0
        assert config.aggregation_window_seconds == 300
        assert config.cutoff_floor_seconds == 600
        assert config.batch_size == 5
        assert config.activity_limit == 20
        assert config.dedup_capacity == 2000

    def test_cutoff_uses_larger_of_window_and_floor(self):
        assert MonitorConfig().cutoff_seconds == 600
        assert MonitorConfig(aggregation_window_seconds=900).cutoff_seconds == 900

    def test_validation(self):
        with pytest.raises(ValueError, match="poll_interval_seconds must be positive"):
            MonitorConfig(poll_interval_seconds=0)
        with pytest.raises(ValueError, match="batch_size must be positive"):
            MonitorConfig(batch_size=0)

    def test_immutability(self):
        config = MonitorConfig()
        with pytest.raises(Exception):  # FrozenInstanceError
            config.batch_size = 10


class TestSizingConfig:
    """Tests for SizingConfig."""

    def test_default_values(self):
        config = SizingConfig()
        assert config.multiplier == Decimal("1")
        assert config.max_trade_amount is None
        assert config.default_min_order_size == Decimal("5")
        assert config.trader_balance_fallback == Decimal("10000")
        assert config.trader_balance_floor == Decimal("1000")
        assert config.min_liquidity == LiquidityHealth.LOW

    def test_validation(self):
        with pytest.raises(ValueError, match="multiplier must be non-negative"):
            SizingConfig(multiplier=Decimal("-1"))
        with pytest.raises(ValueError, match="max_trade_amount must be positive"):
            SizingConfig(max_trade_amount=Decimal("0"))


class TestExecutionConfig:
    """Tests for ExecutionConfig."""

    def test_default_values(self):
        config = ExecutionConfig()
        assert config.max_retries == 3
        assert config.retry_delay_ms == 200
        assert config.buy_slippage == Decimal("0.05")
        assert config.sell_slippage == Decimal("0.10")
        assert config.exchange_min_shares == Decimal("5")

    def test_validation(self):
        with pytest.raises(ValueError, match="max_retries must be positive"):
            ExecutionConfig(max_retries=0)
        with pytest.raises(ValueError, match="price bounds"):
            ExecutionConfig(min_sell_price=Decimal("0.995"))


class TestFeeAndCashoutConfig:
    """Tests for FeeConfig and CashoutConfig."""

    def test_fee_defaults(self):
        config = FeeConfig()
        assert config.lister_pct == Decimal("0.01")
        assert config.platform_pct == Decimal("0.01")
        assert config.dust_threshold == Decimal("0.01")

    def test_fee_shares_cannot_exceed_profit(self):
        with pytest.raises(ValueError, match="must not exceed 1"):
            FeeConfig(lister_pct=Decimal("0.6"), platform_pct=Decimal("0.6"))

    def test_cashout_requires_destination(self):
        with pytest.raises(ValueError, match="destination is required"):
            CashoutConfig(enabled=True)


class TestBotConfig:
    """Tests for BotConfig."""

    def test_defaults(self):
        config = BotConfig()
        assert config.traders == ()
        assert config.auto_tp_percent is None
        assert config.watchdog_interval_seconds == 10.0
        assert isinstance(config.monitor, MonitorConfig)
        assert isinstance(config.execution, ExecutionConfig)

    def test_validation(self):
        with pytest.raises(ValueError, match="auto_tp_percent must be positive"):
            BotConfig(auto_tp_percent=Decimal("0"))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("USER_ADDRESSES", "0xAAAAAAAAAAAA, 0xbbbbbbbbbbbb")
        monkeypatch.setenv("PROXY_WALLET", "0xproxy")
        monkeypatch.setenv("TRADE_MULTIPLIER", "2")
        monkeypatch.setenv("MAX_TRADE_AMOUNT", "50")
        monkeypatch.setenv("MIN_LIQUIDITY_FILTER", "medium")
        monkeypatch.setenv("AUTO_TP_PERCENT", "20")
        monkeypatch.setenv("RETRY_LIMIT", "5")
        monkeypatch.setenv("ENABLE_AUTO_CASHOUT", "false")

        config = BotConfig.from_env()

        assert config.traders == ("0xaaaaaaaaaaaa", "0xbbbbbbbbbbbb")
        assert config.proxy_wallet == "0xproxy"
        assert config.sizing.multiplier == Decimal("2")
        assert config.sizing.max_trade_amount == Decimal("50")
        assert config.sizing.min_liquidity == LiquidityHealth.MEDIUM
        assert config.auto_tp_percent == Decimal("20")
        assert config.execution.max_retries == 5
        assert config.cashout.enabled is False

    def test_from_env_invalid_fails_fast(self, monkeypatch):
        monkeypatch.setenv("ENABLE_AUTO_CASHOUT", "true")
        monkeypatch.setenv("MAIN_WALLET_ADDRESS", "")
        with pytest.raises(ValueError):
            BotConfig.from_env()


class TestParseAddresses:
    """Tests for trader address parsing."""

    def test_comma_list(self):
        assert parse_addresses("0xA, 0xB,,0xa") == ("0xa", "0xb")

    def test_json_array(self):
        assert parse_addresses('["0xA", "0xC"]') == ("0xa", "0xc")

    def test_empty(self):
        assert parse_addresses("  ") == ()
