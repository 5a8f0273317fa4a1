"""
Copy Trader Configuration

Validated dataclass config for the copy-trading engine.

All monetary values use Decimal for precision.
All configs are frozen (immutable) so one engine's settings can be shared
with its components without copying.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple
import json
import os

from dotenv import load_dotenv

from mirrortrader.models import LiquidityHealth


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """
    Signal monitor polling parameters.
    """
    poll_interval_seconds: float = 2.0        # Sleep between ticks
    aggregation_window_seconds: int = 300     # Trade aggregation window
    cutoff_floor_seconds: int = 600           # Signals older than this are never copied
    batch_size: int = 5                       # Traders polled concurrently
    activity_limit: int = 20                  # Activities fetched per trader per tick
    dedup_capacity: int = 2000                # Processed-log size that triggers pruning

    def __post_init__(self) -> None:
        """Validate polling parameters."""
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"poll_interval_seconds must be positive: {self.poll_interval_seconds}")
        if self.aggregation_window_seconds < 0:
            raise ValueError(f"aggregation_window_seconds must be non-negative: {self.aggregation_window_seconds}")
        if self.cutoff_floor_seconds < 0:
            raise ValueError(f"cutoff_floor_seconds must be non-negative: {self.cutoff_floor_seconds}")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive: {self.batch_size}")
        if self.activity_limit <= 0:
            raise ValueError(f"activity_limit must be positive: {self.activity_limit}")
        if self.dedup_capacity <= 0:
            raise ValueError(f"dedup_capacity must be positive: {self.dedup_capacity}")

    @property
    def cutoff_seconds(self) -> int:
        return max(self.aggregation_window_seconds, self.cutoff_floor_seconds)


@dataclass(frozen=True, slots=True)
class SizingConfig:
    """
    Proportional position sizing.
    """
    multiplier: Decimal = Decimal("1")                      # Scale on the proportional size
    max_trade_amount: Optional[Decimal] = None              # Hard cap per copied trade
    default_min_order_size: Decimal = Decimal("5")          # Shares, when the book has none
    min_trade_usd: Decimal = Decimal("1")                   # Smallest trade worth sending
    trader_balance_fallback: Decimal = Decimal("10000")     # Used when trader balance is unknown
    trader_balance_floor: Decimal = Decimal("1000")         # Lower bound on resolved balance
    min_liquidity: LiquidityHealth = LiquidityHealth.LOW    # Guard threshold
    balance_cache_ttl_seconds: float = 300.0                # Trader balance cache lifetime

    def __post_init__(self) -> None:
        """Validate sizing parameters."""
        if self.multiplier < Decimal("0"):
            raise ValueError(f"multiplier must be non-negative: {self.multiplier}")
        if self.max_trade_amount is not None and self.max_trade_amount <= Decimal("0"):
            raise ValueError(f"max_trade_amount must be positive: {self.max_trade_amount}")
        if self.default_min_order_size < Decimal("0"):
            raise ValueError(f"default_min_order_size must be non-negative: {self.default_min_order_size}")
        if self.trader_balance_fallback <= Decimal("0"):
            raise ValueError(f"trader_balance_fallback must be positive: {self.trader_balance_fallback}")
        if self.trader_balance_floor < Decimal("0"):
            raise ValueError(f"trader_balance_floor must be non-negative: {self.trader_balance_floor}")
        if self.balance_cache_ttl_seconds < 0:
            raise ValueError(f"balance_cache_ttl_seconds must be non-negative: {self.balance_cache_ttl_seconds}")


@dataclass(frozen=True, slots=True)
class ExecutionConfig:
    """
    Order book sweep configuration.
    """
    max_retries: int = 3                               # Consecutive rejections before giving up
    retry_delay_ms: int = 200                          # Pause between sweep attempts
    buy_slippage: Decimal = Decimal("0.05")            # BUY limit = price * 1.05
    sell_slippage: Decimal = Decimal("0.10")           # SELL limit = price * 0.90
    max_buy_price: Decimal = Decimal("0.99")
    min_sell_price: Decimal = Decimal("0.001")
    share_increment: Decimal = Decimal("0.01")         # Exchange share precision
    exchange_min_shares: Decimal = Decimal("5")        # Residuals below this cannot be sold

    def __post_init__(self) -> None:
        """Validate execution parameters."""
        if self.max_retries <= 0:
            raise ValueError(f"max_retries must be positive: {self.max_retries}")
        if self.retry_delay_ms < 0:
            raise ValueError(f"retry_delay_ms must be non-negative: {self.retry_delay_ms}")
        if not (Decimal("0") <= self.buy_slippage <= Decimal("1")):
            raise ValueError(f"buy_slippage must be 0-1: {self.buy_slippage}")
        if not (Decimal("0") <= self.sell_slippage <= Decimal("1")):
            raise ValueError(f"sell_slippage must be 0-1: {self.sell_slippage}")
        if not (Decimal("0") < self.min_sell_price < self.max_buy_price <= Decimal("1")):
            raise ValueError("price bounds must satisfy 0 < min_sell_price < max_buy_price <= 1")
        if self.share_increment <= Decimal("0"):
            raise ValueError(f"share_increment must be positive: {self.share_increment}")


@dataclass(frozen=True, slots=True)
class FeeConfig:
    """
    Profit-share distribution.
    """
    lister_pct: Decimal = Decimal("0.01")       # Share paid to whoever listed the trader
    platform_pct: Decimal = Decimal("0.01")     # Share paid to the platform wallet
    dust_threshold: Decimal = Decimal("0.01")   # Lister shares below this are not paid
    platform_wallet: str = ""
    registry_url: str = "http://localhost:3000/api"

    def __post_init__(self) -> None:
        """Validate fee parameters."""
        if not (Decimal("0") <= self.lister_pct <= Decimal("1")):
            raise ValueError(f"lister_pct must be 0-1: {self.lister_pct}")
        if not (Decimal("0") <= self.platform_pct <= Decimal("1")):
            raise ValueError(f"platform_pct must be 0-1: {self.platform_pct}")
        if self.lister_pct + self.platform_pct > Decimal("1"):
            raise ValueError("lister_pct + platform_pct must not exceed 1")


@dataclass(frozen=True, slots=True)
class CashoutConfig:
    """
    Automatic profit sweep to the owner's wallet.
    """
    enabled: bool = False
    max_retention_amount: Decimal = Decimal("1000")   # Balance kept for trading
    destination: str = ""                             # Owner wallet
    check_interval_seconds: float = 3600.0

    def __post_init__(self) -> None:
        """Validate cashout parameters."""
        if self.max_retention_amount < Decimal("0"):
            raise ValueError(f"max_retention_amount must be non-negative: {self.max_retention_amount}")
        if self.check_interval_seconds < 0:
            raise ValueError(f"check_interval_seconds must be non-negative: {self.check_interval_seconds}")
        if self.enabled and not self.destination:
            raise ValueError("cashout destination is required when auto-cashout is enabled")


@dataclass(frozen=True, slots=True)
class PolymarketConfig:
    """
    Exchange connection settings.
    """
    clob_host: str = "https://clob.polymarket.com"
    data_api_url: str = "https://data-api.polymarket.com"
    rpc_url: str = "https://polygon-rpc.com"
    chain_id: int = 137
    usdc_address: str = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
    private_key: str = field(default="", repr=False)
    signature_type: int = 2                     # Proxy wallet
    request_timeout_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class BotConfig:
    """
    Master configuration for one copy-trading account.
    """
    traders: Tuple[str, ...] = ()
    proxy_wallet: str = ""
    auto_tp_percent: Optional[Decimal] = None         # e.g. 20 = exit at +20%
    watchdog_interval_seconds: float = 10.0
    pending_spend_ttl_seconds: float = 120.0
    start_cursor: Optional[int] = None                # Epoch seconds; older signals are ignored

    # Sub-configurations
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    sizing: SizingConfig = field(default_factory=SizingConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    fees: FeeConfig = field(default_factory=FeeConfig)
    cashout: CashoutConfig = field(default_factory=CashoutConfig)
    polymarket: PolymarketConfig = field(default_factory=PolymarketConfig)

    def __post_init__(self) -> None:
        """Validate master config."""
        if self.auto_tp_percent is not None and self.auto_tp_percent <= Decimal("0"):
            raise ValueError(f"auto_tp_percent must be positive: {self.auto_tp_percent}")
        if self.watchdog_interval_seconds <= 0:
            raise ValueError(f"watchdog_interval_seconds must be positive: {self.watchdog_interval_seconds}")
        if self.pending_spend_ttl_seconds < 0:
            raise ValueError(f"pending_spend_ttl_seconds must be non-negative: {self.pending_spend_ttl_seconds}")

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Create config from environment variables (and a .env file if present)."""
        load_dotenv()

        max_trade = os.getenv("MAX_TRADE_AMOUNT")
        auto_tp = os.getenv("AUTO_TP_PERCENT")
        cursor = os.getenv("START_CURSOR")

        return cls(
            traders=parse_addresses(os.getenv("USER_ADDRESSES", "")),
            proxy_wallet=os.getenv("PROXY_WALLET", ""),
            auto_tp_percent=Decimal(auto_tp) if auto_tp else None,
            start_cursor=int(cursor) if cursor else None,
            monitor=MonitorConfig(
                poll_interval_seconds=float(os.getenv("FETCH_INTERVAL", "2")),
                aggregation_window_seconds=int(os.getenv("TRADE_AGGREGATION_WINDOW_SECONDS", "300")),
            ),
            sizing=SizingConfig(
                multiplier=Decimal(os.getenv("TRADE_MULTIPLIER", "1")),
                max_trade_amount=Decimal(max_trade) if max_trade else None,
                min_liquidity=LiquidityHealth(os.getenv("MIN_LIQUIDITY_FILTER", "LOW").upper()),
            ),
            execution=ExecutionConfig(
                max_retries=int(os.getenv("RETRY_LIMIT", "3")),
            ),
            fees=FeeConfig(
                platform_wallet=os.getenv("ADMIN_REVENUE_WALLET", ""),
                registry_url=os.getenv("REGISTRY_API_URL", "http://localhost:3000/api"),
            ),
            cashout=CashoutConfig(
                enabled=_env_flag("ENABLE_AUTO_CASHOUT"),
                max_retention_amount=Decimal(os.getenv("MAX_RETENTION_AMOUNT", "1000")),
                destination=os.getenv("MAIN_WALLET_ADDRESS", ""),
            ),
            polymarket=PolymarketConfig(
                clob_host=os.getenv("CLOB_HOST", "https://clob.polymarket.com"),
                rpc_url=os.getenv("RPC_URL", "https://polygon-rpc.com"),
                private_key=os.getenv("PRIVATE_KEY", ""),
            ),
        )


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_addresses(raw: str) -> Tuple[str, ...]:
    """
    Parse trader addresses from a comma list or a JSON array.

    Addresses are lower-cased and de-duplicated, order preserved.
    """
    raw = raw.strip()
    if not raw:
        return ()
    if raw.startswith("["):
        items = json.loads(raw)
    else:
        items = raw.split(",")

    seen = []
    for item in items:
        addr = str(item).strip().lower()
        if addr and addr not in seen:
            seen.append(addr)
    return tuple(seen)
