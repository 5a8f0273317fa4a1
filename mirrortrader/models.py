"""
Value objects shared across the copy-trading pipeline.

Signals are parsed from the public activity feed with pydantic; everything
downstream (books, orders, results, positions) is a frozen dataclass.

All monetary values, prices and share counts use Decimal.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Exchange share precision (two decimals)
SHARE_INCREMENT = Decimal("0.01")


def round_shares(shares: Decimal) -> Decimal:
    """Round a share count down to exchange precision."""
    return shares.quantize(SHARE_INCREMENT, rounding=ROUND_DOWN)


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Convert API numbers (floats, strings, None) to Decimal."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class Side(str, Enum):
    """Order side."""

    BUY = "BUY"
    SELL = "SELL"


class ExecutionStatus(str, Enum):
    """Terminal state of one copy attempt."""

    FILLED = "FILLED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    ILLIQUID = "ILLIQUID"


class LiquidityHealth(str, Enum):
    """Order book health, ordered CRITICAL < LOW < MEDIUM < HIGH."""

    CRITICAL = "CRITICAL"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _HEALTH_RANK[self]

    def meets(self, minimum: "LiquidityHealth") -> bool:
        return self.rank >= minimum.rank


_HEALTH_RANK = {
    LiquidityHealth.CRITICAL: 0,
    LiquidityHealth.LOW: 1,
    LiquidityHealth.MEDIUM: 2,
    LiquidityHealth.HIGH: 3,
}


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


class TradeSignal(BaseModel):
    """
    Immutable copy signal: "trader X filled an order on token Y at time T".

    transaction_hash is the dedup identity used by the monitor.
    """

    model_config = ConfigDict(frozen=True)

    trader: str = Field(..., description="Address of the tracked trader")
    market_id: str = Field(..., description="Market condition id")
    token_id: str = Field(..., description="Outcome token id")
    side: Side
    outcome: str = Field(..., description="Outcome label, e.g. YES / NO")
    size_usd: Decimal = Field(..., ge=0, description="Trade notional in USD")
    price: Decimal = Field(..., gt=0, le=1)
    timestamp: datetime
    transaction_hash: str

    @field_validator("side", mode="before")
    @classmethod
    def normalize_side(cls, v):
        if isinstance(v, str):
            v = v.upper()
        return v

    def __repr__(self) -> str:
        return (
            f"Signal({self.side.value} {self.outcome} @ {self.price} "
            f"${self.size_usd:.2f} from {self.trader[:8]})"
        )


class ActivityEntry(BaseModel):
    """One raw record from the public activity feed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = ""
    transaction_hash: str = Field("", alias="transactionHash")
    timestamp: int = 0
    condition_id: str = Field("", alias="conditionId")
    asset: str = ""
    outcome_index: Optional[int] = Field(None, alias="outcomeIndex")
    outcome: Optional[str] = None
    side: str = ""
    size: Decimal = Decimal("0")
    usdc_size: Optional[Decimal] = Field(None, alias="usdcSize")
    price: Decimal = Decimal("0")

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v):
        """Accept epoch seconds, epoch millis or ISO-8601 strings."""
        if isinstance(v, str):
            try:
                v = float(v)
            except ValueError:
                parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return int(parsed.timestamp())
        v = int(float(v))
        if v > 10_000_000_000:  # millis
            v //= 1000
        return v

    @property
    def is_trade(self) -> bool:
        return self.type.upper() in ("TRADE", "ORDER_FILLED")

    @property
    def notional_usd(self) -> Decimal:
        if self.usdc_size:
            return self.usdc_size
        return self.size * self.price

    def to_signal(self, trader: str) -> TradeSignal:
        if self.outcome:
            outcome = self.outcome.upper()
        else:
            outcome = "YES" if self.outcome_index == 0 else "NO"
        return TradeSignal(
            trader=trader,
            market_id=self.condition_id,
            token_id=self.asset,
            side=self.side,
            outcome=outcome,
            size_usd=self.notional_usd,
            price=self.price,
            timestamp=datetime.fromtimestamp(self.timestamp, tz=timezone.utc),
            transaction_hash=self.transaction_hash,
        )


# ---------------------------------------------------------------------------
# Market data and orders
# ---------------------------------------------------------------------------


class BookLevel(NamedTuple):
    price: Decimal
    size: Decimal

    @property
    def notional(self) -> Decimal:
        return self.price * self.size


@dataclass(frozen=True, slots=True)
class OrderBook:
    """
    Order book snapshot for one outcome token.

    bids are sorted best-first (descending), asks best-first (ascending).
    """

    token_id: str
    bids: List[BookLevel] = field(default_factory=list)
    asks: List[BookLevel] = field(default_factory=list)
    min_order_size: Optional[Decimal] = None

    @classmethod
    def from_levels(
        cls,
        token_id: str,
        bids: List[Tuple[Any, Any]],
        asks: List[Tuple[Any, Any]],
        min_order_size: Any = None,
    ) -> "OrderBook":
        """Build a book from raw (price, size) pairs in any order."""
        bid_levels = [BookLevel(to_decimal(p), to_decimal(s)) for p, s in bids]
        ask_levels = [BookLevel(to_decimal(p), to_decimal(s)) for p, s in asks]
        bid_levels.sort(key=lambda lvl: lvl.price, reverse=True)
        ask_levels.sort(key=lambda lvl: lvl.price)
        return cls(
            token_id=token_id,
            bids=bid_levels,
            asks=ask_levels,
            min_order_size=to_decimal(min_order_size) if min_order_size else None,
        )

    def crossing_levels(self, side: Side) -> List[BookLevel]:
        """Levels an order on `side` trades against."""
        return self.asks if side == Side.BUY else self.bids

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / Decimal("2")
        return None


@dataclass(frozen=True, slots=True)
class OrderRequest:
    """A single fill-or-kill submission against one book level."""

    market_id: str
    token_id: str
    outcome: str
    side: Side
    shares: Decimal
    price: Decimal

    @property
    def notional(self) -> Decimal:
        return self.shares * self.price


@dataclass(frozen=True, slots=True)
class OrderResponse:
    success: bool
    shares_filled: Decimal = Decimal("0")
    price_filled: Decimal = Decimal("0")
    order_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PositionSnapshot:
    """Holding reported by the exchange for an address."""

    token_id: str
    balance: Decimal
    value_usd: Decimal
    market_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SizingResult:
    target_usd_size: Decimal
    target_shares: Decimal
    ratio: Decimal
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None


@dataclass(frozen=True, slots=True)
class LiquidityMetrics:
    health: LiquidityHealth
    spread_percent: Decimal
    available_depth_usd: Decimal


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of copying one signal or exiting one position."""

    status: ExecutionStatus
    executed_amount: Decimal = Decimal("0")
    executed_shares: Decimal = Decimal("0")
    price_filled: Decimal = Decimal("0")
    reason: Optional[str] = None
    residual_shares: Decimal = Decimal("0")
    order_ids: Tuple[str, ...] = ()

    @classmethod
    def skipped(
        cls, reason: str, status: ExecutionStatus = ExecutionStatus.SKIPPED
    ) -> "ExecutionResult":
        return cls(status=status, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "ExecutionResult":
        return cls(status=ExecutionStatus.FAILED, reason=reason)

    @property
    def has_fill(self) -> bool:
        return self.executed_shares > 0

    @property
    def tx_ref(self) -> Optional[str]:
        return self.order_ids[-1] if self.order_ids else None

    def __repr__(self) -> str:
        if self.has_fill:
            return (
                f"ExecutionResult({self.status.value}: {self.executed_shares}"
                f"@{self.price_filled}, ${self.executed_amount:.2f})"
            )
        return f"ExecutionResult({self.status.value}: {self.reason})"


# ---------------------------------------------------------------------------
# Engine state and events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ActivePosition:
    market_id: str
    token_id: str
    outcome: str
    entry_price: Decimal
    size_usd: Decimal
    shares: Decimal
    trader: str
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class FeeDistributionEvent:
    trade_id: str
    profit_amount: Decimal
    lister_fee: Decimal
    platform_fee: Decimal
    lister_address: str
    platform_address: str
    lister_tx: str
    platform_tx: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_distributed(self) -> Decimal:
        return self.lister_fee + self.platform_fee


@dataclass(frozen=True, slots=True)
class CashoutRecord:
    amount: Decimal
    destination: str
    tx_ref: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class TradeRecord:
    """History entry handed to the persistence layer."""

    trade_id: str
    market_id: str
    token_id: str
    outcome: str
    side: Side
    signal_size_usd: Decimal
    executed_usd: Decimal
    executed_shares: Decimal
    price: Decimal
    status: ExecutionStatus
    realized_pnl: Optional[Decimal] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class EngineStats:
    """Running statistics for one account."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    trades_count: int = 0
    total_volume: Decimal = Decimal("0")
    total_pnl: Decimal = Decimal("0")
    total_fees_paid: Decimal = Decimal("0")
    wins: int = 0
    losses: int = 0
    signals_seen: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def win_rate(self) -> float:
        closed = self.wins + self.losses
        return self.wins / closed if closed else 0.0

    def to_dict(self) -> Dict[str, Union[str, int, float]]:
        return {
            "started_at": self.started_at.isoformat(),
            "trades_count": self.trades_count,
            "total_volume": float(self.total_volume),
            "total_pnl": float(self.total_pnl),
            "total_fees_paid": float(self.total_fees_paid),
            "win_rate": self.win_rate,
            "signals_seen": self.signals_seen,
            "skipped": self.skipped,
            "failed": self.failed,
        }
