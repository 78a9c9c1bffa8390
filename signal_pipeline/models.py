# signal_pipeline/models.py
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationFailure

ZERO = Decimal("0")
ONE = Decimal("1")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value) -> Optional[Decimal]:
    """Converts floats through their string form so 0.1 stays 0.1."""
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _json_value(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class SignalType(Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"
    STRONG_BUY = "strong_buy"
    STRONG_SELL = "strong_sell"
    PRICE_SPIKE = "price_spike"
    PRICE_DROP = "price_drop"
    VOLUME_SURGE = "volume_surge"


class TradeAction(Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class OrderType(Enum):
    MARKET = "Market"
    LIMIT = "Limit"
    STOP_LOSS = "StopLoss"
    TAKE_PROFIT = "TakeProfit"

    @classmethod
    def from_entry_type(cls, entry_type: str) -> "OrderType":
        # Only Market and Limit are valid entry types, anything else enters at market.
        if entry_type == "Limit":
            return cls.LIMIT
        return cls.MARKET


class OrderStatus(Enum):
    """
    Lifecycle of an order:
    PENDING -> PARTIALLY_FILLED* -> FILLED | CANCELLED | FAILED
    """
    PENDING = "PENDING"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_open(self) -> bool:
        return self in (OrderStatus.PENDING, OrderStatus.PARTIALLY_FILLED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_open


@dataclass(slots=True, frozen=True)
class MarketSnapshot:
    """
    One observation of an asset at a point in time.
    Never mutated: enrichment returns a new instance via dataclasses.replace.
    """
    asset_address: str
    symbol: str
    price: Decimal
    timestamp: datetime = field(default_factory=utcnow)
    volume_24h: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    liquidity: Optional[Decimal] = None
    price_change_24h: float = 0.0   # percent
    volume_change_24h: float = 0.0  # percent
    liquidity_change_24h: Optional[float] = None
    # Technical fields, filled by indicators.enrich_snapshot
    rsi_14: Optional[Decimal] = None
    macd: Optional[Decimal] = None
    macd_signal: Optional[Decimal] = None
    bollinger_upper: Optional[Decimal] = None
    bollinger_lower: Optional[Decimal] = None
    # On-chain / social fields
    holder_count: Optional[int] = None
    active_wallets: Optional[int] = None
    social_sentiment: Optional[float] = None
    social_volume: Optional[int] = None
    dev_activity: Optional[int] = None

    _DECIMAL_FIELDS = (
        "price", "volume_24h", "market_cap", "liquidity",
        "rsi_14", "macd", "macd_signal", "bollinger_upper", "bollinger_lower",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {k: _json_value(v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketSnapshot":
        values = dict(data)
        for name in cls._DECIMAL_FIELDS:
            if values.get(name) is not None:
                values[name] = Decimal(values[name])
        if isinstance(values.get("timestamp"), str):
            values["timestamp"] = datetime.fromisoformat(values["timestamp"])
        return cls(**values)


@dataclass(slots=True, frozen=True)
class MarketSignal:
    """
    A derived event produced by comparing two consecutive snapshots.
    confidence and risk_score must both lie in [0, 1] before the signal is used.
    """
    asset_address: str
    signal_type: SignalType
    price: Decimal
    confidence: Decimal
    risk_score: Decimal
    timestamp: datetime = field(default_factory=utcnow)
    price_change_24h: Optional[Decimal] = None
    volume_change_24h: Optional[Decimal] = None
    metadata: Optional[Dict[str, Any]] = None

    def validate(self) -> "MarketSignal":
        if not ZERO <= self.confidence <= ONE:
            raise ValidationFailure(f"Signal confidence must be between 0 and 1, got {self.confidence}")
        if not ZERO <= self.risk_score <= ONE:
            raise ValidationFailure(f"Risk score must be between 0 and 1, got {self.risk_score}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {k: _json_value(v) for k, v in asdict(self).items()}


@dataclass(slots=True)
class TechnicalSignals:
    trend_strength: float
    momentum_score: float
    volatility_score: float
    support_resistance: List[float]
    signal_type: str
    timeframe: str


@dataclass(slots=True)
class MarketContext:
    market_trend: str = "Neutral"
    sector_performance: float = 0.0
    liquidity_score: float = 0.0
    volume_profile: str = "Normal"
    sentiment_score: float = 0.5


@dataclass(slots=True)
class ExecutionParams:
    entry_type: str = "Market"
    time_horizon: str = "4h"
    stop_loss: float = 0.1
    take_profit: List[float] = field(default_factory=list)
    max_slippage: float = 0.01


@dataclass(slots=True)
class TradingDecision:
    asset_address: str
    action: TradeAction
    size: Decimal
    confidence: float
    rationale: str
    risk_score: float
    technical_signals: TechnicalSignals
    market_context: MarketContext
    execution_params: ExecutionParams


@dataclass(slots=True)
class ActiveOrder:
    """An order that has not reached a terminal status yet."""
    asset_address: str
    order_type: OrderType
    size: Decimal
    entry_price: Decimal
    stop_loss: Decimal
    take_profits: List[Decimal]
    side: str = "buy"
    filled_amount: Decimal = ZERO
    status: OrderStatus = OrderStatus.PENDING
    failure_reason: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True, frozen=True)
class OrderFill:
    """What an order backend reports back after a submission."""
    tx_reference: Optional[str]
    execution_price: Decimal
    slippage: Decimal
    filled_amount: Decimal


@dataclass(slots=True, frozen=True)
class ExecutionRecord:
    """Immutable record written once per order when it reaches a terminal status."""
    asset_address: str
    order_type: OrderType
    size: Decimal
    execution_price: Decimal
    slippage: Decimal
    timestamp: datetime = field(default_factory=utcnow)
    tx_reference: Optional[str] = None
    status: OrderStatus = OrderStatus.FILLED
    failure_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: _json_value(v) for k, v in asdict(self).items()}

    def to_row(self) -> List[Any]:
        """Flat row for the CSV audit trail."""
        return [
            self.timestamp.isoformat(),
            "EXECUTION",
            self.asset_address,
            self.order_type.value,
            str(self.size),
            str(self.execution_price),
            str(self.slippage),
            self.tx_reference or "",
            self.status.value,
        ]
