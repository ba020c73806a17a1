"""Data models for the forecast-driven auto trader.

This module defines all data structures used by the decision engine:
- Market data and technical signals consumed by the aggregator
- Forecasts produced by an external provider (or the technical fallback)
- Orders, positions and the simulated portfolio owned by the order engine
- Risk settings and engine status

All monetary values use Decimal for precision.
All timestamps are timezone-aware UTC datetime objects.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class OrderSide(str, Enum):
    """Order side - buy or sell."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self == OrderSide.BUY else OrderSide.BUY


class OrderStatus(str, Enum):
    """Order lifecycle status."""
    PENDING = "pending"           # Created, not yet submitted to the venue
    EXECUTED = "executed"         # Terminal - venue filled it
    FAILED = "failed"             # Terminal - venue rejected it
    CANCELLED = "cancelled"


class ForecastDirection(str, Enum):
    """Direction of an external forecast."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"

    @property
    def order_side(self) -> Optional[OrderSide]:
        """Order side for this direction (None for HOLD)."""
        if self == ForecastDirection.BUY:
            return OrderSide.BUY
        if self == ForecastDirection.SELL:
            return OrderSide.SELL
        return None


class SignalLabel(str, Enum):
    """Qualitative label of a technical signal."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class HealthStatus(str, Enum):
    """Engine health as reported in BotStatus."""
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


# Which signal label corroborates which forecast direction
DIRECTION_AGREEMENT = {
    ForecastDirection.BUY: SignalLabel.BULLISH,
    ForecastDirection.SELL: SignalLabel.BEARISH,
    ForecastDirection.HOLD: SignalLabel.NEUTRAL,
}


# =============================================================================
# Market Data Models
# =============================================================================

class PriceSample(BaseModel):
    """One point of a symbol's price/volume history (oldest-first sequences)."""
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    price: Decimal = Field(..., gt=0, description="Traded price")
    volume: Decimal = Field(default=Decimal("0"), ge=0, description="Traded volume")
    timestamp: datetime = Field(default_factory=utc_now, description="Sample time (UTC)")


class Signal(BaseModel):
    """A single technical indicator reading.

    Attributes:
        name: Indicator name (e.g. "RSI")
        value: Raw indicator value
        label: Bullish, bearish or neutral reading
        weight: Fixed per-indicator weight in (0, 1]
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Indicator name")
    value: float = Field(..., description="Indicator value")
    label: SignalLabel = Field(..., description="Directional label")
    weight: float = Field(..., gt=0.0, le=1.0, description="Indicator weight")


# =============================================================================
# Forecast Model
# =============================================================================

class Forecast(BaseModel):
    """Directional forecast for a symbol.

    Forecasts are immutable. The aggregator derives a new Forecast with an
    adjusted confidence instead of changing an existing one.

    Attributes:
        symbol: Instrument symbol (e.g., "AAPL")
        direction: Buy, sell or hold
        confidence: Confidence 0-100
        current_price: Price at forecast time
        target_price: Expected price at the end of the timeframe
        timeframe: Forecast horizon (e.g., "1h")
        reasoning: Human-readable explanation
        signals: Corroborating technical signals (ordered)
        created_at: Creation time
        expires_at: Time after which the forecast is stale
    """
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    symbol: str = Field(..., min_length=1, description="Instrument symbol")
    direction: ForecastDirection = Field(..., description="Forecast direction")
    confidence: float = Field(..., ge=0.0, le=100.0, description="Confidence 0-100")
    current_price: Decimal = Field(..., gt=0, description="Price at forecast time")
    target_price: Optional[Decimal] = Field(default=None, description="Target price")
    timeframe: str = Field(default="1h", description="Forecast horizon")
    reasoning: str = Field(default="", description="Explanation")
    signals: List[Signal] = Field(default_factory=list, description="Technical signals")

    id: str = Field(default_factory=lambda: str(uuid4()), description="Forecast ID")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    expires_at: Optional[datetime] = Field(default=None, description="Expiry time")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True if the forecast has passed its expiry time."""
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at

    def with_confidence(self, confidence: float, signals: Optional[List[Signal]] = None) -> "Forecast":
        """Derive a copy carrying an adjusted confidence (and optionally new signals)."""
        data = self.model_dump()
        data["confidence"] = confidence
        if signals is not None:
            data["signals"] = [s.model_dump() for s in signals]
        return Forecast.model_validate(data)


# =============================================================================
# Order Models
# =============================================================================

class Order(BaseModel):
    """Simulated order.

    Created PENDING; transitions exactly once to EXECUTED or FAILED.
    An executed order that later triggers an exit is archived, never
    returned to PENDING.

    Attributes:
        symbol: Instrument symbol
        side: Buy or sell
        quantity: Whole units to trade
        price: Order (and simulated fill) price
        id: Internal order ID (UUID)
        status: Current order status
        submitted_at: Time the order was created
        source_forecast_id: Forecast that produced the order (entries only)
        stop_loss: Stop-loss trigger price
        take_profit: Take-profit trigger price
        executed_at: Fill time
        failure_reason: Why the venue rejected the order
        exit_order_id: Exit order that closed this one (archived orders)
        close_reason: "stop_loss" or "take_profit" for archived orders
    """
    model_config = ConfigDict(json_encoders={Decimal: str}, validate_assignment=True)

    # Required fields
    symbol: str = Field(..., min_length=1, description="Instrument symbol")
    side: OrderSide = Field(..., description="Order side")
    quantity: int = Field(..., gt=0, description="Order quantity (whole units)")
    price: Decimal = Field(..., gt=0, description="Order price")

    # Identification
    id: str = Field(default_factory=lambda: str(uuid4()), description="Order ID")

    # Status
    status: OrderStatus = Field(default=OrderStatus.PENDING, description="Order status")
    submitted_at: datetime = Field(default_factory=utc_now, description="Submission time")
    executed_at: Optional[datetime] = Field(default=None, description="Fill time")
    failure_reason: Optional[str] = Field(default=None, description="Rejection reason")

    # Origin
    source_forecast_id: Optional[str] = Field(default=None, description="Source forecast")

    # Risk management
    stop_loss: Optional[Decimal] = Field(default=None, gt=0, description="Stop loss price")
    take_profit: Optional[Decimal] = Field(default=None, gt=0, description="Take profit price")

    # Exit bookkeeping
    exit_order_id: Optional[str] = Field(default=None, description="Closing exit order")
    close_reason: Optional[str] = Field(default=None, description="Exit trigger")

    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional data")

    @property
    def notional(self) -> Decimal:
        """Order value at its price."""
        return self.price * self.quantity

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.EXECUTED, OrderStatus.FAILED, OrderStatus.CANCELLED)

    def mark_executed(self, fill_price: Optional[Decimal] = None,
                      executed_at: Optional[datetime] = None) -> None:
        """Transition PENDING -> EXECUTED."""
        if self.status != OrderStatus.PENDING:
            raise ValueError(f"Order {self.id} is {self.status.value}, cannot execute")
        if fill_price is not None:
            self.price = fill_price
        self.executed_at = executed_at or utc_now()
        self.status = OrderStatus.EXECUTED

    def mark_failed(self, reason: str) -> None:
        """Transition PENDING -> FAILED."""
        if self.status != OrderStatus.PENDING:
            raise ValueError(f"Order {self.id} is {self.status.value}, cannot fail")
        self.failure_reason = reason
        self.status = OrderStatus.FAILED


# =============================================================================
# Position Models
# =============================================================================

class Position(BaseModel):
    """Net holding in one symbol with its cost basis.

    Attributes:
        symbol: Instrument symbol
        quantity: Units held
        average_entry_price: Quantity-weighted average entry price
        current_price: Last marked price
        unrealized_pnl: (current - average) * quantity
        unrealized_pnl_percent: (current - average) / average * 100
        opened_at: Time the position was opened
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    symbol: str = Field(..., description="Instrument symbol")
    quantity: int = Field(..., ge=0, description="Units held")
    average_entry_price: Decimal = Field(..., gt=0, description="Average entry price")
    current_price: Decimal = Field(..., gt=0, description="Last marked price")
    unrealized_pnl: Decimal = Field(default=Decimal("0"), description="Unrealized PnL")
    unrealized_pnl_percent: Decimal = Field(default=Decimal("0"), description="Unrealized PnL %")
    opened_at: datetime = Field(default_factory=utc_now, description="Open time")

    @property
    def market_value(self) -> Decimal:
        """Position value at the last marked price."""
        return self.current_price * self.quantity

    @property
    def cost_basis(self) -> Decimal:
        return self.average_entry_price * self.quantity

    def revalue(self, current_price: Decimal) -> None:
        """Mark the position at a new price and refresh unrealized PnL."""
        self.current_price = current_price
        self.unrealized_pnl = (current_price - self.average_entry_price) * self.quantity
        self.unrealized_pnl_percent = (
            (current_price - self.average_entry_price) / self.average_entry_price * 100
        )


# =============================================================================
# Trade Models
# =============================================================================

class ClosedTrade(BaseModel):
    """Realized result of an entry order closed by an exit trigger.

    Used for win-rate and daily PnL accounting.
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    symbol: str = Field(..., description="Instrument symbol")
    side: OrderSide = Field(..., description="Entry side")
    quantity: int = Field(..., gt=0, description="Trade size")
    entry_price: Decimal = Field(..., gt=0, description="Entry price")
    exit_price: Decimal = Field(..., gt=0, description="Exit price")
    entry_order_id: str = Field(..., description="Entry order ID")
    exit_order_id: str = Field(..., description="Exit order ID")
    close_reason: str = Field(default="", description="Close reason")
    closed_at: datetime = Field(default_factory=utc_now, description="Exit time")

    @property
    def realized_pnl(self) -> Decimal:
        """Gross realized PnL."""
        if self.side == OrderSide.BUY:
            return (self.exit_price - self.entry_price) * self.quantity
        return (self.entry_price - self.exit_price) * self.quantity

    @property
    def realized_pnl_pct(self) -> Decimal:
        entry_value = self.entry_price * self.quantity
        return self.realized_pnl / entry_value * 100

    @property
    def is_win(self) -> bool:
        return self.realized_pnl > 0


# =============================================================================
# Portfolio Model
# =============================================================================

class Portfolio(BaseModel):
    """Simulated account state.

    total_value and total_pnl are derived fields. They are recomputed from
    available_balance and positions by autotrader.core.portfolio after every
    mutation and must never be assigned independently.

    Attributes:
        available_balance: Unallocated cash
        positions: Open positions by symbol (at most one per symbol)
        total_value: available_balance + market value of positions
        total_pnl: Sum of unrealized PnL across positions
        daily_pnl: Realized PnL of exits since the day started
        daily_starting_value: total_value when the current day started
        trading_day: UTC date that daily_pnl refers to
        total_trades: Executed orders (entries and exits)
        win_rate: Winning closed trades / closed trades * 100
        updated_at: Last mutation time
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    available_balance: Decimal = Field(..., description="Available cash")
    positions: Dict[str, Position] = Field(default_factory=dict, description="Positions")

    # Derived
    total_value: Decimal = Field(default=Decimal("0"), description="Total portfolio value")
    total_pnl: Decimal = Field(default=Decimal("0"), description="Unrealized PnL")

    # Daily tracking
    daily_pnl: Decimal = Field(default=Decimal("0"), description="Today's realized PnL")
    daily_starting_value: Decimal = Field(default=Decimal("0"), description="Day start value")
    trading_day: Optional[str] = Field(default=None, description="UTC date (ISO)")

    # Statistics
    total_trades: int = Field(default=0, ge=0, description="Executed orders")
    winning_trades: int = Field(default=0, ge=0, description="Winning closed trades")
    closed_trades: int = Field(default=0, ge=0, description="Closed trades")
    win_rate: Decimal = Field(default=Decimal("0"), description="Win rate %")

    updated_at: datetime = Field(default_factory=utc_now, description="Last update")

    @property
    def positions_value(self) -> Decimal:
        return sum((p.market_value for p in self.positions.values()), Decimal("0"))

    @property
    def exposure_pct(self) -> Decimal:
        """Percentage of portfolio value held in positions."""
        if self.total_value == 0:
            return Decimal("0")
        return self.positions_value / self.total_value * 100


# =============================================================================
# Risk Settings
# =============================================================================

class RiskSettings(BaseModel):
    """Risk configuration used for one evaluation cycle.

    Percentages are expressed in percent units (2.0 == 2%).
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_risk_per_trade_pct: float = Field(default=2.0, gt=0, le=100, description="Risk per trade %")
    max_daily_loss_pct: float = Field(default=5.0, gt=0, le=100, description="Max daily loss %")
    min_confidence_level: float = Field(default=75.0, ge=0, le=100, description="Min confidence")
    auto_trading_enabled: bool = Field(default=False, description="Allow automated orders")
    stop_loss_pct: float = Field(default=3.0, gt=0, lt=100, description="Stop loss distance %")
    take_profit_pct: float = Field(default=6.0, gt=0, lt=100, description="Take profit distance %")
    allowed_symbols: FrozenSet[str] = Field(default_factory=frozenset, description="Tradable symbols")

    @field_validator("allowed_symbols", mode="before")
    @classmethod
    def normalize_symbols(cls, v: Any) -> Any:
        """Accept any iterable (or comma-separated string) of symbols."""
        if isinstance(v, str):
            return frozenset(s.strip() for s in v.split(",") if s.strip())
        return v


# =============================================================================
# Risk Check Model
# =============================================================================

class RiskCheck(BaseModel):
    """Result of running a forecast through the admission gates.

    A failed check is a normal negative result, not an error.

    Attributes:
        passed: True if every gate passed
        reason: Rejection reason (if failed)
        rule_triggered: Name of the gate that rejected
        position_size: Approved quantity
        stop_loss: Stop-loss price for the approved order
        take_profit: Take-profit price for the approved order
        checks_performed: Gates evaluated, in order
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    passed: bool = Field(..., description="Whether the forecast passed")
    reason: Optional[str] = Field(default=None, description="Rejection reason")
    rule_triggered: Optional[str] = Field(default=None, description="Rejecting gate")

    position_size: Optional[int] = Field(default=None, description="Approved size")
    stop_loss: Optional[Decimal] = Field(default=None, description="Stop loss price")
    take_profit: Optional[Decimal] = Field(default=None, description="Take profit price")

    checks_performed: List[str] = Field(default_factory=list, description="Checks performed")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional data")
    timestamp: datetime = Field(default_factory=utc_now, description="Check time")

    @property
    def is_rejected(self) -> bool:
        return not self.passed

    @classmethod
    def approved(cls, **kwargs) -> "RiskCheck":
        """Create an approved risk check result."""
        return cls(passed=True, **kwargs)

    @classmethod
    def rejected(cls, reason: str, **kwargs) -> "RiskCheck":
        """Create a rejected risk check result."""
        return cls(passed=False, reason=reason, **kwargs)


# =============================================================================
# Engine Status
# =============================================================================

class BotStatus(BaseModel):
    """Engine status snapshot.

    health and error_message are only changed by the engine itself.
    """
    is_active: bool = Field(default=False, description="Engine started")
    last_update: datetime = Field(default_factory=utc_now, description="Last update")
    active_prediction_count: int = Field(default=0, ge=0, description="Unexpired forecasts")
    pending_order_count: int = Field(default=0, ge=0, description="Orders in flight")
    health: HealthStatus = Field(default=HealthStatus.HEALTHY, description="Health")
    error_message: Optional[str] = Field(default=None, description="Last fault")

    @model_validator(mode="after")
    def healthy_has_no_error(self) -> "BotStatus":
        if self.health == HealthStatus.HEALTHY and self.error_message:
            raise ValueError("Healthy status cannot carry an error message")
        return self


# =============================================================================
# Utility Functions
# =============================================================================

def create_entry_order(
    forecast: Forecast,
    quantity: int,
    stop_loss: Optional[Decimal] = None,
    take_profit: Optional[Decimal] = None,
    **kwargs
) -> Order:
    """Factory function to create a pending entry order from a forecast.

    Args:
        forecast: Forecast with a BUY or SELL direction
        quantity: Approved quantity
        stop_loss: Stop-loss price
        take_profit: Take-profit price
        **kwargs: Additional order fields

    Returns:
        Pending order at the forecast's current price
    """
    side = forecast.direction.order_side
    if side is None:
        raise ValueError("Cannot create an order from a HOLD forecast")
    return Order(
        symbol=forecast.symbol,
        side=side,
        quantity=quantity,
        price=forecast.current_price,
        source_forecast_id=forecast.id,
        stop_loss=stop_loss,
        take_profit=take_profit,
        **kwargs
    )


def create_exit_order(entry: Order, price: Decimal, reason: str) -> Order:
    """Factory function for the executed opposite-side exit of an entry order."""
    now = utc_now()
    return Order(
        symbol=entry.symbol,
        side=entry.side.opposite,
        quantity=entry.quantity,
        price=price,
        status=OrderStatus.EXECUTED,
        submitted_at=now,
        executed_at=now,
        close_reason=reason,
        metadata={"entry_order_id": entry.id},
    )
