"""Unit tests for data models."""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from pydantic import ValidationError

from autotrader.core.models import (
    BotStatus, ClosedTrade, Forecast, ForecastDirection, HealthStatus, Order,
    OrderSide, OrderStatus, Position, PriceSample, RiskCheck, RiskSettings,
    Signal, SignalLabel, create_entry_order, create_exit_order
)


# =============================================================================
# Enum Tests
# =============================================================================

class TestEnums:
    """Test enum helpers."""

    def test_order_side_opposite(self):
        assert OrderSide.BUY.opposite == OrderSide.SELL
        assert OrderSide.SELL.opposite == OrderSide.BUY

    def test_forecast_direction_order_side(self):
        assert ForecastDirection.BUY.order_side == OrderSide.BUY
        assert ForecastDirection.SELL.order_side == OrderSide.SELL
        assert ForecastDirection.HOLD.order_side is None

    def test_enum_values(self):
        assert OrderStatus.PENDING.value == "pending"
        assert SignalLabel.BULLISH.value == "bullish"
        assert HealthStatus.ERROR.value == "error"


# =============================================================================
# Market Data / Signal Tests
# =============================================================================

class TestPriceSample:
    """Test PriceSample validation."""

    def test_valid_sample(self):
        sample = PriceSample(price=Decimal("101.5"), volume=Decimal("2000"))
        assert sample.price == Decimal("101.5")
        assert sample.timestamp.tzinfo is not None

    def test_non_positive_price_rejected(self):
        with pytest.raises(ValidationError):
            PriceSample(price=Decimal("0"))

    def test_negative_volume_rejected(self):
        with pytest.raises(ValidationError):
            PriceSample(price=Decimal("1"), volume=Decimal("-1"))

    def test_sample_is_frozen(self):
        sample = PriceSample(price=Decimal("1"))
        with pytest.raises(ValidationError):
            sample.price = Decimal("2")


class TestSignal:
    """Test Signal validation."""

    def test_weight_bounds(self):
        Signal(name="RSI", value=50.0, label=SignalLabel.NEUTRAL, weight=1.0)
        with pytest.raises(ValidationError):
            Signal(name="RSI", value=50.0, label=SignalLabel.NEUTRAL, weight=0.0)
        with pytest.raises(ValidationError):
            Signal(name="RSI", value=50.0, label=SignalLabel.NEUTRAL, weight=1.5)


# =============================================================================
# Forecast Tests
# =============================================================================

class TestForecast:
    """Test Forecast model."""

    def test_forecast_defaults(self):
        forecast = Forecast(
            symbol="AAPL",
            direction=ForecastDirection.BUY,
            confidence=80.0,
            current_price=Decimal("100"),
        )
        assert forecast.timeframe == "1h"
        assert forecast.signals == []
        assert forecast.id
        assert forecast.expires_at is None
        assert not forecast.is_expired()

    @pytest.mark.parametrize("confidence", [-0.1, 100.1])
    def test_confidence_out_of_range(self, confidence):
        with pytest.raises(ValidationError):
            Forecast(
                symbol="AAPL",
                direction=ForecastDirection.BUY,
                confidence=confidence,
                current_price=Decimal("100"),
            )

    def test_non_positive_price_rejected(self):
        with pytest.raises(ValidationError):
            Forecast(
                symbol="AAPL",
                direction=ForecastDirection.BUY,
                confidence=80.0,
                current_price=Decimal("0"),
            )

    def test_empty_symbol_rejected(self):
        with pytest.raises(ValidationError):
            Forecast(
                symbol="",
                direction=ForecastDirection.BUY,
                confidence=80.0,
                current_price=Decimal("1"),
            )

    def test_is_expired(self, make_forecast):
        forecast = make_forecast(expires_in=timedelta(minutes=5))
        now = datetime.now(timezone.utc)
        assert not forecast.is_expired(now)
        assert forecast.is_expired(now + timedelta(minutes=10))

    def test_with_confidence_derives_new_forecast(self, make_forecast):
        forecast = make_forecast(confidence=80.0)
        signal = Signal(name="MACD", value=1.2, label=SignalLabel.BULLISH, weight=0.9)

        derived = forecast.with_confidence(72.5, signals=[signal])

        assert derived.confidence == 72.5
        assert derived.signals == [signal]
        assert derived.id == forecast.id
        assert derived.symbol == forecast.symbol
        # Original untouched
        assert forecast.confidence == 80.0
        assert forecast.signals == []

    def test_forecast_is_frozen(self, make_forecast):
        forecast = make_forecast()
        with pytest.raises(ValidationError):
            forecast.confidence = 10.0


# =============================================================================
# Order Tests
# =============================================================================

class TestOrder:
    """Test Order model and its state machine."""

    def test_order_creation(self):
        order = Order(symbol="AAPL", side=OrderSide.BUY, quantity=10, price=Decimal("100"))
        assert order.status == OrderStatus.PENDING
        assert order.notional == Decimal("1000")
        assert not order.is_terminal
        assert order.stop_loss is None
        assert order.take_profit is None

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            Order(symbol="AAPL", side=OrderSide.BUY, quantity=0, price=Decimal("100"))

    def test_mark_executed(self):
        order = Order(symbol="AAPL", side=OrderSide.BUY, quantity=10, price=Decimal("100"))
        submitted_at = order.submitted_at
        executed_at = submitted_at + timedelta(seconds=2)
        order.mark_executed(fill_price=Decimal("100.5"), executed_at=executed_at)

        assert order.status == OrderStatus.EXECUTED
        assert order.price == Decimal("100.5")
        assert order.is_terminal
        assert order.executed_at == executed_at
        assert order.submitted_at == submitted_at

    def test_mark_failed(self):
        order = Order(symbol="AAPL", side=OrderSide.BUY, quantity=10, price=Decimal("100"))
        submitted_at = order.submitted_at
        order.mark_failed("rejected")

        assert order.status == OrderStatus.FAILED
        assert order.failure_reason == "rejected"
        assert order.submitted_at == submitted_at

    def test_terminal_orders_cannot_transition(self):
        order = Order(symbol="AAPL", side=OrderSide.BUY, quantity=10, price=Decimal("100"))
        order.mark_executed()

        with pytest.raises(ValueError):
            order.mark_failed("late")
        with pytest.raises(ValueError):
            order.mark_executed()

    def test_create_entry_order(self, buy_forecast):
        order = create_entry_order(
            buy_forecast, quantity=5,
            stop_loss=Decimal("97"), take_profit=Decimal("106")
        )
        assert order.side == OrderSide.BUY
        assert order.quantity == 5
        assert order.price == buy_forecast.current_price
        assert order.source_forecast_id == buy_forecast.id
        assert order.status == OrderStatus.PENDING

    def test_create_entry_order_from_hold_raises(self, hold_forecast):
        with pytest.raises(ValueError):
            create_entry_order(hold_forecast, quantity=5)

    def test_create_exit_order(self, make_executed_order):
        entry = make_executed_order(side=OrderSide.BUY, quantity=7)
        exit_order = create_exit_order(entry, Decimal("89"), "stop_loss")

        assert exit_order.side == OrderSide.SELL
        assert exit_order.quantity == 7
        assert exit_order.price == Decimal("89")
        assert exit_order.status == OrderStatus.EXECUTED
        assert exit_order.close_reason == "stop_loss"
        assert exit_order.metadata["entry_order_id"] == entry.id
        assert exit_order.id != entry.id


# =============================================================================
# Position / Trade Tests
# =============================================================================

class TestPosition:
    """Test Position model."""

    def test_revalue(self):
        position = Position(
            symbol="AAPL",
            quantity=10,
            average_entry_price=Decimal("100"),
            current_price=Decimal("100"),
        )
        position.revalue(Decimal("110"))

        assert position.current_price == Decimal("110")
        assert position.unrealized_pnl == Decimal("100")
        assert position.unrealized_pnl_percent == Decimal("10")
        assert position.market_value == Decimal("1100")
        assert position.cost_basis == Decimal("1000")


class TestClosedTrade:
    """Test ClosedTrade realized PnL."""

    def _trade(self, side, entry, exit_price):
        return ClosedTrade(
            symbol="AAPL",
            side=side,
            quantity=10,
            entry_price=Decimal(entry),
            exit_price=Decimal(exit_price),
            entry_order_id="entry",
            exit_order_id="exit",
        )

    def test_buy_trade_pnl(self):
        trade = self._trade(OrderSide.BUY, "100", "111")
        assert trade.realized_pnl == Decimal("110")
        assert trade.realized_pnl_pct == Decimal("11")
        assert trade.is_win

    def test_sell_trade_pnl(self):
        trade = self._trade(OrderSide.SELL, "100", "111")
        assert trade.realized_pnl == Decimal("-110")
        assert not trade.is_win

    def test_flat_trade_is_not_a_win(self):
        assert not self._trade(OrderSide.BUY, "100", "100").is_win


# =============================================================================
# Settings / Risk Check / Status Tests
# =============================================================================

class TestRiskSettings:
    """Test RiskSettings model."""

    def test_defaults(self):
        settings = RiskSettings()
        assert settings.max_risk_per_trade_pct == 2.0
        assert settings.max_daily_loss_pct == 5.0
        assert settings.min_confidence_level == 75.0
        assert settings.auto_trading_enabled is False
        assert settings.stop_loss_pct == 3.0
        assert settings.take_profit_pct == 6.0
        assert settings.allowed_symbols == frozenset()

    def test_symbols_from_comma_separated_string(self):
        settings = RiskSettings(allowed_symbols="AAPL, TSLA,,NVDA")
        assert settings.allowed_symbols == frozenset({"AAPL", "TSLA", "NVDA"})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            RiskSettings(max_leverage=3)

    @pytest.mark.parametrize("field,value", [
        ("max_risk_per_trade_pct", 0),
        ("max_daily_loss_pct", 101),
        ("min_confidence_level", -1),
        ("stop_loss_pct", 100),
    ])
    def test_out_of_range_values(self, field, value):
        with pytest.raises(ValidationError):
            RiskSettings(**{field: value})

    def test_settings_are_frozen(self):
        settings = RiskSettings()
        with pytest.raises(ValidationError):
            settings.auto_trading_enabled = True


class TestRiskCheck:
    """Test RiskCheck helpers."""

    def test_approved(self):
        check = RiskCheck.approved(position_size=10)
        assert check.passed
        assert not check.is_rejected
        assert check.position_size == 10

    def test_rejected(self):
        check = RiskCheck.rejected("too risky", rule_triggered="position_size")
        assert not check.passed
        assert check.is_rejected
        assert check.reason == "too risky"
        assert check.rule_triggered == "position_size"


class TestBotStatus:
    """Test BotStatus model."""

    def test_defaults(self):
        status = BotStatus()
        assert status.is_active is False
        assert status.health == HealthStatus.HEALTHY
        assert status.error_message is None
        assert status.pending_order_count == 0
        assert status.active_prediction_count == 0

    def test_healthy_status_cannot_carry_error(self):
        with pytest.raises(ValidationError):
            BotStatus(health=HealthStatus.HEALTHY, error_message="boom")

    def test_error_status_with_message(self):
        status = BotStatus(health=HealthStatus.ERROR, error_message="boom")
        assert status.error_message == "boom"
