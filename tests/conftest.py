"""Pytest fixtures and utilities for the auto trader test suite."""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from autotrader.analysis.technicals import SignalAggregator
from autotrader.core.engine import TradingEngine
from autotrader.core.models import (
    Forecast, ForecastDirection, Order, OrderSide, Portfolio, PriceSample,
    RiskSettings
)
from autotrader.core.portfolio import create_portfolio
from autotrader.exchange.venue import SimulatedVenue
from autotrader.risk.risk_manager import RiskManager


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def risk_settings():
    """Settings with auto trading on and two tradable symbols."""
    return RiskSettings(
        max_risk_per_trade_pct=2.0,
        max_daily_loss_pct=5.0,
        min_confidence_level=75.0,
        auto_trading_enabled=True,
        stop_loss_pct=3.0,
        take_profit_pct=6.0,
        allowed_symbols={"AAPL", "TSLA"},
    )


# =============================================================================
# Forecast Fixtures
# =============================================================================

@pytest.fixture
def buy_forecast():
    """High-confidence BUY forecast for AAPL at 100."""
    return create_test_forecast(direction=ForecastDirection.BUY, confidence=85.0)


@pytest.fixture
def sell_forecast():
    """High-confidence SELL forecast for AAPL at 100."""
    return create_test_forecast(direction=ForecastDirection.SELL, confidence=85.0)


@pytest.fixture
def hold_forecast():
    """High-confidence HOLD forecast for AAPL at 100."""
    return create_test_forecast(direction=ForecastDirection.HOLD, confidence=95.0)


# =============================================================================
# Market Data Fixtures
# =============================================================================

@pytest.fixture
def rising_history():
    """60 samples rising by 1 per step (100 -> 159), constant volume."""
    return create_price_history([100 + i for i in range(60)])


@pytest.fixture
def falling_history():
    """60 samples falling by 1 per step (160 -> 101), constant volume."""
    return create_price_history([160 - i for i in range(60)])


@pytest.fixture
def short_history():
    """Too few samples for any indicator."""
    return create_price_history([100 + i for i in range(10)])


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def portfolio():
    """Fresh portfolio funded with 100000."""
    return create_portfolio(Decimal("100000"))


@pytest.fixture
def risk_manager():
    """Create a fresh risk manager for testing."""
    return RiskManager()


@pytest.fixture
def aggregator():
    return SignalAggregator()


@pytest.fixture
def venue():
    """Simulated venue without latency."""
    return SimulatedVenue(latency=0)


@pytest.fixture
def engine(venue, risk_settings):
    """Trading engine with 100000 balance and an instant venue."""
    return TradingEngine(
        venue=venue,
        settings=risk_settings,
        initial_balance=Decimal("100000"),
        execution_timeout=1.0,
    )


# =============================================================================
# Helper Functions
# =============================================================================

def create_test_forecast(
    symbol: str = "AAPL",
    direction: ForecastDirection = ForecastDirection.BUY,
    confidence: float = 85.0,
    price: Decimal = Decimal("100"),
    expires_in: Optional[timedelta] = None,
) -> Forecast:
    """Helper to create a forecast."""
    now = datetime.now(timezone.utc)
    return Forecast(
        symbol=symbol,
        direction=direction,
        confidence=confidence,
        current_price=price,
        target_price=price,
        reasoning="test forecast",
        created_at=now,
        expires_at=now + expires_in if expires_in is not None else None,
    )


def create_price_history(
    prices: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
) -> List[PriceSample]:
    """Helper to build an oldest-first history from raw prices."""
    volumes = volumes if volumes is not None else [1000] * len(prices)
    start = datetime.now(timezone.utc) - timedelta(minutes=len(prices))
    return [
        PriceSample(
            price=Decimal(str(price)),
            volume=Decimal(str(volume)),
            timestamp=start + timedelta(minutes=i),
        )
        for i, (price, volume) in enumerate(zip(prices, volumes))
    ]


def create_executed_order(
    symbol: str = "AAPL",
    side: OrderSide = OrderSide.BUY,
    quantity: int = 10,
    price: Decimal = Decimal("100"),
    **kwargs
) -> Order:
    """Helper to create an order already marked EXECUTED."""
    order = Order(symbol=symbol, side=side, quantity=quantity, price=price, **kwargs)
    order.mark_executed()
    return order


def assert_portfolio_consistent(portfolio: Portfolio):
    """total_value and total_pnl must match balance and positions exactly."""
    positions_value = sum(
        (p.quantity * p.current_price for p in portfolio.positions.values()), Decimal("0")
    )
    total_pnl = sum((p.unrealized_pnl for p in portfolio.positions.values()), Decimal("0"))
    assert portfolio.total_value == portfolio.available_balance + positions_value
    assert portfolio.total_pnl == total_pnl


# =============================================================================
# Helper Fixtures
# =============================================================================

@pytest.fixture
def make_forecast():
    return create_test_forecast


@pytest.fixture
def make_history():
    return create_price_history


@pytest.fixture
def make_executed_order():
    return create_executed_order


@pytest.fixture
def check_portfolio():
    return assert_portfolio_consistent


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        # Add unit marker by default
        if not any(marker.name in ["unit", "integration"] for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)
