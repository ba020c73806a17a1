"""Forecast providers and the forecast cache.

A ForecastProvider turns a symbol and its recent price history into a
Forecast (or None when it has nothing to say). Providers:

- TechnicalForecastProvider: derives a forecast from the technical signal set
- StaticForecastProvider: serves preset forecasts (simulations and tests)
- FallbackForecastProvider: asks a primary provider and falls back to a
  secondary one when the primary fails or returns nothing

ForecastCache is owned by the caller and injected where needed; there is no
module-level cache.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Generic, Iterable, Optional, Sequence, TypeVar

import structlog

from autotrader.analysis.technicals import SignalAggregator
from autotrader.core.models import (
    Forecast, ForecastDirection, PriceSample, SignalLabel, utc_now
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Forecast horizon durations
TIMEFRAMES: Dict[str, timedelta] = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
}
DEFAULT_TIMEFRAME = "1h"


def timeframe_duration(timeframe: str) -> timedelta:
    """Duration of a forecast horizon (unknown horizons count as 1h)."""
    return TIMEFRAMES.get(timeframe, TIMEFRAMES[DEFAULT_TIMEFRAME])


# =============================================================================
# Forecast Cache
# =============================================================================

@dataclass
class CacheEntry(Generic[T]):
    value: T
    inserted_at: datetime


def is_fresh(entry: CacheEntry, ttl: float, now: datetime) -> bool:
    """True while the entry is younger than ttl seconds."""
    return (now - entry.inserted_at).total_seconds() < ttl


class ForecastCache(Generic[T]):
    """
    Key/value cache with a fixed time-to-live.

    Args:
        ttl: Entry lifetime in seconds
        clock: Callable returning the current aware datetime
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], datetime] = utc_now):
        if ttl < 0:
            raise ValueError("ttl must not be negative")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> Optional[T]:
        """Cached value, or None if missing or stale (stale entries are dropped)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not is_fresh(entry, self.ttl, self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Providers
# =============================================================================

class ForecastProvider(ABC):
    """Source of forecasts."""

    name: str = "provider"

    @abstractmethod
    async def get_forecast(
        self, symbol: str, history: Sequence[PriceSample]
    ) -> Optional[Forecast]:
        """
        Produce a forecast for a symbol.

        Args:
            symbol: Instrument symbol
            history: Recent price samples, oldest first

        Returns:
            Forecast, or None if the provider has no forecast for the symbol
        """


class TechnicalForecastProvider(ForecastProvider):
    """
    Forecast from technical signals alone.

    More bullish than bearish signals gives BUY, more bearish gives SELL,
    a tie gives HOLD.
    """

    name = "technical"

    BASE_CONFIDENCE = 70.0
    CONFIDENCE_PER_SIGNAL = 5.0
    MAX_CONFIDENCE = 90.0
    HOLD_CONFIDENCE = 60.0

    BUY_TARGET = Decimal("1.02")
    SELL_TARGET = Decimal("0.98")

    def __init__(
        self,
        aggregator: Optional[SignalAggregator] = None,
        timeframe: str = DEFAULT_TIMEFRAME
    ):
        self.aggregator = aggregator or SignalAggregator()
        self.timeframe = timeframe

    async def get_forecast(
        self, symbol: str, history: Sequence[PriceSample]
    ) -> Optional[Forecast]:
        if not history:
            return None
        return self.build_forecast(symbol, history)

    def build_forecast(
        self,
        symbol: str,
        history: Sequence[PriceSample],
        now: Optional[datetime] = None
    ) -> Forecast:
        """Build the forecast synchronously from a non-empty history."""
        now = now or utc_now()
        price = history[-1].price
        signals = self.aggregator.compute_signals(history)

        bullish = sum(1 for s in signals if s.label == SignalLabel.BULLISH)
        bearish = sum(1 for s in signals if s.label == SignalLabel.BEARISH)

        if bullish > bearish:
            direction = ForecastDirection.BUY
            confidence = self.BASE_CONFIDENCE + bullish * self.CONFIDENCE_PER_SIGNAL
            target = price * self.BUY_TARGET
        elif bearish > bullish:
            direction = ForecastDirection.SELL
            confidence = self.BASE_CONFIDENCE + bearish * self.CONFIDENCE_PER_SIGNAL
            target = price * self.SELL_TARGET
        else:
            direction = ForecastDirection.HOLD
            confidence = self.HOLD_CONFIDENCE
            target = price

        forecast = Forecast(
            symbol=symbol,
            direction=direction,
            confidence=min(confidence, self.MAX_CONFIDENCE),
            current_price=price,
            target_price=target,
            timeframe=self.timeframe,
            reasoning=f"Technical analysis fallback: {bullish} bullish vs {bearish} bearish signals",
            signals=signals,
            created_at=now,
            expires_at=now + timeframe_duration(self.timeframe),
        )

        logger.debug(
            "forecast_provider.technical_forecast",
            symbol=symbol,
            direction=direction.value,
            confidence=forecast.confidence,
            bullish=bullish,
            bearish=bearish,
        )
        return forecast


class StaticForecastProvider(ForecastProvider):
    """Serves preset forecasts keyed by symbol."""

    name = "static"

    def __init__(self, forecasts: Optional[Iterable[Forecast]] = None):
        self._forecasts: Dict[str, Forecast] = {}
        for forecast in forecasts or ():
            self.set_forecast(forecast)

    def set_forecast(self, forecast: Forecast) -> None:
        self._forecasts[forecast.symbol] = forecast

    def remove_forecast(self, symbol: str) -> None:
        self._forecasts.pop(symbol, None)

    async def get_forecast(
        self, symbol: str, history: Sequence[PriceSample]
    ) -> Optional[Forecast]:
        return self._forecasts.get(symbol)


class FallbackForecastProvider(ForecastProvider):
    """Primary provider with a fallback used on errors or empty answers."""

    name = "fallback"

    def __init__(self, primary: ForecastProvider, fallback: ForecastProvider):
        self.primary = primary
        self.fallback = fallback

    async def get_forecast(
        self, symbol: str, history: Sequence[PriceSample]
    ) -> Optional[Forecast]:
        try:
            forecast = await self.primary.get_forecast(symbol, history)
        except Exception as e:
            logger.warning(
                "forecast_provider.primary_failed",
                provider=self.primary.name,
                symbol=symbol,
                error=str(e),
            )
            forecast = None

        if forecast is not None:
            return forecast

        logger.info(
            "forecast_provider.using_fallback",
            provider=self.fallback.name,
            symbol=symbol,
        )
        return await self.fallback.get_forecast(symbol, history)


class CachedForecastProvider(ForecastProvider):
    """Wraps a provider with a ForecastCache keyed by symbol."""

    name = "cached"

    def __init__(self, provider: ForecastProvider, cache: ForecastCache):
        self.provider = provider
        self.cache = cache

    async def get_forecast(
        self, symbol: str, history: Sequence[PriceSample]
    ) -> Optional[Forecast]:
        cached = self.cache.get(symbol)
        if cached is not None:
            return cached

        forecast = await self.provider.get_forecast(symbol, history)
        if forecast is not None:
            self.cache.put(symbol, forecast)
        return forecast


def enrich_forecast(
    forecast: Forecast,
    history: Sequence[PriceSample],
    aggregator: Optional[SignalAggregator] = None
) -> Forecast:
    """Corroborate a forecast with technical signals from history."""
    aggregator = aggregator or SignalAggregator()
    return aggregator.enrich(forecast, history)


def forecast_summary(forecast: Forecast) -> Dict[str, Any]:
    """Plain dict view of a forecast for logs and CLI output."""
    return {
        "id": forecast.id,
        "symbol": forecast.symbol,
        "direction": forecast.direction.value,
        "confidence": forecast.confidence,
        "current_price": str(forecast.current_price),
        "target_price": str(forecast.target_price) if forecast.target_price is not None else None,
        "timeframe": forecast.timeframe,
        "signals": [f"{s.name}:{s.label.value}" for s in forecast.signals],
        "expires_at": forecast.expires_at.isoformat() if forecast.expires_at else None,
    }
