"""Forecast providers and caching."""

from autotrader.forecast.provider import (
    CacheEntry,
    CachedForecastProvider,
    FallbackForecastProvider,
    ForecastCache,
    ForecastProvider,
    StaticForecastProvider,
    TechnicalForecastProvider,
    enrich_forecast,
    forecast_summary,
    is_fresh,
    timeframe_duration,
)

__all__ = [
    'CacheEntry',
    'CachedForecastProvider',
    'FallbackForecastProvider',
    'ForecastCache',
    'ForecastProvider',
    'StaticForecastProvider',
    'TechnicalForecastProvider',
    'enrich_forecast',
    'forecast_summary',
    'is_fresh',
    'timeframe_duration',
]
