"""Execution venues and market data feeds for the auto trader."""

from autotrader.exchange.market_data import MarketDataFeed, RandomWalkFeed
from autotrader.exchange.venue import (
    ExecutionReport,
    ExecutionVenue,
    SimulatedVenue,
    create_simulated_venue,
)

__all__ = [
    "ExecutionReport",
    "ExecutionVenue",
    "MarketDataFeed",
    "RandomWalkFeed",
    "SimulatedVenue",
    "create_simulated_venue",
]
