"""Technical analysis: indicator signals and rolling price history."""

from autotrader.analysis.technicals import PriceHistory, SignalAggregator

__all__ = [
    'SignalAggregator',
    'PriceHistory',
]
