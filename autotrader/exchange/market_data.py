"""Market data feeds.

A MarketDataFeed returns the latest PriceSample for each requested symbol.
RandomWalkFeed generates prices for simulations.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional

import numpy as np
import structlog

from autotrader.core.models import PriceSample, utc_now

logger = structlog.get_logger(__name__)


class MarketDataFeed(ABC):
    """Source of current prices."""

    @abstractmethod
    async def get_samples(self, symbols: Iterable[str]) -> Dict[str, PriceSample]:
        """Latest sample per symbol; symbols without data are left out."""


class RandomWalkFeed(MarketDataFeed):
    """
    Geometric random walk per symbol.

    Each call moves every requested symbol by a normally distributed
    return with standard deviation `volatility` and draws a volume around
    `base_volume`.
    """

    DEFAULT_PRICE = Decimal("100")

    def __init__(
        self,
        base_prices: Optional[Mapping[str, Decimal]] = None,
        volatility: float = 0.01,
        base_volume: float = 10000.0,
        seed: Optional[int] = None
    ):
        self._prices: Dict[str, Decimal] = {
            symbol: Decimal(str(price)) for symbol, price in (base_prices or {}).items()
        }
        self.volatility = volatility
        self.base_volume = base_volume
        self._rng = np.random.default_rng(seed)

    def last_price(self, symbol: str) -> Optional[Decimal]:
        return self._prices.get(symbol)

    async def get_samples(self, symbols: Iterable[str]) -> Dict[str, PriceSample]:
        now = utc_now()
        samples: Dict[str, PriceSample] = {}

        for symbol in symbols:
            previous = self._prices.get(symbol, self.DEFAULT_PRICE)
            change = float(self._rng.normal(0.0, self.volatility))
            price = (previous * Decimal(str(1.0 + change))).quantize(Decimal("0.01"))
            if price <= 0:
                price = Decimal("0.01")
            volume = Decimal(str(round(self.base_volume * float(self._rng.uniform(0.3, 2.0)))))

            self._prices[symbol] = price
            samples[symbol] = PriceSample(price=price, volume=volume, timestamp=now)

        logger.debug("market_data.tick", symbols=len(samples))
        return samples
