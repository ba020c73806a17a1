"""
Technical Signal Aggregator.

Turns a symbol's price/volume history into five weighted directional
signals and uses them to corroborate (or discount) an external forecast.

Signals, in order:
- RSI(14): momentum oscillator, contrarian (>70 bearish, <30 bullish)
- MACD(12, 26): EMA divergence, sign gives direction
- Moving Averages: price vs MA20 vs MA50 alignment
- Bollinger Bands(20, 2): position inside the volatility band, contrarian
- Volume: latest volume vs trailing-20 average

Fewer than MIN_SAMPLES samples yields no signals at all.
"""

from collections import deque
from decimal import Decimal
from typing import Deque, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import structlog

from autotrader.core.models import (
    DIRECTION_AGREEMENT, Forecast, ForecastDirection, PriceSample, Signal, SignalLabel
)

logger = structlog.get_logger(__name__)


class SignalAggregator:
    """Computes technical signals and blends them into forecast confidence."""

    MIN_SAMPLES = 20

    # Indicator parameters
    RSI_PERIOD = 14
    RSI_OVERBOUGHT = 70.0
    RSI_OVERSOLD = 30.0
    MACD_FAST = 12
    MACD_SLOW = 26
    MA_SHORT = 20
    MA_LONG = 50
    BAND_PERIOD = 20
    BAND_WIDTH = 2.0
    VOLUME_PERIOD = 20
    VOLUME_SURGE = 1.5
    VOLUME_DRY_UP = 0.5

    # Fixed indicator weights
    WEIGHTS = {
        "RSI": 0.8,
        "MACD": 0.9,
        "Moving Averages": 0.7,
        "Bollinger Bands": 0.6,
        "Volume": 0.5,
    }

    # Confidence blend: base * (FLOOR + SPAN * agreement)
    BLEND_FLOOR = 0.7
    BLEND_SPAN = 0.3
    NEUTRAL_AGREEMENT = 0.5

    def compute_signals(self, history: Sequence[PriceSample]) -> List[Signal]:
        """
        Compute the signal set for an oldest-first history.

        Args:
            history: Price samples, oldest first

        Returns:
            Five signals, or an empty list when fewer than MIN_SAMPLES
            samples are available (no corroboration, not an error)
        """
        if len(history) < self.MIN_SAMPLES:
            return []

        prices = pd.Series([float(s.price) for s in history], dtype="float64")
        volumes = pd.Series([float(s.volume) for s in history], dtype="float64")

        return [
            self._rsi(prices),
            self._macd(prices),
            self._moving_averages(prices),
            self._bollinger_bands(prices),
            self._volume(volumes),
        ]

    def enhance_confidence(
        self,
        base_confidence: float,
        direction: ForecastDirection,
        signals: Sequence[Signal],
    ) -> float:
        """
        Blend a base confidence with the weight fraction of agreeing signals.

        confidence = min(100, base * (0.7 + 0.3 * agreement)), rounded to 2dp.
        With no signal weight the agreement defaults to 0.5.
        """
        expected = DIRECTION_AGREEMENT[ForecastDirection(direction)]

        total_weight = sum(s.weight for s in signals)
        aligned_weight = sum(s.weight for s in signals if s.label == expected)

        if total_weight > 0:
            agreement = aligned_weight / total_weight
        else:
            agreement = self.NEUTRAL_AGREEMENT

        enhanced = base_confidence * (self.BLEND_FLOOR + self.BLEND_SPAN * agreement)
        enhanced = min(100.0, max(0.0, enhanced))
        return round(enhanced, 2)

    def enrich(self, forecast: Forecast, history: Sequence[PriceSample]) -> Forecast:
        """Derive a forecast carrying computed signals and adjusted confidence."""
        signals = self.compute_signals(history)
        confidence = self.enhance_confidence(forecast.confidence, forecast.direction, signals)

        logger.debug(
            "aggregator.forecast_enriched",
            symbol=forecast.symbol,
            direction=forecast.direction.value,
            base_confidence=forecast.confidence,
            confidence=confidence,
            signals=len(signals),
        )
        return forecast.with_confidence(confidence, signals=signals)

    # === Indicators ===

    def _signal(self, name: str, value: float, label: SignalLabel) -> Signal:
        return Signal(name=name, value=float(value), label=label, weight=self.WEIGHTS[name])

    def _rsi(self, prices: pd.Series) -> Signal:
        """RSI over the trailing RSI_PERIOD price changes."""
        if len(prices) < self.RSI_PERIOD + 1:
            return self._signal("RSI", 50.0, SignalLabel.NEUTRAL)

        deltas = prices.diff().iloc[-self.RSI_PERIOD:]
        avg_gain = deltas.clip(lower=0).sum() / self.RSI_PERIOD
        avg_loss = (-deltas.clip(upper=0)).sum() / self.RSI_PERIOD

        if avg_loss == 0:
            rsi = 100.0
        else:
            rs = avg_gain / avg_loss
            rsi = 100.0 - (100.0 / (1.0 + rs))

        label = SignalLabel.NEUTRAL
        if rsi > self.RSI_OVERBOUGHT:
            label = SignalLabel.BEARISH
        elif rsi < self.RSI_OVERSOLD:
            label = SignalLabel.BULLISH

        return self._signal("RSI", rsi, label)

    def _macd(self, prices: pd.Series) -> Signal:
        """Fast EMA minus slow EMA, both seeded with the first sample."""
        macd = self._ema(prices, self.MACD_FAST) - self._ema(prices, self.MACD_SLOW)

        label = SignalLabel.NEUTRAL
        if macd > 0:
            label = SignalLabel.BULLISH
        elif macd < 0:
            label = SignalLabel.BEARISH

        return self._signal("MACD", macd, label)

    def _moving_averages(self, prices: pd.Series) -> Signal:
        current = prices.iloc[-1]
        ma_short = self._sma(prices, self.MA_SHORT)
        ma_long = self._sma(prices, self.MA_LONG)

        label = SignalLabel.NEUTRAL
        if current > ma_short > ma_long:
            label = SignalLabel.BULLISH
        elif current < ma_short < ma_long:
            label = SignalLabel.BEARISH

        deviation = (current / ma_short - 1.0) * 100.0 if ma_short else 0.0
        return self._signal("Moving Averages", deviation, label)

    def _bollinger_bands(self, prices: pd.Series) -> Signal:
        current = prices.iloc[-1]
        window = prices.iloc[-self.BAND_PERIOD:]
        middle = window.mean()
        std_dev = float(np.std(window.to_numpy()))

        # Flat window: no band to sit in
        if std_dev == 0:
            return self._signal("Bollinger Bands", 50.0, SignalLabel.NEUTRAL)

        upper = middle + self.BAND_WIDTH * std_dev
        lower = middle - self.BAND_WIDTH * std_dev

        label = SignalLabel.NEUTRAL
        if current <= lower:
            label = SignalLabel.BULLISH
        elif current >= upper:
            label = SignalLabel.BEARISH

        position = (current - lower) / (upper - lower) * 100.0
        return self._signal("Bollinger Bands", position, label)

    def _volume(self, volumes: pd.Series) -> Signal:
        average = volumes.iloc[-self.VOLUME_PERIOD:].mean()
        ratio = volumes.iloc[-1] / average if average > 0 else 1.0

        label = SignalLabel.NEUTRAL
        if ratio > self.VOLUME_SURGE:
            label = SignalLabel.BULLISH
        elif ratio < self.VOLUME_DRY_UP:
            label = SignalLabel.BEARISH

        return self._signal("Volume", ratio, label)

    @staticmethod
    def _ema(prices: pd.Series, period: int) -> float:
        """EMA with smoothing 2/(period+1), seeded with the first price."""
        return float(prices.ewm(span=period, adjust=False).mean().iloc[-1])

    @staticmethod
    def _sma(prices: pd.Series, period: int) -> float:
        """Mean of the last `period` prices (all of them if fewer)."""
        return float(prices.iloc[-period:].mean())


class PriceHistory:
    """Fixed-size rolling price window per symbol, oldest first."""

    def __init__(self, max_samples: int = 100):
        if max_samples < SignalAggregator.MIN_SAMPLES:
            raise ValueError(
                f"max_samples must be at least {SignalAggregator.MIN_SAMPLES}"
            )
        self.max_samples = max_samples
        self._samples: Dict[str, Deque[PriceSample]] = {}

    def append(self, symbol: str, sample: PriceSample) -> None:
        if symbol not in self._samples:
            self._samples[symbol] = deque(maxlen=self.max_samples)
        self._samples[symbol].append(sample)

    def extend(self, symbol: str, samples: Sequence[PriceSample]) -> None:
        for sample in samples:
            self.append(symbol, sample)

    def get(self, symbol: str) -> List[PriceSample]:
        """Copy of the symbol's window (empty if unknown)."""
        return list(self._samples.get(symbol, ()))

    def latest_price(self, symbol: str) -> Optional[Decimal]:
        samples = self._samples.get(symbol)
        if not samples:
            return None
        return samples[-1].price

    def is_ready(self, symbol: str) -> bool:
        """True once the symbol has enough samples for indicators."""
        return len(self._samples.get(symbol, ())) >= SignalAggregator.MIN_SAMPLES

    @property
    def symbols(self) -> List[str]:
        return list(self._samples.keys())

    def __len__(self) -> int:
        return len(self._samples)
