"""Admission gates and position sizing for forecast-driven orders.

Every forecast passes through a priority-ordered list of gates before an
order may be created. A failing gate is a normal negative result: it is
returned as a rejected RiskCheck and logged, never raised.

Gates (in priority order):
1. signal_confidence   - confidence below the configured minimum
2. auto_trading        - automated trading switched off
3. allowed_symbol      - symbol not in the tradable set
4. hold_direction      - neutral forecasts never produce orders
5. daily_loss_limit    - today's realized loss reached the daily limit
6. position_size       - computed size is zero

Sizing takes the smaller of a risk-based size (loss at the stop is at most
max_risk_per_trade_pct of the available balance) and a notional cap of
MAX_NOTIONAL_PCT of the available balance.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Callable, Dict, List, Optional

import structlog

from autotrader.core.models import (
    Forecast, ForecastDirection, OrderSide, Portfolio, RiskCheck, RiskSettings, utc_now
)

logger = structlog.get_logger(__name__)


@dataclass
class RiskRule:
    """Individual admission gate.

    Attributes:
        name: Unique identifier for the gate
        check_fn: Function that performs the validation
        priority: Lower numbers are checked first
    """
    name: str
    check_fn: Callable[..., RiskCheck]
    priority: int = 100


class RiskManager:
    """
    Forecast admission pipeline.

    Gates short-circuit on the first failure. The approved RiskCheck carries
    the computed position size together with the stop-loss and take-profit
    prices for the order.
    """

    # Hard per-trade notional cap (fraction of available balance)
    MAX_NOTIONAL_PCT = Decimal("0.10")

    # Rejected forecasts kept for inspection
    MAX_REJECTION_LOG = 1000

    def __init__(self):
        self._risk_rules: List[RiskRule] = []
        self._register_default_rules()

        self.rejected_forecasts: List[Dict[str, Any]] = []

    def _register_default_rules(self):
        """Register the default gates in priority order."""
        self._risk_rules = [
            RiskRule(name="signal_confidence", check_fn=self._check_signal_confidence, priority=1),
            RiskRule(name="auto_trading", check_fn=self._check_auto_trading, priority=2),
            RiskRule(name="allowed_symbol", check_fn=self._check_allowed_symbol, priority=3),
            RiskRule(name="hold_direction", check_fn=self._check_hold_direction, priority=4),
            RiskRule(name="daily_loss_limit", check_fn=self._check_daily_loss_limit, priority=5),
            RiskRule(name="position_size", check_fn=self._check_position_size, priority=6),
        ]
        self._risk_rules.sort(key=lambda r: r.priority)

    @property
    def rule_names(self) -> List[str]:
        return [rule.name for rule in self._risk_rules]

    def check_forecast(
        self,
        forecast: Forecast,
        settings: RiskSettings,
        portfolio: Portfolio
    ) -> RiskCheck:
        """
        Run a forecast through every gate.

        Args:
            forecast: Forecast to admit
            settings: Risk settings for this evaluation
            portfolio: Current portfolio state (read only)

        Returns:
            Approved RiskCheck with size and exit prices, or the rejection
            of the first failing gate
        """
        checks_performed: List[str] = []
        approval: Dict[str, Any] = {}

        for rule in self._risk_rules:
            checks_performed.append(rule.name)
            try:
                result = rule.check_fn(forecast, settings, portfolio)
            except Exception as e:
                logger.error(
                    "risk_manager.rule_error",
                    rule=rule.name,
                    error=str(e),
                    symbol=forecast.symbol
                )
                # A broken gate blocks
                return RiskCheck.rejected(
                    reason=f"Risk rule '{rule.name}' encountered an error: {e}",
                    rule_triggered=rule.name,
                    checks_performed=checks_performed,
                    metadata={"risk_level": "critical", "error": str(e)},
                )

            if not result.passed:
                self._log_forecast_rejected(forecast, rule.name, result.reason or "")
                logger.warning(
                    "risk_manager.forecast_rejected",
                    symbol=forecast.symbol,
                    direction=forecast.direction.value,
                    confidence=forecast.confidence,
                    rule=rule.name,
                    reason=result.reason,
                )
                return RiskCheck.rejected(
                    reason=result.reason or rule.name,
                    rule_triggered=rule.name,
                    checks_performed=checks_performed,
                    metadata=result.metadata,
                )

            if result.position_size is not None:
                approval = {
                    "position_size": result.position_size,
                    "stop_loss": result.stop_loss,
                    "take_profit": result.take_profit,
                }

        logger.info(
            "risk_manager.forecast_approved",
            symbol=forecast.symbol,
            direction=forecast.direction.value,
            confidence=forecast.confidence,
            position_size=approval.get("position_size"),
            stop_loss=str(approval.get("stop_loss")),
            take_profit=str(approval.get("take_profit")),
        )
        return RiskCheck.approved(checks_performed=checks_performed, **approval)

    # === Gate Implementations ===

    def _check_signal_confidence(
        self, forecast: Forecast, settings: RiskSettings, portfolio: Portfolio
    ) -> RiskCheck:
        """Check if forecast confidence meets the minimum threshold."""
        if forecast.confidence < settings.min_confidence_level:
            return RiskCheck.rejected(
                reason=(
                    f"Confidence {forecast.confidence:.2f} below minimum "
                    f"{settings.min_confidence_level:.2f}"
                ),
                metadata={
                    "confidence": forecast.confidence,
                    "minimum": settings.min_confidence_level,
                },
            )
        return RiskCheck.approved()

    def _check_auto_trading(
        self, forecast: Forecast, settings: RiskSettings, portfolio: Portfolio
    ) -> RiskCheck:
        if not settings.auto_trading_enabled:
            return RiskCheck.rejected(reason="Auto trading is disabled")
        return RiskCheck.approved()

    def _check_allowed_symbol(
        self, forecast: Forecast, settings: RiskSettings, portfolio: Portfolio
    ) -> RiskCheck:
        if forecast.symbol not in settings.allowed_symbols:
            return RiskCheck.rejected(
                reason=f"Symbol {forecast.symbol} is not in the allowed symbols",
                metadata={"allowed_symbols": sorted(settings.allowed_symbols)},
            )
        return RiskCheck.approved()

    def _check_hold_direction(
        self, forecast: Forecast, settings: RiskSettings, portfolio: Portfolio
    ) -> RiskCheck:
        if forecast.direction == ForecastDirection.HOLD:
            return RiskCheck.rejected(reason="Hold forecast, no order")
        return RiskCheck.approved()

    def _check_daily_loss_limit(
        self, forecast: Forecast, settings: RiskSettings, portfolio: Portfolio
    ) -> RiskCheck:
        """Check if today's realized loss has reached the daily limit."""
        daily_loss_pct = self._calculate_daily_loss_pct(portfolio)
        max_daily_loss = Decimal(str(settings.max_daily_loss_pct))

        if daily_loss_pct >= max_daily_loss:
            return RiskCheck.rejected(
                reason=f"Daily loss limit reached: {daily_loss_pct:.2f}% (max: {max_daily_loss}%)",
                metadata={
                    "daily_loss_pct": float(daily_loss_pct),
                    "limit": float(max_daily_loss),
                },
            )
        return RiskCheck.approved()

    def _check_position_size(
        self, forecast: Forecast, settings: RiskSettings, portfolio: Portfolio
    ) -> RiskCheck:
        """Compute exit prices and size; zero size rejects."""
        side = forecast.direction.order_side
        price = forecast.current_price

        stop_loss = self.calculate_stop_loss(price, side, settings)
        take_profit = self.calculate_take_profit(price, side, settings)
        size = self.calculate_position_size(
            portfolio.available_balance, price, stop_loss, settings
        )

        if size <= 0:
            return RiskCheck.rejected(
                reason="Computed position size is zero",
                metadata={
                    "available_balance": str(portfolio.available_balance),
                    "price": str(price),
                    "stop_loss": str(stop_loss),
                },
            )
        return RiskCheck.approved(
            position_size=size, stop_loss=stop_loss, take_profit=take_profit
        )

    # === Pricing and Sizing ===

    def calculate_stop_loss(
        self, price: Decimal, side: OrderSide, settings: RiskSettings
    ) -> Decimal:
        """Stop below entry for buys, above entry for sells."""
        stop_pct = Decimal(str(settings.stop_loss_pct)) / 100
        if side == OrderSide.BUY:
            return price * (Decimal("1") - stop_pct)
        return price * (Decimal("1") + stop_pct)

    def calculate_take_profit(
        self, price: Decimal, side: OrderSide, settings: RiskSettings
    ) -> Decimal:
        """Target above entry for buys, below entry for sells."""
        tp_pct = Decimal(str(settings.take_profit_pct)) / 100
        if side == OrderSide.BUY:
            return price * (Decimal("1") + tp_pct)
        return price * (Decimal("1") - tp_pct)

    def calculate_position_size(
        self,
        available_balance: Decimal,
        price: Decimal,
        stop_loss: Decimal,
        settings: RiskSettings
    ) -> int:
        """
        Whole-unit position size.

        risk_based = floor(balance * risk% / |price - stop|)
        value_based = floor(balance * MAX_NOTIONAL_PCT / price)

        Args:
            available_balance: Cash available for the trade
            price: Entry price
            stop_loss: Stop-loss price
            settings: Risk settings (max_risk_per_trade_pct)

        Returns:
            min(risk_based, value_based), or 0 when either is undefined
        """
        if available_balance <= 0 or price <= 0:
            return 0

        stop_distance = abs(price - stop_loss)
        if stop_distance == 0:
            logger.warning("risk_manager.zero_stop_distance", price=str(price))
            return 0

        risk_amount = available_balance * Decimal(str(settings.max_risk_per_trade_pct)) / 100
        risk_based = int((risk_amount / stop_distance).to_integral_value(rounding=ROUND_FLOOR))
        value_based = int(
            (available_balance * self.MAX_NOTIONAL_PCT / price).to_integral_value(rounding=ROUND_FLOOR)
        )
        size = max(0, min(risk_based, value_based))

        logger.debug(
            "risk_manager.position_size_calculated",
            available_balance=str(available_balance),
            price=str(price),
            stop_loss=str(stop_loss),
            risk_amount=str(risk_amount),
            risk_based=risk_based,
            value_based=value_based,
            size=size,
        )
        return size

    # === Reporting ===

    def get_risk_report(self, portfolio: Portfolio, settings: RiskSettings) -> Dict[str, Any]:
        """Summarize limits and current usage."""
        return {
            "pnl": {
                "daily_pnl": str(portfolio.daily_pnl),
                "daily_loss_pct": float(self._calculate_daily_loss_pct(portfolio)),
                "total_pnl": str(portfolio.total_pnl),
            },
            "limits": {
                "max_risk_per_trade_pct": settings.max_risk_per_trade_pct,
                "max_daily_loss_pct": settings.max_daily_loss_pct,
                "min_confidence_level": settings.min_confidence_level,
                "auto_trading_enabled": settings.auto_trading_enabled,
            },
            "portfolio": {
                "total_value": str(portfolio.total_value),
                "available_balance": str(portfolio.available_balance),
                "exposure_pct": float(portfolio.exposure_pct),
            },
            "statistics": {
                "rejected_forecasts": len(self.rejected_forecasts),
            },
        }

    # === Private Helper Methods ===

    def _calculate_daily_loss_pct(self, portfolio: Portfolio) -> Decimal:
        """Today's realized loss as a percentage of the day's starting value."""
        if portfolio.daily_starting_value <= 0 or portfolio.daily_pnl >= 0:
            return Decimal("0")
        return abs(portfolio.daily_pnl) / portfolio.daily_starting_value * 100

    def _log_forecast_rejected(self, forecast: Forecast, rule: str, reason: str):
        """Keep a rejected forecast for analysis."""
        self.rejected_forecasts.append({
            "timestamp": utc_now().isoformat(),
            "forecast_id": forecast.id,
            "symbol": forecast.symbol,
            "direction": forecast.direction.value,
            "confidence": forecast.confidence,
            "rule_triggered": rule,
            "reason": reason,
        })

        if len(self.rejected_forecasts) > self.MAX_REJECTION_LOG:
            self.rejected_forecasts = self.rejected_forecasts[-self.MAX_REJECTION_LOG:]


# === Convenience Functions ===

def create_risk_manager() -> RiskManager:
    """Factory function to create a RiskManager instance."""
    return RiskManager()
