"""Portfolio & order engine - turns forecasts into simulated orders."""
import asyncio
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog
from pydantic import ValidationError

from autotrader.analysis.technicals import PriceHistory, SignalAggregator
from autotrader.core import portfolio as accounting
from autotrader.core.config import runtime_config, trading_config
from autotrader.core.exceptions import ExecutionFailedError, InvalidInputError
from autotrader.core.models import (
    BotStatus, ClosedTrade, Forecast, HealthStatus, Order, OrderSide, OrderStatus,
    Portfolio, PriceSample, RiskSettings, create_entry_order, create_exit_order, utc_now
)
from autotrader.exchange.market_data import MarketDataFeed
from autotrader.exchange.venue import ExecutionReport, ExecutionVenue, SimulatedVenue
from autotrader.forecast.provider import ForecastProvider
from autotrader.risk.risk_manager import RiskManager

logger = structlog.get_logger(__name__)


class TradingEngine:
    """
    Forecast-driven order engine.

    Responsibilities:
    - Runs forecasts through the risk manager's admission gates
    - Submits approved orders to the execution venue
    - Owns the simulated portfolio and keeps its derived fields consistent
    - Fires stop-loss / take-profit exits on price updates
    - Reports health through BotStatus

    All portfolio mutations run synchronously on the event loop. The venue
    call inside submit() is the only await between admission and
    accounting, so mutations never interleave. While a BUY is in flight its
    notional is reserved, and admission sizes against the balance net of
    reservations.
    """

    def __init__(
        self,
        venue: Optional[ExecutionVenue] = None,
        risk_manager: Optional[RiskManager] = None,
        aggregator: Optional[SignalAggregator] = None,
        settings: Optional[RiskSettings] = None,
        initial_balance: Optional[Decimal] = None,
        execution_timeout: Optional[float] = None,
        provider: Optional[ForecastProvider] = None,
        market_data: Optional[MarketDataFeed] = None,
        price_history: Optional[PriceHistory] = None,
        poll_interval: Optional[float] = None,
    ):
        self.venue = venue or SimulatedVenue(latency=runtime_config.execution_latency_seconds)
        self.risk_manager = risk_manager or RiskManager()
        self.aggregator = aggregator or SignalAggregator()
        self.provider = provider
        self.market_data = market_data
        self.price_history = price_history or PriceHistory(runtime_config.price_history_size)

        self.settings: RiskSettings = settings or trading_config.to_risk_settings()
        self.execution_timeout = (
            execution_timeout if execution_timeout is not None
            else runtime_config.execution_timeout_seconds
        )
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else runtime_config.poll_interval_seconds
        )

        balance = initial_balance if initial_balance is not None else runtime_config.initial_balance_decimal
        if balance <= 0:
            raise InvalidInputError("initial_balance must be positive")

        # State
        self.portfolio: Portfolio = accounting.create_portfolio(Decimal(str(balance)))
        self.status = BotStatus()
        self.active_orders: Dict[str, Order] = {}
        self.trade_history: List[Order] = []
        self.failed_orders: List[Order] = []
        self.closed_trades: List[ClosedTrade] = []
        self._latest_forecasts: Dict[str, Forecast] = {}
        self._in_flight = 0
        self._reserved = Decimal("0")

        # Control
        self._running = False
        self._main_task: Optional[asyncio.Task] = None

    # === Lifecycle ===

    async def start(self, poll: bool = True):
        """Activate the engine and reset health.

        Args:
            poll: Start the polling loop when a provider and a market data
                feed are configured
        """
        logger.info("engine.starting")

        self._running = True
        self.status.is_active = True
        self.status.error_message = None
        self.status.health = HealthStatus.HEALTHY
        self._touch()

        if poll and self.provider is not None and self.market_data is not None:
            self._main_task = asyncio.create_task(self._main_loop())

        logger.info(
            "engine.started",
            balance=str(self.portfolio.available_balance),
            auto_trading_enabled=self.settings.auto_trading_enabled,
            allowed_symbols=sorted(self.settings.allowed_symbols),
            polling=self._main_task is not None,
        )

    async def stop(self):
        """Deactivate the engine and stop the polling loop."""
        logger.info("engine.stopping")
        self._running = False
        self.status.is_active = False
        self._touch()

        if self._main_task:
            self._main_task.cancel()
            try:
                await self._main_task
            except asyncio.CancelledError:
                pass
            self._main_task = None

        logger.info("engine.stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _main_loop(self):
        """Polling loop: one cycle every poll_interval seconds."""
        while self._running:
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("engine.loop_error", error=str(e))
                self._set_error(f"Polling cycle failed: {e}")
            await asyncio.sleep(self.poll_interval)

    async def run_cycle(self) -> List[Order]:
        """
        One polling cycle.

        Fetches prices, updates history, marks to market, fires exits and
        then asks the provider for a forecast per allowed symbol.

        Returns:
            Orders created in this cycle (exits first, then entries)
        """
        if self.provider is None or self.market_data is None:
            raise InvalidInputError("run_cycle needs a forecast provider and a market data feed")

        symbols = sorted(self.settings.allowed_symbols)
        samples = await self.market_data.get_samples(symbols)
        for symbol, sample in samples.items():
            self.price_history.append(symbol, sample)

        prices = {symbol: sample.price for symbol, sample in samples.items()}
        self.mark_to_market(prices)
        orders = self.scan_exit_triggers(prices)

        for symbol in symbols:
            history = self.price_history.get(symbol)
            try:
                forecast = await self.provider.get_forecast(symbol, history)
            except Exception as e:
                logger.error("engine.forecast_error", symbol=symbol, error=str(e))
                continue
            if forecast is None:
                continue

            order = await self.process_forecast(forecast, history)
            if order is not None:
                orders.append(order)

        return orders

    # === Forecast Processing ===

    async def process_forecast(
        self,
        forecast: Forecast,
        history: Optional[Sequence[PriceSample]] = None
    ) -> Optional[Order]:
        """Corroborate a forecast with technical signals, then evaluate it."""
        if history is None:
            history = self.price_history.get(forecast.symbol)

        try:
            enriched = self.aggregator.enrich(forecast, history)
        except Exception as e:
            logger.error("engine.enrichment_error", symbol=forecast.symbol, error=str(e))
            self._set_error(f"Signal aggregation failed for {forecast.symbol}: {e}")
            return None

        return await self.evaluate(enriched)

    async def evaluate(
        self,
        forecast: Forecast,
        settings: Optional[RiskSettings] = None
    ) -> Optional[Order]:
        """
        Run a forecast through the admission gates and submit the order.

        Args:
            forecast: Forecast to evaluate
            settings: Settings for this evaluation only (defaults to the
                engine's current settings)

        Returns:
            The submitted order (EXECUTED or FAILED), or None when rejected
        """
        if not isinstance(forecast, Forecast):
            raise InvalidInputError(f"Expected a Forecast, got {type(forecast).__name__}")

        settings = settings or self.settings
        self._latest_forecasts[forecast.symbol] = forecast

        logger.info(
            "engine.forecast_received",
            forecast_id=forecast.id,
            symbol=forecast.symbol,
            direction=forecast.direction.value,
            confidence=forecast.confidence,
        )

        try:
            accounting.roll_daily_pnl(self.portfolio)
            risk_check = self.risk_manager.check_forecast(
                forecast, settings, self._sizing_view()
            )
        except Exception as e:
            logger.error("engine.evaluation_error", symbol=forecast.symbol, error=str(e))
            self._set_error(f"Evaluation failed for {forecast.symbol}: {e}")
            return None

        if not risk_check.passed:
            if risk_check.metadata.get("risk_level") == "critical":
                self._set_error(risk_check.reason or "Risk rule error")
            logger.info(
                "engine.forecast_rejected",
                symbol=forecast.symbol,
                rule=risk_check.rule_triggered,
                reason=risk_check.reason,
            )
            return None

        order = create_entry_order(
            forecast,
            quantity=risk_check.position_size,
            stop_loss=risk_check.stop_loss,
            take_profit=risk_check.take_profit,
        )
        return await self.submit(order)

    # === Execution ===

    async def submit(self, order: Order) -> Order:
        """
        Execute a pending order on the venue and book it.

        Venue rejection, timeout or any venue fault marks the order FAILED,
        sets health to ERROR and leaves the portfolio untouched.

        The venue call is shielded from cancellation of the caller: a
        cancelled submit still waits for the venue, books the outcome and
        then re-raises CancelledError, so an order never stays PENDING.

        Returns:
            The same order, now EXECUTED or FAILED
        """
        if order.status != OrderStatus.PENDING:
            raise InvalidInputError(f"Order {order.id} is {order.status.value}, only pending orders can be submitted")

        reservation = order.notional if order.side == OrderSide.BUY else Decimal("0")
        self._in_flight += 1
        self._reserved += reservation
        self._touch()

        execution = asyncio.ensure_future(
            asyncio.wait_for(self.venue.execute(order), timeout=self.execution_timeout)
        )
        cancelled = False
        try:
            while not execution.done():
                try:
                    await asyncio.wait({execution})
                except asyncio.CancelledError:
                    if not cancelled:
                        logger.warning(
                            "engine.submit_cancelled",
                            order_id=order.id,
                            symbol=order.symbol,
                        )
                    cancelled = True
        finally:
            self._in_flight -= 1
            self._reserved -= reservation

        self._settle(order, execution)
        if cancelled:
            raise asyncio.CancelledError()
        return order

    def _settle(self, order: Order, execution: asyncio.Future) -> None:
        if execution.cancelled():
            self._fail_order(order, "Execution cancelled")
            return

        error = execution.exception()
        if isinstance(error, asyncio.TimeoutError):
            self._fail_order(order, f"Execution timed out after {self.execution_timeout}s")
        elif isinstance(error, ExecutionFailedError):
            self._fail_order(order, str(error))
        elif error is not None:
            self._fail_order(order, f"Unexpected execution error: {error}")
        else:
            self._book_execution(order, execution.result())

    def _book_execution(self, order: Order, report: ExecutionReport) -> None:
        order.mark_executed(fill_price=report.fill_price, executed_at=report.executed_at)
        accounting.apply_execution(self.portfolio, order)
        self.active_orders[order.id] = order.model_copy(deep=True)
        self._touch()

        logger.info(
            "engine.order_executed",
            order_id=order.id,
            symbol=order.symbol,
            side=order.side.value,
            quantity=order.quantity,
            price=str(order.price),
            stop_loss=str(order.stop_loss) if order.stop_loss else None,
            take_profit=str(order.take_profit) if order.take_profit else None,
            available_balance=str(self.portfolio.available_balance),
        )

    def _sizing_view(self) -> Portfolio:
        """Portfolio as seen by admission: balance net of in-flight BUYs."""
        if not self._reserved:
            return self.portfolio
        return self.portfolio.model_copy(
            update={"available_balance": self.portfolio.available_balance - self._reserved}
        )

    def _fail_order(self, order: Order, reason: str):
        order.mark_failed(reason)
        self.failed_orders.append(order.model_copy(deep=True))
        logger.error(
            "engine.order_failed",
            order_id=order.id,
            symbol=order.symbol,
            side=order.side.value,
            reason=reason,
        )
        self._set_error(f"Order {order.id} for {order.symbol} failed: {reason}")

    # === Price Updates ===

    def mark_to_market(self, prices: Mapping[str, Any]) -> None:
        """Revalue held positions at the given prices."""
        validated = self._validate_prices(prices)
        accounting.mark_to_market(self.portfolio, validated)
        self._touch()

    def scan_exit_triggers(self, prices: Mapping[str, Any]) -> List[Order]:
        """
        Fire stop-loss / take-profit exits for active orders.

        Each active order is checked once against its symbol's price, stop
        before target. A triggered order is archived and an executed
        opposite-side exit order is booked at the current price.

        Returns:
            Exit orders created by this scan, in active-order order
        """
        validated = self._validate_prices(prices)
        exits: List[Order] = []

        for order in list(self.active_orders.values()):
            price = validated.get(order.symbol)
            if price is None:
                continue

            reason = self._exit_reason(order, price)
            if reason is None:
                continue

            exit_order = create_exit_order(order, price, reason)
            self._close_order(order, exit_order, reason)
            exits.append(exit_order.model_copy(deep=True))

        if exits:
            self._touch()
        return exits

    @staticmethod
    def _exit_reason(order: Order, price: Decimal) -> Optional[str]:
        if order.side == OrderSide.BUY:
            if order.stop_loss is not None and price <= order.stop_loss:
                return "stop_loss"
            if order.take_profit is not None and price >= order.take_profit:
                return "take_profit"
        else:
            if order.stop_loss is not None and price >= order.stop_loss:
                return "stop_loss"
            if order.take_profit is not None and price <= order.take_profit:
                return "take_profit"
        return None

    def _close_order(self, entry: Order, exit_order: Order, reason: str):
        """Archive an entry and book its exit."""
        entry.exit_order_id = exit_order.id
        entry.close_reason = reason
        del self.active_orders[entry.id]
        self.trade_history.append(entry)
        self.trade_history.append(exit_order)

        trade = ClosedTrade(
            symbol=entry.symbol,
            side=entry.side,
            quantity=entry.quantity,
            entry_price=entry.price,
            exit_price=exit_order.price,
            entry_order_id=entry.id,
            exit_order_id=exit_order.id,
            close_reason=reason,
            closed_at=exit_order.executed_at or utc_now(),
        )
        self.closed_trades.append(trade)

        accounting.record_closed_trade(self.portfolio, trade)
        accounting.apply_execution(self.portfolio, exit_order)

        logger.info(
            "engine.exit_triggered",
            entry_order_id=entry.id,
            exit_order_id=exit_order.id,
            symbol=entry.symbol,
            reason=reason,
            entry_price=str(entry.price),
            exit_price=str(exit_order.price),
            realized_pnl=str(trade.realized_pnl),
        )

    @staticmethod
    def _validate_prices(prices: Mapping[str, Any]) -> Dict[str, Decimal]:
        """Convert a price map to Decimals, rejecting bad values before any mutation."""
        if not isinstance(prices, Mapping):
            raise InvalidInputError(f"Expected a mapping of prices, got {type(prices).__name__}")

        validated: Dict[str, Decimal] = {}
        for symbol, value in prices.items():
            if not isinstance(symbol, str) or not symbol:
                raise InvalidInputError(f"Invalid symbol in price map: {symbol!r}")
            if isinstance(value, bool) or not isinstance(value, (Decimal, int, float, str)):
                raise InvalidInputError(f"Price for {symbol} is not numeric: {value!r}")
            if isinstance(value, float) and not math.isfinite(value):
                raise InvalidInputError(f"Price for {symbol} is not finite: {value!r}")
            try:
                price = value if isinstance(value, Decimal) else Decimal(str(value))
            except InvalidOperation as e:
                raise InvalidInputError(f"Price for {symbol} is not numeric: {value!r}") from e
            if not price.is_finite() or price <= 0:
                raise InvalidInputError(f"Price for {symbol} must be positive: {value!r}")
            validated[symbol] = price
        return validated

    # === Settings ===

    def get_settings(self) -> RiskSettings:
        return self.settings.model_copy(deep=True)

    def update_settings(self, **changes) -> RiskSettings:
        """
        Merge changes into the current settings field by field.

        Raises:
            InvalidInputError: Unknown field or invalid value (settings unchanged)
        """
        unknown = set(changes) - set(RiskSettings.model_fields)
        if unknown:
            raise InvalidInputError(f"Unknown settings: {', '.join(sorted(unknown))}")

        merged = self.settings.model_dump()
        merged.update(changes)
        try:
            updated = RiskSettings.model_validate(merged)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid settings: {e}") from e

        self.settings = updated
        self._touch()
        logger.info("engine.settings_updated", changes=sorted(changes))
        return self.get_settings()

    # === Snapshots ===

    def get_portfolio(self) -> Portfolio:
        return self.portfolio.model_copy(deep=True)

    def get_status(self) -> BotStatus:
        """Status snapshot with computed prediction and in-flight counts."""
        now = utc_now()
        active_predictions = sum(
            1 for forecast in self._latest_forecasts.values() if not forecast.is_expired(now)
        )
        return self.status.model_copy(
            update={
                "active_prediction_count": active_predictions,
                "pending_order_count": self._in_flight,
            },
            deep=True,
        )

    def get_active_orders(self) -> List[Order]:
        return [order.model_copy(deep=True) for order in self.active_orders.values()]

    def get_trade_history(self) -> List[Order]:
        """Archived entries and their exit orders, oldest first."""
        return [order.model_copy(deep=True) for order in self.trade_history]

    def get_closed_trades(self) -> List[ClosedTrade]:
        return [trade.model_copy(deep=True) for trade in self.closed_trades]

    def get_failed_orders(self) -> List[Order]:
        return [order.model_copy(deep=True) for order in self.failed_orders]

    def get_risk_report(self) -> Dict[str, Any]:
        return self.risk_manager.get_risk_report(self.portfolio, self.settings)

    # === Internal ===

    def _touch(self):
        self.status.last_update = utc_now()

    def _set_error(self, message: str):
        self.status.health = HealthStatus.ERROR
        self.status.error_message = message
        self._touch()
        logger.error("engine.health_error", message=message)


def create_trading_engine(
    venue: Optional[ExecutionVenue] = None,
    provider: Optional[ForecastProvider] = None,
    market_data: Optional[MarketDataFeed] = None,
) -> TradingEngine:
    """Factory function to create a TradingEngine from the loaded configuration."""
    return TradingEngine(
        venue=venue,
        settings=trading_config.to_risk_settings(),
        initial_balance=runtime_config.initial_balance_decimal,
        execution_timeout=runtime_config.execution_timeout_seconds,
        provider=provider,
        market_data=market_data,
        poll_interval=runtime_config.poll_interval_seconds,
    )
