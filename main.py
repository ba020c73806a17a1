"""
Forecast Auto Trader - Main Entry Point

Paper-trades forecasts: each forecast is corroborated with technical
signals, run through the admission gates and executed on a simulated venue.

Usage:
    # Check configuration
    python main.py --check

    # Run the polling loop until interrupted
    python main.py --auto-trading

    # Run 50 polling cycles without sleeping and print the result
    python main.py --simulate 50 --auto-trading --seed 7
"""

import argparse
import asyncio
import signal
import sys
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import structlog

from autotrader.core.config import (logging_config, runtime_config, trading_config,
                                    validate_configuration)
from autotrader.core.engine import TradingEngine
from autotrader.exchange.market_data import RandomWalkFeed
from autotrader.exchange.venue import SimulatedVenue
from autotrader.forecast.provider import (CachedForecastProvider, ForecastCache,
                                          TechnicalForecastProvider)
from autotrader.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


# Starting prices for the simulated feed
DEFAULT_BASE_PRICES = {
    "AAPL": Decimal("190.00"),
    "TSLA": Decimal("250.00"),
    "NVDA": Decimal("480.00"),
    "GOOGL": Decimal("140.00"),
    "AMZN": Decimal("150.00"),
}


class TradingBot:
    """
    Application wrapper around the trading engine.

    Wires the simulated market data feed, the technical forecast provider
    (behind a TTL cache) and the simulated venue into a TradingEngine.
    """

    def __init__(self, auto_trading: bool = False, seed: Optional[int] = None):
        self.auto_trading = auto_trading
        self.seed = seed

        self.engine: Optional[TradingEngine] = None
        self._shutdown_event = asyncio.Event()
        self._initialized = False

    async def initialize(self, poll_interval: Optional[float] = None):
        """Build all components from configuration."""
        settings = trading_config.to_risk_settings()
        if self.auto_trading:
            settings = settings.model_copy(update={"auto_trading_enabled": True})

        logger.info(
            "bot.initializing",
            auto_trading_enabled=settings.auto_trading_enabled,
            allowed_symbols=sorted(settings.allowed_symbols),
        )

        market_data = RandomWalkFeed(
            base_prices={
                symbol: DEFAULT_BASE_PRICES.get(symbol, RandomWalkFeed.DEFAULT_PRICE)
                for symbol in settings.allowed_symbols
            },
            seed=self.seed,
        )
        provider = CachedForecastProvider(
            TechnicalForecastProvider(),
            ForecastCache(ttl=runtime_config.forecast_cache_ttl_seconds),
        )

        self.engine = TradingEngine(
            venue=SimulatedVenue(latency=runtime_config.execution_latency_seconds),
            settings=settings,
            initial_balance=runtime_config.initial_balance_decimal,
            execution_timeout=runtime_config.execution_timeout_seconds,
            provider=provider,
            market_data=market_data,
            poll_interval=poll_interval if poll_interval is not None else runtime_config.poll_interval_seconds,
        )

        self._initialized = True
        logger.info("bot.initialized")

    async def run(self):
        """Run the polling loop until a shutdown signal arrives."""
        if not self._initialized:
            raise RuntimeError("Bot not initialized. Call initialize() first.")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.engine.start()
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error("bot.error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def simulate(self, cycles: int):
        """Run a fixed number of polling cycles back to back."""
        if not self._initialized:
            raise RuntimeError("Bot not initialized. Call initialize() first.")

        await self.engine.start(poll=False)
        try:
            for cycle in range(cycles):
                orders = await self.engine.run_cycle()
                if orders:
                    logger.info("bot.cycle_orders", cycle=cycle, orders=len(orders))
        finally:
            await self.shutdown()

    async def shutdown(self):
        logger.info("bot.shutting_down")
        if self.engine:
            await self.engine.stop()
        logger.info("bot.shutdown_complete")

    def _signal_handler(self):
        logger.info("bot.shutdown_signal_received")
        self._shutdown_event.set()

    def get_status(self) -> Dict:
        """Summary of engine status, portfolio and recent trades."""
        if not self._initialized or not self.engine:
            return {"status": "not_initialized"}

        status = self.engine.get_status()
        portfolio = self.engine.get_portfolio()
        closed = self.engine.get_closed_trades()

        return {
            "status": "running" if status.is_active else "stopped",
            "health": status.health.value,
            "error_message": status.error_message,
            "timestamp": status.last_update.isoformat(),
            "active_predictions": status.active_prediction_count,
            "portfolio": {
                "total_value": str(portfolio.total_value),
                "available_balance": str(portfolio.available_balance),
                "total_pnl": str(portfolio.total_pnl),
                "daily_pnl": str(portfolio.daily_pnl),
                "total_trades": portfolio.total_trades,
                "win_rate": str(portfolio.win_rate),
            },
            "positions": {
                symbol: {
                    "quantity": position.quantity,
                    "average_entry_price": str(position.average_entry_price),
                    "current_price": str(position.current_price),
                    "unrealized_pnl": str(position.unrealized_pnl),
                }
                for symbol, position in portfolio.positions.items()
            },
            "active_orders": len(self.engine.get_active_orders()),
            "failed_orders": len(self.engine.get_failed_orders()),
            "recent_trades": [
                {
                    "symbol": t.symbol,
                    "reason": t.close_reason,
                    "pnl": str(t.realized_pnl),
                    "pnl_pct": str(t.realized_pnl_pct),
                }
                for t in closed[-5:]
            ],
        }


def print_status(status: Dict):
    """Print formatted status output."""
    print("\n" + "=" * 60)
    print("           FORECAST AUTO TRADER - STATUS")
    print("=" * 60)

    print(f"\nStatus: {status.get('status', 'unknown').upper()}")
    print(f"Health: {status.get('health', 'N/A').upper()}")
    if status.get("error_message"):
        print(f"Last Error: {status['error_message']}")
    print(f"Active Predictions: {status.get('active_predictions', 0)}")

    portfolio = status.get("portfolio", {})
    if portfolio:
        print("\nPortfolio:")
        print(f"   Total Value: {portfolio.get('total_value', 'N/A')}")
        print(f"   Available: {portfolio.get('available_balance', 'N/A')}")
        print(f"   Unrealized PnL: {portfolio.get('total_pnl', 'N/A')}")
        print(f"   Daily PnL: {portfolio.get('daily_pnl', 'N/A')}")
        print(f"   Trades: {portfolio.get('total_trades', 0)} (win rate {portfolio.get('win_rate', '0')}%)")

    positions = status.get("positions", {})
    print(f"\nPositions ({len(positions)}):")
    if positions:
        for symbol, pos in positions.items():
            print(f"   - {symbol}: {pos['quantity']} @ {pos['average_entry_price']} (PnL {pos['unrealized_pnl']})")
    else:
        print("   No open positions")

    print(f"\nActive Orders: {status.get('active_orders', 0)}")
    print(f"Failed Orders: {status.get('failed_orders', 0)}")

    trades = status.get("recent_trades", [])
    if trades:
        print("\nRecent Trades:")
        for trade in trades:
            print(f"   {trade['symbol']} ({trade['reason']}): PnL {trade['pnl']}")

    print("\n" + "=" * 60)


def print_configuration(config_check: Dict):
    print("\n" + "=" * 60)
    print("           CONFIGURATION CHECK")
    print("=" * 60)

    if config_check["valid"]:
        print("\nConfiguration is valid")
    else:
        print("\nConfiguration errors:")
        for issue in config_check["issues"]:
            print(f"   - {issue}")

    print(f"\nAuto Trading: {'ENABLED' if config_check['auto_trading_enabled'] else 'DISABLED'}")
    print(f"Allowed Symbols: {', '.join(config_check['allowed_symbols'])}")
    print(f"Log Level: {logging_config.log_level}")
    print("\n" + "=" * 60)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Forecast Auto Trader - paper trading driven by forecasts"
    )
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--simulate",
        type=int,
        metavar="CYCLES",
        help="Run CYCLES polling cycles without waiting, then print status",
    )
    parser.add_argument(
        "--auto-trading",
        action="store_true",
        help="Enable automated order placement for this session",
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="Seed for the simulated market data"
    )

    args = parser.parse_args()

    setup_logging()

    config_check = validate_configuration()

    if args.check:
        print_configuration(config_check)
        return

    if not config_check["valid"]:
        print("\nConfiguration errors:")
        for issue in config_check["issues"]:
            print(f"   - {issue}")
        print("\nPlease check your .env file and try again.")
        return

    bot = TradingBot(auto_trading=args.auto_trading, seed=args.seed)

    try:
        if args.simulate is not None:
            if args.simulate <= 0:
                parser.error("--simulate needs a positive number of cycles")
            await bot.initialize(poll_interval=0)
            await bot.simulate(args.simulate)
            print_status(bot.get_status())
            return

        await bot.initialize()
        await bot.run()

    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\nFatal error: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
