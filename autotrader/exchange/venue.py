"""Execution venues.

The order engine depends only on the ExecutionVenue interface. The
SimulatedVenue fills every order at its own price after a configurable
latency, the way paper trading works; a real broker adapter implements the
same interface and raises ExecutionFailedError when the broker rejects.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

import structlog

from autotrader.core.config import runtime_config
from autotrader.core.exceptions import ExecutionFailedError
from autotrader.core.models import Order, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class ExecutionReport:
    """Fill confirmation returned by a venue.

    Attributes:
        order_id: Internal order ID that was filled
        fill_price: Price the order was filled at
        executed_at: Fill time (UTC)
        metadata: Venue specific details
    """
    order_id: str
    fill_price: Decimal
    executed_at: datetime = field(default_factory=utc_now)
    metadata: Dict[str, str] = field(default_factory=dict)


class ExecutionVenue(ABC):
    """Place where pending orders are executed."""

    name: str = "venue"

    @abstractmethod
    async def execute(self, order: Order) -> ExecutionReport:
        """
        Execute a pending order.

        Args:
            order: Pending order (not mutated by the venue)

        Returns:
            ExecutionReport with the fill price and time

        Raises:
            ExecutionFailedError: The venue rejected the order
        """


class SimulatedVenue(ExecutionVenue):
    """
    Paper-trading venue.

    Sleeps for `latency` seconds, then fills the order at its own price.
    Symbols listed in `reject_symbols` are refused, which lets callers
    exercise the rejection path.
    """

    name = "simulated"

    def __init__(
        self,
        latency: float = 0.1,
        reject_symbols: Optional[Iterable[str]] = None
    ):
        if latency < 0:
            raise ValueError("latency must not be negative")
        self.latency = latency
        self.reject_symbols: Set[str] = set(reject_symbols or ())
        self.executions: List[ExecutionReport] = []

    async def execute(self, order: Order) -> ExecutionReport:
        if self.latency:
            await asyncio.sleep(self.latency)

        if order.symbol in self.reject_symbols:
            logger.warning(
                "venue.order_rejected",
                venue=self.name,
                order_id=order.id,
                symbol=order.symbol,
            )
            raise ExecutionFailedError(
                f"Venue rejected order for {order.symbol}", order_id=order.id
            )

        report = ExecutionReport(
            order_id=order.id,
            fill_price=order.price,
            metadata={"paper_trade": "true", "venue": self.name},
        )
        self.executions.append(report)

        logger.info(
            "venue.paper_fill",
            venue=self.name,
            order_id=order.id,
            symbol=order.symbol,
            side=order.side.value,
            quantity=order.quantity,
            price=str(report.fill_price),
        )
        return report


def create_simulated_venue(latency: Optional[float] = None) -> SimulatedVenue:
    """Factory function to create a SimulatedVenue from runtime configuration."""
    if latency is None:
        latency = runtime_config.execution_latency_seconds
    return SimulatedVenue(latency=latency)
