"""Portfolio accounting.

These functions are the only code that mutates a Portfolio. Each one ends by
calling recompute_derived(), so total_value / total_pnl / win_rate always
match available_balance and the open positions.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

import structlog

from autotrader.core.models import (
    ClosedTrade, Order, OrderSide, OrderStatus, Portfolio, Position, utc_now
)

logger = structlog.get_logger(__name__)


def recompute_derived(portfolio: Portfolio) -> Portfolio:
    """Rebuild every derived field from scratch.

    total_value = available_balance + sum(quantity * current_price)
    total_pnl = sum(unrealized_pnl)
    """
    positions_value = Decimal("0")
    total_pnl = Decimal("0")
    for position in portfolio.positions.values():
        positions_value += position.market_value
        total_pnl += position.unrealized_pnl

    portfolio.total_value = portfolio.available_balance + positions_value
    portfolio.total_pnl = total_pnl

    if portfolio.closed_trades > 0:
        portfolio.win_rate = (
            Decimal(portfolio.winning_trades) / Decimal(portfolio.closed_trades) * 100
        )
    else:
        portfolio.win_rate = Decimal("0")

    portfolio.updated_at = utc_now()
    return portfolio


def create_portfolio(initial_balance: Decimal, now: Optional[datetime] = None) -> Portfolio:
    """Create an empty portfolio funded with initial_balance."""
    now = now or utc_now()
    portfolio = Portfolio(
        available_balance=initial_balance,
        daily_starting_value=initial_balance,
        trading_day=now.date().isoformat(),
    )
    return recompute_derived(portfolio)


def apply_execution(portfolio: Portfolio, order: Order) -> Portfolio:
    """Apply an executed order to balance and positions.

    BUY debits quantity * price, opens or grows the symbol's position
    (new average = weighted mean of old and added notional) and marks it at
    the fill price.
    SELL credits quantity * price and shrinks the position, dropping it at
    zero. Overselling is clamped: the position is dropped, never negative.
    """
    if order.status != OrderStatus.EXECUTED:
        raise ValueError(f"Order {order.id} is {order.status.value}, only executed orders apply")

    notional = order.notional
    position = portfolio.positions.get(order.symbol)

    if order.side == OrderSide.BUY:
        portfolio.available_balance -= notional
        if position is None:
            position = Position(
                symbol=order.symbol,
                quantity=order.quantity,
                average_entry_price=order.price,
                current_price=order.price,
                opened_at=order.executed_at or utc_now(),
            )
            portfolio.positions[order.symbol] = position
        else:
            total_cost = position.cost_basis + notional
            total_quantity = position.quantity + order.quantity
            position.average_entry_price = total_cost / total_quantity
            position.quantity = total_quantity
        position.revalue(order.price)
    else:
        portfolio.available_balance += notional
        if position is not None:
            remaining = position.quantity - order.quantity
            if remaining < 0:
                logger.warning(
                    "portfolio.oversell_clamped",
                    symbol=order.symbol,
                    held=position.quantity,
                    sold=order.quantity,
                )
            if remaining <= 0:
                del portfolio.positions[order.symbol]
            else:
                position.quantity = remaining
                position.revalue(position.current_price)

    portfolio.total_trades += 1
    return recompute_derived(portfolio)


def mark_to_market(portfolio: Portfolio, prices: Dict[str, Decimal]) -> Portfolio:
    """Revalue every held position that has a price in prices."""
    for symbol, position in portfolio.positions.items():
        price = prices.get(symbol)
        if price is not None:
            position.revalue(price)
    return recompute_derived(portfolio)


def roll_daily_pnl(portfolio: Portfolio, now: Optional[datetime] = None) -> Portfolio:
    """Start a new trading day if the UTC date changed."""
    today = (now or utc_now()).date().isoformat()
    if portfolio.trading_day != today:
        logger.info(
            "portfolio.daily_reset",
            previous_day=portfolio.trading_day,
            previous_daily_pnl=str(portfolio.daily_pnl),
            starting_value=str(portfolio.total_value),
        )
        portfolio.trading_day = today
        portfolio.daily_pnl = Decimal("0")
        portfolio.daily_starting_value = portfolio.total_value
    return recompute_derived(portfolio)


def record_closed_trade(portfolio: Portfolio, trade: ClosedTrade) -> Portfolio:
    """Book the realized result of a closed trade."""
    roll_daily_pnl(portfolio, trade.closed_at)
    portfolio.daily_pnl += trade.realized_pnl
    portfolio.closed_trades += 1
    if trade.is_win:
        portfolio.winning_trades += 1
    return recompute_derived(portfolio)
