"""Risk management for the auto trader.

Provides the forecast admission gates, stop-loss / take-profit pricing and
position sizing.
"""

from autotrader.risk.risk_manager import (
    RiskManager,
    RiskRule,
    create_risk_manager,
)

__all__ = [
    'RiskManager',
    'RiskRule',
    'create_risk_manager',
]
