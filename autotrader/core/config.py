"""Configuration management for the forecast-driven auto trader."""

from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from autotrader.core.models import RiskSettings

# =============================================================================
# Trading / Risk Configuration
# =============================================================================


class TradingConfig(BaseSettings):
    """
    Risk and admission settings.

    Values are the defaults the engine starts with; at runtime they are
    turned into an immutable RiskSettings and can be changed with
    TradingEngine.update_settings().
    """

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Risk Management (percent units: 2.0 = 2%)
    max_risk_per_trade_pct: float = Field(
        default=2.0, validation_alias="MAX_RISK_PER_TRADE_PCT"
    )
    max_daily_loss_pct: float = Field(default=5.0, validation_alias="MAX_DAILY_LOSS_PCT")
    min_confidence_level: float = Field(
        default=75.0, validation_alias="MIN_CONFIDENCE_LEVEL"
    )
    auto_trading_enabled: bool = Field(
        default=False, validation_alias="AUTO_TRADING_ENABLED"
    )

    # Stop Loss / Take Profit
    stop_loss_pct: float = Field(default=3.0, validation_alias="STOP_LOSS_PCT")
    take_profit_pct: float = Field(default=6.0, validation_alias="TAKE_PROFIT_PCT")

    # Tradable symbols (stored as comma-separated string, accessed as list via property)
    allowed_symbols_str: str = Field(
        default="AAPL,TSLA,NVDA,GOOGL,AMZN", validation_alias="ALLOWED_SYMBOLS"
    )

    @property
    def allowed_symbols(self) -> List[str]:
        """Parse allowed_symbols string into list."""
        return [s.strip() for s in self.allowed_symbols_str.split(",") if s.strip()]

    @field_validator(
        "max_risk_per_trade_pct",
        "max_daily_loss_pct",
        "stop_loss_pct",
        "take_profit_pct",
    )
    @classmethod
    def validate_percentages(cls, v):
        if v <= 0 or v > 100:
            raise ValueError("Percentage values must be between 0 and 100")
        return v

    @field_validator("min_confidence_level")
    @classmethod
    def validate_confidence(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Confidence level must be between 0 and 100")
        return v

    def to_risk_settings(self) -> RiskSettings:
        """Build the immutable settings object the engine evaluates against."""
        return RiskSettings(
            max_risk_per_trade_pct=self.max_risk_per_trade_pct,
            max_daily_loss_pct=self.max_daily_loss_pct,
            min_confidence_level=self.min_confidence_level,
            auto_trading_enabled=self.auto_trading_enabled,
            stop_loss_pct=self.stop_loss_pct,
            take_profit_pct=self.take_profit_pct,
            allowed_symbols=frozenset(self.allowed_symbols),
        )


# =============================================================================
# Engine Runtime Configuration
# =============================================================================


class EngineRuntimeConfig(BaseSettings):
    """Simulation and scheduling settings for the order engine."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Paper account
    initial_balance: float = Field(default=100000.0, validation_alias="INITIAL_BALANCE")

    # Simulated execution
    execution_latency_seconds: float = Field(
        default=0.1, validation_alias="EXECUTION_LATENCY_SECONDS"
    )
    execution_timeout_seconds: float = Field(
        default=5.0, validation_alias="EXECUTION_TIMEOUT_SECONDS"
    )

    # Forecasts and market data
    forecast_cache_ttl_seconds: float = Field(
        default=300.0, validation_alias="FORECAST_CACHE_TTL_SECONDS"
    )
    price_history_size: int = Field(default=100, validation_alias="PRICE_HISTORY_SIZE")
    poll_interval_seconds: float = Field(
        default=5.0, validation_alias="POLL_INTERVAL_SECONDS"
    )

    @field_validator("initial_balance", "execution_timeout_seconds", "poll_interval_seconds")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("execution_latency_seconds", "forecast_cache_ttl_seconds")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @field_validator("price_history_size")
    @classmethod
    def validate_history_size(cls, v):
        # indicators need at least 20 samples
        if v < 20:
            raise ValueError("price_history_size must be at least 20")
        return v

    @property
    def initial_balance_decimal(self) -> Decimal:
        return Decimal(str(self.initial_balance))


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_file: Optional[str] = Field(default=None, validation_alias="LOG_FILE")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")


# =============================================================================
# Global Configuration Instances
# =============================================================================

trading_config = TradingConfig()
runtime_config = EngineRuntimeConfig()
logging_config = LoggingConfig()


def validate_configuration() -> dict:
    """Cross-check the loaded configuration and return any issues found."""
    issues = []
    settings = trading_config.to_risk_settings()

    if not settings.allowed_symbols:
        issues.append("ALLOWED_SYMBOLS is empty - no forecast can be traded")
    if settings.take_profit_pct <= settings.stop_loss_pct:
        issues.append("TAKE_PROFIT_PCT is not larger than STOP_LOSS_PCT")
    if runtime_config.execution_latency_seconds >= runtime_config.execution_timeout_seconds:
        issues.append("EXECUTION_LATENCY_SECONDS reaches EXECUTION_TIMEOUT_SECONDS - every order would time out")

    return {
        "valid": not issues,
        "issues": issues,
        "auto_trading_enabled": settings.auto_trading_enabled,
        "allowed_symbols": sorted(settings.allowed_symbols),
    }


__all__ = [
    "TradingConfig",
    "EngineRuntimeConfig",
    "LoggingConfig",
    "trading_config",
    "runtime_config",
    "logging_config",
    "validate_configuration",
]
