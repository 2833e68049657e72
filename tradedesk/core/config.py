"""Configuration management for TradeDesk."""

from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# System Configuration
# =============================================================================


class SystemConfig(BaseSettings):
    """System-level configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development", validation_alias="ENVIRONMENT"
    )
    app_name: str = Field(default="TradeDesk", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")


# =============================================================================
# Trading Configuration
# =============================================================================


class TradingConfig(BaseSettings):
    """Order lifecycle settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Flat fee charged on every order (0.1%)
    fee_rate: Decimal = Field(default=Decimal("0.001"), validation_alias="FEE_RATE")
    default_time_in_force: Literal["GTC", "IOC", "FOK"] = Field(
        default="GTC", validation_alias="DEFAULT_TIME_IN_FORCE"
    )

    # Non-custodial execution needs a signed on-chain transaction
    require_onchain_verification: bool = Field(
        default=True, validation_alias="REQUIRE_ONCHAIN_VERIFICATION"
    )
    settlement_chain: str = Field(default="base", validation_alias="SETTLEMENT_CHAIN")

    # Pending orders older than this are reported by the reconcile script
    stale_order_minutes: int = Field(default=60, validation_alias="STALE_ORDER_MINUTES")

    @field_validator("fee_rate")
    @classmethod
    def validate_fee_rate(cls, v):
        """Validate fee rate is between 0 and 1."""
        if v < 0 or v >= 1:
            raise ValueError("Fee rate must be between 0 and 1")
        return v

    @field_validator("stale_order_minutes")
    @classmethod
    def validate_stale_minutes(cls, v):
        if v <= 0:
            raise ValueError("Stale order threshold must be positive")
        return v


# =============================================================================
# Copy Trading Configuration
# =============================================================================


class CopyTradingConfig(BaseSettings):
    """Copy-trading fan-out settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    enabled: bool = Field(default=True, validation_alias="COPY_TRADING_ENABLED")
    max_copy_percentage: float = Field(
        default=100.0, validation_alias="COPY_TRADING_MAX_PERCENTAGE"
    )

    @field_validator("max_copy_percentage")
    @classmethod
    def validate_max_percentage(cls, v):
        """Validate that the percentage cap is between 0 and 100."""
        if v <= 0 or v > 100:
            raise ValueError("Max copy percentage must be between 0 and 100")
        return v


# =============================================================================
# Realtime & Market Data Configuration
# =============================================================================


class RealtimeConfig(BaseSettings):
    """Portfolio refresh and price feed settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    portfolio_refresh_seconds: int = Field(
        default=30, validation_alias="PORTFOLIO_REFRESH_SECONDS"
    )
    price_exchange: str = Field(default="binance", validation_alias="PRICE_EXCHANGE")
    quote_currency: str = Field(default="USDT", validation_alias="QUOTE_CURRENCY")
    price_timeout: int = Field(default=30, validation_alias="PRICE_TIMEOUT")
    price_retry_attempts: int = Field(default=3, validation_alias="PRICE_RETRY_ATTEMPTS")


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    database_url: str = Field(
        default="sqlite:///./data/tradedesk.db", validation_alias="DATABASE_URL"
    )
    database_pool_size: int = Field(default=10, validation_alias="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(default=20, validation_alias="DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(default=False, validation_alias="DATABASE_ECHO")


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
    log_file: str = Field(default="logs/tradedesk.log", validation_alias="LOG_FILE")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")


# =============================================================================
# Complete Configuration
# =============================================================================


class TradeDeskConfig(BaseSettings):
    """Complete TradeDesk configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    system: SystemConfig = Field(default_factory=SystemConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    copy_trading: CopyTradingConfig = Field(default_factory=CopyTradingConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def validate_config(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if self.system.environment == "production":
            if self.database.database_url.startswith("sqlite"):
                issues.append("SQLite database is not supported in production")
            if not self.trading.require_onchain_verification:
                issues.append("On-chain verification must be enabled in production")

        if self.trading.fee_rate > Decimal("0.05"):
            issues.append(f"Fee rate ({self.trading.fee_rate}) looks too high")

        if self.realtime.portfolio_refresh_seconds < 1:
            issues.append("Portfolio refresh interval must be at least 1 second")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

system_config = SystemConfig()
trading_config = TradingConfig()
copy_trading_config = CopyTradingConfig()
realtime_config = RealtimeConfig()
database_config = DatabaseConfig()
logging_config = LoggingConfig()

app_config = TradeDeskConfig()


__all__ = [
    "TradeDeskConfig",
    "app_config",
    "SystemConfig",
    "TradingConfig",
    "CopyTradingConfig",
    "RealtimeConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "system_config",
    "trading_config",
    "copy_trading_config",
    "realtime_config",
    "database_config",
    "logging_config",
]
