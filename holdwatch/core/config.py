"""Configuration management for HoldWatch."""

from typing import List, Literal, Optional

from pydantic import Field, computed_field
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
    app_name: str = Field(default="HoldWatch", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")


# =============================================================================
# Binance API Configuration
# =============================================================================


class BinanceAPIConfig(BaseSettings):
    """Binance USD-M Futures API configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    api_key: str = Field(default="", validation_alias="BINANCE_API_KEY")
    api_secret: str = Field(default="", validation_alias="BINANCE_SECRET_KEY")
    testnet: bool = Field(default=False, validation_alias="BINANCE_TESTNET")
    timeout: int = Field(default=30, validation_alias="BINANCE_TIMEOUT")
    recv_window: int = Field(default=10000, validation_alias="BINANCE_RECV_WINDOW")
    retry_attempts: int = Field(default=3, ge=0, validation_alias="BINANCE_RETRY_ATTEMPTS")

    # Binance caps allOrders at 1000 records per request
    order_history_limit: int = Field(
        default=1000, ge=1, le=1000, validation_alias="ORDER_HISTORY_LIMIT"
    )

    # "auto" asks the exchange whether hedge mode (dualSidePosition) is on
    accounting_mode: Literal["auto", "net_balance", "side_tagged"] = Field(
        default="auto", validation_alias="ACCOUNTING_MODE"
    )

    @computed_field
    @property
    def masked_api_key(self) -> str:
        """API key prefix safe for logs."""
        if not self.api_key:
            return ""
        return f"{self.api_key[:10]}..."


# =============================================================================
# Telegram Configuration
# =============================================================================


class TelegramConfig(BaseSettings):
    """Telegram bot configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    bot_token: str = Field(default="", validation_alias="TELEGRAM_BOT_TOKEN")
    # Learned from the first incoming message when not set
    chat_id: Optional[int] = Field(default=None, validation_alias="TELEGRAM_CHAT_ID")

    api_url: str = Field(
        default="https://api.telegram.org", validation_alias="TELEGRAM_API_URL"
    )
    poll_timeout: int = Field(default=60, validation_alias="TELEGRAM_POLL_TIMEOUT")
    request_timeout: int = Field(default=10, validation_alias="TELEGRAM_REQUEST_TIMEOUT")
    max_message_length: int = Field(
        default=4096, validation_alias="TELEGRAM_MAX_MESSAGE_LENGTH"
    )
    # Room left for the "Part i of n" header
    header_reserve: int = Field(default=50, validation_alias="TELEGRAM_HEADER_RESERVE")
    part_delay_seconds: float = Field(
        default=0.1, validation_alias="TELEGRAM_PART_DELAY_SECONDS"
    )
    typing_interval_seconds: float = Field(
        default=3.0, validation_alias="TELEGRAM_TYPING_INTERVAL_SECONDS"
    )


# =============================================================================
# Monitor Configuration
# =============================================================================


class MonitorConfig(BaseSettings):
    """Holding-time monitor configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    limits_file: str = Field(default="limits.json", validation_alias="LIMITS_FILE")
    default_check_interval: str = Field(
        default="5m", validation_alias="DEFAULT_CHECK_INTERVAL"
    )
    quote_suffixes_str: str = Field(
        default="USDT,BUSD,USDC,BTC,ETH,BNB", validation_alias="QUOTE_SUFFIXES"
    )

    @property
    def quote_suffixes(self) -> List[str]:
        """Parse quote suffixes string into list (checked in order)."""
        return [
            s.strip().upper() for s in self.quote_suffixes_str.split(",") if s.strip()
        ]


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
    log_file: str = Field(default="logs/holdwatch.log", validation_alias="LOG_FILE")


# =============================================================================
# Global Configuration Container
# =============================================================================


class HoldWatchConfig:
    """
    Container for all HoldWatch configurations.

    Usage:
        from holdwatch.core.config import config

        token = config.telegram.bot_token
        if config.binance.accounting_mode == "auto":
            ...
    """

    def __init__(self):
        self.system = SystemConfig()
        self.binance = BinanceAPIConfig()
        self.telegram = TelegramConfig()
        self.monitor = MonitorConfig()
        self.logging = LoggingConfig()

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if not self.telegram.bot_token:
            issues.append("TELEGRAM_BOT_TOKEN is not set")
        if not self.binance.api_key or self.binance.api_key.startswith("your_"):
            issues.append("BINANCE_API_KEY is not set")
        if not self.binance.api_secret or self.binance.api_secret.startswith("your_"):
            issues.append("BINANCE_SECRET_KEY is not set")

        from holdwatch.tracking.limits import DurationParseError, parse_duration

        try:
            parse_duration(self.monitor.default_check_interval)
        except DurationParseError as e:
            issues.append(f"DEFAULT_CHECK_INTERVAL is invalid: {e}")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

binance_config = BinanceAPIConfig()
telegram_config = TelegramConfig()
monitor_config = MonitorConfig()
logging_config = LoggingConfig()

config = HoldWatchConfig()


__all__ = [
    "SystemConfig",
    "BinanceAPIConfig",
    "TelegramConfig",
    "MonitorConfig",
    "LoggingConfig",
    "HoldWatchConfig",
    "binance_config",
    "telegram_config",
    "monitor_config",
    "logging_config",
    "config",
]
