"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LedgerConfig(BaseSettings):
    """Transfer ledger service configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = "transfers-api"

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "./data/bank.db"
    database_busy_timeout: float = 5.0

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8081

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Business rules configuration
    transfer_timeout_seconds: Optional[float] = None
    best_effort_initial_deposit: bool = False

    # Feature flags
    enable_metrics: bool = True


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
