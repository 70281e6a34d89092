"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Loan ledger configuration"""

    # Product constants
    weekly_installment_divisor: int = 10   # friend loan: principal over 10 weeks
    monthly_installment_divisor: int = 5   # friend loan: principal over 5 months
    daily_installment_days: int = 100
    daily_disbursal_percent: int = 90      # cash handed over on a daily loan
    weekly_anchor_weekday: int = 6         # date.weekday(); 6 = Sunday

    # Foreclosure and interest
    default_foreclosure_penalty_percent: Decimal = Decimal("2")
    interest_schedule_horizon: int = 12    # interest periods listed by default

    # Storage configuration
    database_url: str = "sqlite:///loan_ledger.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


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
