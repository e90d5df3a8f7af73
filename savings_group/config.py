"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class SavingsGroupConfig(BaseSettings):
    """Savings group core configuration"""

    # Database configuration
    database_path: str = "savings_group.db"
    use_sqlite: bool = True
    store_timeout_seconds: float = 5.0  # sqlite busy timeout

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Loan rules (amounts are Decimal strings)
    retained_savings: str = "1000"  # savings a borrower cannot pledge against a loan
    max_guarantors: int = 3
    default_interest_rate: str = "5"  # annual %
    money_epsilon: str = "0.01"

    # Notification configuration
    notification_webhook_url: str = ""  # Empty = webhook channel disabled
    notification_timeout_seconds: float = 2.0
    admin_role: str = "admin"

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "SAVINGS_GROUP_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = SavingsGroupConfig()


def get_config() -> SavingsGroupConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SavingsGroupConfig:
    """Reload configuration from environment"""
    global config
    config = SavingsGroupConfig()
    return config
