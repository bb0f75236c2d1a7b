"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class SavingsLedgerConfig(BaseSettings):
    """Savings ledger configuration"""
    
    # Storage configuration
    database_url: str = "sqlite:///savings.db"  # memory://, sqlite:///path or postgresql://...
    
    # Concurrency configuration
    lock_timeout_seconds: float = 10.0  # 0 waits forever
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_prefix: str = ""
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    class Config:
        env_prefix = "SAVINGS_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = SavingsLedgerConfig()


def get_config() -> SavingsLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SavingsLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = SavingsLedgerConfig()
    return config
