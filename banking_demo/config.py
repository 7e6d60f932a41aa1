"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BankingDemoConfig(BaseSettings):
    """Banking demo configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///:memory:"  # "memory://" selects InMemoryStorage
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Session configuration
    session_duration_days: int = 7
    session_cookie_name: str = "session"
    session_expiry_warning_seconds: int = 60
    
    # Credential hashing (scrypt parameters)
    hash_work_factor: int = 16384  # scrypt N, must be a power of two
    hash_block_size: int = 8
    hash_parallelism: int = 1
    
    # Business rules configuration
    password_min_length: int = 8
    min_customer_age: int = 18
    max_customer_age: int = 120
    max_funding_amount: str = "10000.00"
    
    class Config:
        env_prefix = "BANKING_DEMO_"
        env_file = ".env"
        case_sensitive = False
    
    @property
    def session_max_age_seconds(self) -> int:
        """Session lifetime expressed as a cookie Max-Age"""
        return self.session_duration_days * 24 * 60 * 60


# Global configuration instance
config = BankingDemoConfig()


def get_config() -> BankingDemoConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankingDemoConfig:
    """Reload configuration from environment"""
    global config
    config = BankingDemoConfig()
    return config
