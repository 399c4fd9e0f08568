"""
Configuration management using environment variables.
Handles catalogue, storage and maintenance settings with validation and defaults.
"""

from typing import Dict, Optional
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class CatalogConfig(BaseSettings):
    """
    Configuration class for the library catalogue.
    Uses pydantic BaseSettings for environment variable management.
    """

    # MongoDB Configuration
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "library_catalogue"

    # Collection names
    authors_collection: str = "authors"
    books_collection: str = "books"
    categories_collection: str = "categories"
    users_collection: str = "users"
    loans_collection: str = "loans"
    reviews_collection: str = "reviews"
    intents_collection: str = "fanout_intents"
    jobs_collection: str = "propagation_jobs"

    # Loan lifecycle
    loan_period_days: int = 30

    # Cache
    cache_max_entries: int = 1000

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = "logs/catalog.log"

    # Maintenance scheduling
    overdue_sweep_hour: int = 1
    overdue_sweep_minute: int = 0
    recovery_interval_minutes: int = 5
    intent_grace_seconds: int = 60
    intent_retention_days: int = 7
    timezone: str = "UTC"

    # Development/Testing
    debug: bool = False
    test_mode: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",  # Ignore extra fields from .env
    }

    @field_validator('loan_period_days')
    @classmethod
    def validate_loan_period(cls, v):
        """Ensure the default loan period is reasonable."""
        if v < 1 or v > 365:
            raise ValueError('loan_period_days must be between 1 and 365')
        return v

    @field_validator('cache_max_entries')
    @classmethod
    def validate_cache_size(cls, v):
        """Ensure every cache region can hold at least one entry."""
        if v < 1:
            raise ValueError('cache_max_entries must be at least 1')
        return v

    @field_validator('overdue_sweep_hour')
    @classmethod
    def validate_sweep_hour(cls, v):
        if v < 0 or v > 23:
            raise ValueError('overdue_sweep_hour must be between 0 and 23')
        return v

    @field_validator('overdue_sweep_minute')
    @classmethod
    def validate_sweep_minute(cls, v):
        if v < 0 or v > 59:
            raise ValueError('overdue_sweep_minute must be between 0 and 59')
        return v

    @field_validator('recovery_interval_minutes')
    @classmethod
    def validate_recovery_interval(cls, v):
        """Ensure the recovery sweep runs at a sane cadence."""
        if v < 1 or v > 1440:
            raise ValueError('recovery_interval_minutes must be between 1 and 1440')
        return v

    @field_validator('intent_grace_seconds')
    @classmethod
    def validate_grace(cls, v):
        if v < 0:
            raise ValueError('intent_grace_seconds cannot be negative')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def get_collection_names(self) -> Dict[str, str]:
        """Map logical collection keys to their configured names."""
        return {
            "authors": self.authors_collection,
            "books": self.books_collection,
            "categories": self.categories_collection,
            "users": self.users_collection,
            "loans": self.loans_collection,
            "reviews": self.reviews_collection,
            "intents": self.intents_collection,
            "jobs": self.jobs_collection,
        }

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug and not self.test_mode


# Global configuration instance
config = CatalogConfig()
