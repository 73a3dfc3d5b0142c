"""
Configuration management for the decile service.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class DecileConfig(BaseSettings):
    """Configuration for decile aggregation."""

    # Climate store
    database_url: str = "sqlite:///climo.db"
    cache_size: int = 100000  # SQLite PRAGMA cache_size, pages
    busy_timeout_s: float = 30.0
    write_batch_size: int = 4096

    # Spark configuration (empty master runs pairs in-process)
    spark_app_name: str = "Climo-Deciles"
    spark_master: str = ""

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "CLIMO_"

    @property
    def is_sqlite(self) -> bool:
        """True when the store is backed by SQLite."""
        return self.database_url.startswith("sqlite")


# Global config instance
_config: Optional[DecileConfig] = None


def get_config() -> DecileConfig:
    """Get or create global configuration instance."""
    global _config
    if _config is None:
        _config = DecileConfig()
    return _config
