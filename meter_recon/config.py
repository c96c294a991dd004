"""
Service configuration from environment variables using Pydantic BaseSettings.

All configuration values are loaded from environment variables (or a
``.env`` file) at startup. Corruption thresholds live here so that a site
deployment can tighten or relax them without code changes.

CHANGELOG:
- 2026-10-18: Add corruption thresholds and readings page size
- 2026-10-18: Initial creation

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings

from meter_recon.schemas import CorruptionThresholds


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        DATABASE_URL: PostgreSQL connection string (asyncpg).
        REDIS_URL: Redis connection string for the cost-result cache.
        CACHE_TTL_S: Redis cache TTL in seconds for cost results.
        READINGS_PAGE_SIZE: Rows fetched per page when reading meter data.
        MAX_KWH_PER_INTERVAL: Corruption ceiling for kWh fields.
        MAX_KVA_PER_INTERVAL: Corruption ceiling for kVA fields.
        MAX_METADATA_VALUE: Corruption ceiling for any other column.
        LOG_LEVEL: Root logger level name.
    """

    DATABASE_URL: str
    REDIS_URL: str
    CACHE_TTL_S: int = 300
    READINGS_PAGE_SIZE: int = 1000
    MAX_KWH_PER_INTERVAL: float = 10_000
    MAX_KVA_PER_INTERVAL: float = 50_000
    MAX_METADATA_VALUE: float = 100_000
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("READINGS_PAGE_SIZE")
    @classmethod
    def page_size_must_be_valid(cls, v: int) -> int:
        """Validate page size is between 1 and 10000."""
        if v < 1 or v > 10_000:
            raise ValueError("READINGS_PAGE_SIZE must be >= 1 and <= 10000")
        return v

    @field_validator(
        "MAX_KWH_PER_INTERVAL", "MAX_KVA_PER_INTERVAL", "MAX_METADATA_VALUE",
    )
    @classmethod
    def threshold_must_be_positive(cls, v: float) -> float:
        """Validate corruption thresholds are strictly positive."""
        if v <= 0:
            raise ValueError("Corruption thresholds must be > 0")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL: {v!r}")
        return level

    def corruption_thresholds(self) -> CorruptionThresholds:
        """Build the validator thresholds from the configured ceilings."""
        return CorruptionThresholds(
            max_kwh_per_interval=self.MAX_KWH_PER_INTERVAL,
            max_kva_per_interval=self.MAX_KVA_PER_INTERVAL,
            max_metadata_value=self.MAX_METADATA_VALUE,
        )


def get_settings() -> Settings:
    """Create and return a Settings instance.

    Returns:
        Settings: Validated configuration from environment variables.
    """
    return Settings()
