"""Configuration models with validation for the questlog progress service."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseModel):
    """PostgreSQL database settings."""

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = "questlog"
    user: str = "postgres"
    password: str = "postgres"
    pool_min: int = Field(default=1, ge=1, le=10)
    pool_max: int = Field(default=5, ge=1, le=20)
    connect_timeout: float = Field(default=10.0, ge=1.0, le=60.0)


class TransactionConfig(BaseModel):
    """Retry policy for the primary progress transaction."""

    max_attempts: int = Field(default=3, ge=1, le=5)
    # Exponential backoff between attempts
    base_delay: float = Field(default=0.05, ge=0.0, le=2.0)
    max_delay: float = Field(default=0.5, ge=0.0, le=10.0)
    jitter: float = Field(default=0.1, ge=0.0, le=0.5)


class DependencyConfig(BaseModel):
    """Settings for the best-effort dependency phase."""

    timeout: float = Field(default=5.0, ge=0.1, le=60.0)


class CatalogConfig(BaseModel):
    """Task catalog source."""

    path: Path | None = None


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(default="INFO")
    format: str = Field(default="%(asctime)s | %(name)s | %(levelname)s | %(message)s")
    json_mode: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid}")
        return v.upper()


class QuestlogConfig(BaseSettings):
    """Root configuration for the progress service.

    Loads from config.yaml with environment variable overrides.
    Environment variables use QUESTLOG_ prefix (e.g., QUESTLOG_DATABASE__HOST).
    """

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    transactions: TransactionConfig = Field(default_factory=TransactionConfig)
    dependencies: DependencyConfig = Field(default_factory=DependencyConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "QUESTLOG_",
        "env_nested_delimiter": "__",
    }

    @classmethod
    def load(cls, config_path: Path | None = None) -> "QuestlogConfig":
        """Load configuration from YAML file with env overrides.

        Args:
            config_path: Path to config.yaml. If None, uses defaults.

        Returns:
            Validated QuestlogConfig instance.
        """
        import os

        import yaml

        config_data = {}

        if config_path and config_path.exists():
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}

        # Apply environment variable overrides for database
        if os.getenv("DB_HOST"):
            config_data.setdefault("database", {})["host"] = os.getenv("DB_HOST")
        if os.getenv("DB_PORT"):
            config_data.setdefault("database", {})["port"] = int(os.getenv("DB_PORT"))
        if os.getenv("DB_NAME"):
            config_data.setdefault("database", {})["database"] = os.getenv("DB_NAME")
        if os.getenv("DB_USER"):
            config_data.setdefault("database", {})["user"] = os.getenv("DB_USER")
        if os.getenv("DB_PASSWORD"):
            config_data.setdefault("database", {})["password"] = os.getenv("DB_PASSWORD")

        # Catalog location
        if os.getenv("QUESTLOG_CATALOG_PATH"):
            config_data.setdefault("catalog", {})["path"] = os.getenv("QUESTLOG_CATALOG_PATH")

        return cls(**config_data)
