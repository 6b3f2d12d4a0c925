"""
Centralized configuration management using Pydantic Settings.

Loads connection and logging settings from environment variables and
.env files, with validation.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from docrepo.core.exceptions import ConfigurationError


VALID_URI_SCHEMES = ("mongodb", "mongodb+srv")


class Settings(BaseSettings):
    """
    Settings loaded from environment variables.

    All settings can be overridden via environment variables
    (MONGO_URI, MONGO_DATABASE, MONGO_MAX_RETRIES, ...).
    Credentials embedded in MONGO_URI belong in .env, never in code.
    """

    # Storage connection
    mongo_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string"
    )
    mongo_database: str = Field(
        default="docrepo",
        description="Database name all repositories operate on"
    )
    mongo_max_retries: int = Field(
        default=5,
        ge=1,
        description="Connection attempts before setup fails"
    )
    mongo_retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds to wait between connection attempts"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(
        default=True,
        description="Emit JSON log lines (False for human-readable format)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("mongo_uri")
    @classmethod
    def validate_mongo_uri(cls, v: str) -> str:
        """
        Validate connection string format.

        Ensures the URI is non-empty and uses a MongoDB scheme.
        """
        if not v or v.strip() == "":
            raise ValueError("MONGO_URI is required and cannot be empty")

        if not any(v.startswith(scheme + "://") for scheme in VALID_URI_SCHEMES):
            raise ValueError(
                f"MONGO_URI must start with one of: "
                f"{', '.join(s + '://' for s in VALID_URI_SCHEMES)}. "
                f"Got: {v[:20]}..."
            )
        return v

    @field_validator("mongo_database")
    @classmethod
    def validate_database_name(cls, v: str) -> str:
        """MongoDB database names cannot be empty or contain these characters."""
        if not v or v.strip() == "":
            raise ValueError("MONGO_DATABASE is required and cannot be empty")
        forbidden = set('/\\. "$')
        if any(ch in forbidden for ch in v):
            raise ValueError(f"MONGO_DATABASE contains an invalid character: {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard level name, got {v!r}")
        return level


@lru_cache
def get_settings() -> Settings:
    """
    Return the process-wide Settings instance (read once).

    Raises:
        ConfigurationError: If the environment holds invalid values
    """
    try:
        return Settings()
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
