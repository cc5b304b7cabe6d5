"""
Configuration management for the session persistence layer.

Configuration is loaded and validated with Pydantic settings. Store
credentials, region and table name always come from environment variables
or .env files; nothing secret is hardcoded.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


SESSION_STORE_TYPES = {"memory", "redis", "dynamodb"}


def _detect_environment() -> Environment:
    """
    Detect the current environment from the ENVIRONMENT variable.
    
    Returns:
        Environment: The detected environment, defaults to DEVELOPMENT if not set.
    """
    env_value = os.environ.get("ENVIRONMENT", "development").lower().strip()
    try:
        return Environment(env_value)
    except ValueError:
        return Environment.DEVELOPMENT


def _get_env_files(environment: Environment) -> Tuple[str, ...]:
    """
    Get the list of .env files to load for the given environment.
    
    Files are loaded in order, with later files overriding earlier ones.
    
    Args:
        environment: The target environment.
        
    Returns:
        Tuple of .env file paths to load.
    """
    return (".env", f".env.{environment.value}")


class Settings(BaseSettings):
    """
    Session layer settings loaded from environment variables.
    
    The ENVIRONMENT variable selects which .env.<environment> file is
    layered over the base .env file. Outside development a real backend
    (redis or dynamodb) must be configured.
    """
    
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development, staging, production)"
    )
    
    # Session store selection
    session_store_type: str = Field(
        default="memory",
        description="Session store type: 'memory', 'redis' or 'dynamodb'"
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for session storage"
    )
    dynamodb_table: str = Field(
        default="sessions",
        description="DynamoDB table name for session storage"
    )
    aws_region: str = Field(
        default="us-east-1",
        description="AWS region of the DynamoDB table"
    )
    aws_access_key_id: Optional[SecretStr] = Field(
        default=None,
        description="AWS access key; leave unset to use the default credential chain"
    )
    aws_secret_access_key: Optional[SecretStr] = Field(
        default=None,
        description="AWS secret key; must be set together with aws_access_key_id"
    )
    dynamodb_endpoint_url: Optional[str] = Field(
        default=None,
        description="Override endpoint, e.g. a local DynamoDB for development"
    )
    
    # Session lifecycle
    session_ttl_hours: int = Field(
        default=48,
        ge=1,
        le=720,  # 30 days
        description="Default session time-to-live in hours"
    )
    session_cookie_name: str = Field(
        default="session_key",
        description="Cookie the session key is read from"
    )
    session_header_name: str = Field(
        default="X-Session-Key",
        description="Header the session key is read from (checked before the cookie)"
    )
    
    # Provisioning waiter
    provisioning_poll_seconds: float = Field(
        default=5.0,
        ge=0,
        le=60,
        description="Delay between table readiness polls"
    )
    provisioning_max_attempts: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Number of readiness polls before provisioning gives up"
    )
    
    # Observability
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_file: Optional[str] = Field(
        default="logs/session-sync.log",
        description="Append-only diagnostics log file; empty disables the file sink"
    )
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.strip().upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v
    
    @field_validator("session_store_type")
    @classmethod
    def validate_session_store_type(cls, v: str) -> str:
        """Validate that session_store_type names a known store."""
        v = v.strip().lower()
        if v not in SESSION_STORE_TYPES:
            raise ValueError("session_store_type must be 'memory', 'redis' or 'dynamodb'")
        return v
    
    @field_validator("dynamodb_table")
    @classmethod
    def validate_dynamodb_table(cls, v: str) -> str:
        """DynamoDB table names are 3-255 characters."""
        v = v.strip()
        if len(v) < 3 or len(v) > 255:
            raise ValueError("dynamodb_table must be between 3 and 255 characters")
        return v
    
    @field_validator("log_file")
    @classmethod
    def validate_log_file(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty log_file as 'no file sink'."""
        if v is None or not v.strip():
            return None
        return v.strip()
    
    @model_validator(mode="after")
    def validate_session_store_config(self) -> "Settings":
        """Validate that the selected store has what it needs."""
        if self.session_store_type == "memory":
            if self.environment != Environment.DEVELOPMENT:
                raise ValueError(
                    "session_store_type 'memory' is only allowed in development"
                )
        elif self.session_store_type == "redis" and not self.redis_url:
            raise ValueError(
                "redis_url is required when session_store_type is 'redis'"
            )
        
        has_key_id = self.aws_access_key_id is not None
        has_secret = self.aws_secret_access_key is not None
        if has_key_id != has_secret:
            raise ValueError(
                "aws_access_key_id and aws_secret_access_key must be set together"
            )
        return self
    
    @property
    def session_ttl_seconds(self) -> int:
        """Default TTL in seconds."""
        return self.session_ttl_hours * 3600


class ConfigurationError(Exception):
    """
    Raised when settings cannot be loaded or fail startup validation.
    
    The message lists every missing and invalid field, so one failed start
    reports all problems at once.
    """
    
    def __init__(
        self,
        message: str,
        missing_fields: Optional[List[str]] = None,
        invalid_fields: Optional[Dict[str, str]] = None
    ):
        self.message = message
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(self.format_error_message())
    
    @classmethod
    def from_validation_error(cls, message: str, error: ValidationError) -> "ConfigurationError":
        """Sort pydantic errors into missing and invalid fields."""
        missing: List[str] = []
        invalid: Dict[str, str] = {}
        for item in error.errors():
            # model-level validators have an empty location
            name = ".".join(str(part) for part in item.get("loc", ())) or "settings"
            if item.get("type") == "missing":
                missing.append(name)
            else:
                invalid[name] = item.get("msg", "invalid value")
        return cls(message, missing_fields=missing, invalid_fields=invalid)
    
    def format_error_message(self) -> str:
        """Format a descriptive error message listing all issues."""
        lines = [self.message]
        if self.missing_fields:
            lines.append(f"Missing required fields: {', '.join(self.missing_fields)}")
        if self.invalid_fields:
            lines.append("Invalid field values:")
            lines.extend(f"  - {name}: {reason}" for name, reason in self.invalid_fields.items())
        return "\n".join(lines)


def create_settings_for_environment(environment: Optional[Environment] = None) -> Settings:
    """
    Create Settings for a specific environment.
    
    The base .env file is read first and .env.<environment> on top of it;
    files that do not exist are skipped. Real environment variables win
    over both.
    
    Args:
        environment: Which .env.<environment> file to layer. Detected from
            ENVIRONMENT when omitted.
    
    Returns:
        Settings: Validated settings.
        
    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    environment = environment or _detect_environment()
    env_files = tuple(f for f in _get_env_files(environment) if Path(f).exists())
    
    try:
        return Settings(_env_file=env_files or None)
    except ValidationError as e:
        raise ConfigurationError.from_validation_error(
            f"Failed to load configuration for environment '{environment.value}'",
            e
        ) from e


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the settings singleton.
    
    Settings are loaded once and cached for subsequent calls.
    
    Returns:
        Settings: The validated settings.
        
    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    global _settings_cache
    
    if _settings_cache is None:
        _settings_cache = create_settings_for_environment()
    
    return _settings_cache


def clear_settings_cache() -> None:
    """
    Clear the settings cache.
    
    Used by tests to reload settings with different environment variables.
    """
    global _settings_cache
    _settings_cache = None


def validate_startup(settings: Optional[Settings] = None) -> None:
    """
    Validate settings before the session layer starts serving requests.
    
    Args:
        settings: Settings to check; defaults to get_settings().
    
    Raises:
        ConfigurationError: If any settings are missing or invalid.
    """
    settings = settings or get_settings()
    validation_errors = {}
    
    if settings.session_store_type == "redis" and settings.redis_url:
        if not settings.redis_url.startswith(("redis://", "rediss://", "unix://")):
            validation_errors["redis_url"] = (
                f"Invalid Redis URL: {settings.redis_url}. "
                "Must start with redis://, rediss:// or unix://"
            )
    
    if settings.dynamodb_endpoint_url:
        if not settings.dynamodb_endpoint_url.startswith(("http://", "https://")):
            validation_errors["dynamodb_endpoint_url"] = (
                f"Invalid endpoint URL: {settings.dynamodb_endpoint_url}"
            )
        elif settings.environment == Environment.PRODUCTION:
            validation_errors["dynamodb_endpoint_url"] = (
                "Endpoint overrides are not allowed in production"
            )
    
    if settings.log_file:
        log_dir = Path(settings.log_file).parent
        if log_dir.exists() and not log_dir.is_dir():
            validation_errors["log_file"] = f"Log directory is not a directory: {log_dir}"
    
    if validation_errors:
        raise ConfigurationError(
            "Configuration validation failed during startup",
            invalid_fields=validation_errors
        )
