"""
Environment configuration loader with validation for the air-cargo service.
"""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

from ..cache.config import ValkeyConfig


class CargoConfig(BaseModel):
    """Configuration model for the booking service with validation."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///aircargo.db", description="Database connection URL"
    )

    # Valkey Cache Configuration
    valkey_host: str = Field(default="localhost", description="Valkey server host")
    valkey_port: int = Field(
        default=6379, ge=1, le=65535, description="Valkey server port"
    )
    valkey_password: Optional[str] = Field(
        default=None, description="Valkey server password"
    )
    valkey_database: int = Field(
        default=0, ge=0, le=15, description="Valkey database number"
    )
    valkey_max_connections: int = Field(
        default=10, ge=1, description="Maximum Valkey connections"
    )
    valkey_socket_timeout: float = Field(
        default=5.0, gt=0, description="Valkey socket timeout in seconds"
    )
    valkey_socket_connect_timeout: float = Field(
        default=5.0, gt=0, description="Valkey connection timeout in seconds"
    )

    # Service Configuration
    debug: bool = Field(default=False, description="Expose internal error details")
    log_level: str = Field(default="INFO", description="Logging level")

    # Cache and lock tuning
    booking_cache_ttl: int = Field(
        default=600, ge=1, description="Booking aggregate cache TTL in seconds"
    )
    route_cache_ttl: int = Field(
        default=1800, ge=1, description="Route search cache TTL in seconds"
    )
    lock_ttl: int = Field(
        default=30, ge=1, description="Booking lease TTL in seconds"
    )
    bulk_batch_size: int = Field(
        default=10, ge=1, description="Bookings updated concurrently per bulk batch"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    def to_valkey_config(self) -> ValkeyConfig:
        """Valkey connection settings for the cache and the booking leases."""
        return ValkeyConfig(
            host=self.valkey_host,
            port=self.valkey_port,
            password=self.valkey_password,
            database=self.valkey_database,
            max_connections=self.valkey_max_connections,
            socket_timeout=self.valkey_socket_timeout,
            socket_connect_timeout=self.valkey_socket_connect_timeout,
        )


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


def load_config(env_file: Optional[str] = None) -> CargoConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        CargoConfig: Validated configuration object

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    if env_file is None:
        env_file = ".env"

    if os.path.exists(env_file):
        load_dotenv(env_file)

    try:
        config_data: Dict[str, Any] = {
            "database_url": os.getenv("DATABASE_URL", "sqlite:///aircargo.db"),
            "valkey_host": os.getenv("VALKEY_HOST", "localhost"),
            "valkey_port": int(os.getenv("VALKEY_PORT", "6379")),
            "valkey_password": os.getenv("VALKEY_PASSWORD") or None,
            "valkey_database": int(os.getenv("VALKEY_DATABASE", "0")),
            "valkey_max_connections": int(os.getenv("VALKEY_MAX_CONNECTIONS", "10")),
            "valkey_socket_timeout": float(os.getenv("VALKEY_SOCKET_TIMEOUT", "5")),
            "valkey_socket_connect_timeout": float(
                os.getenv("VALKEY_SOCKET_CONNECT_TIMEOUT", "5")
            ),
            "debug": _env_flag("CARGO_DEBUG"),
            "log_level": os.getenv("CARGO_LOG_LEVEL", "INFO"),
            "booking_cache_ttl": int(os.getenv("BOOKING_CACHE_TTL", "600")),
            "route_cache_ttl": int(os.getenv("ROUTE_CACHE_TTL", "1800")),
            "lock_ttl": int(os.getenv("BOOKING_LOCK_TTL", "30")),
            "bulk_batch_size": int(os.getenv("BULK_BATCH_SIZE", "10")),
        }
        return CargoConfig(**config_data)
    except ValueError as e:
        raise ValueError(f"Configuration validation failed: {e}") from e


# Global configuration instance
_config: Optional[CargoConfig] = None


def get_config() -> CargoConfig:
    """
    Get the process-wide configuration instance, loading it if necessary.

    Returns:
        CargoConfig: The configuration object
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config
