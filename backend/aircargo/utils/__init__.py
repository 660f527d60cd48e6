"""Configuration, logging and clock helpers."""

from .clock import utcnow, to_naive_utc
from .config import CargoConfig, load_config, get_config
from .logging_config import configure_logging

__all__ = [
    "utcnow",
    "to_naive_utc",
    "CargoConfig",
    "load_config",
    "get_config",
    "configure_logging",
]
