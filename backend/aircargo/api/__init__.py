"""
HTTP API for the air-cargo booking service.
"""

from .app import create_app, build_services
from .errors import register_exception_handlers

__all__ = [
    "create_app",
    "build_services",
    "register_exception_handlers",
]
