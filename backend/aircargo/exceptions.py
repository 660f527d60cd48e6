"""
Error taxonomy for the air-cargo booking service.

Every error raised by the core services derives from CargoError and carries
a stable category string plus the HTTP status code the API surface maps it to.
"""

from typing import Any, Dict, Optional


class CargoError(Exception):
    """Base class for all domain errors."""

    category = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation used in API error bodies."""
        return {"category": self.category, "message": self.message}


class ValidationError(CargoError):
    """Malformed or missing input."""

    category = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(CargoError):
    """Referenced booking or flight does not exist."""

    category = "NOT_FOUND"
    status_code = 404


class BusinessRuleViolation(CargoError):
    """Requested transition breaks a business rule (e.g. cancelling a delivered booking)."""

    category = "BUSINESS_RULE_VIOLATION"
    status_code = 409


class ConcurrentModificationError(CargoError):
    """Version check failed; another writer committed first. Safe to retry."""

    category = "CONCURRENT_MODIFICATION"
    status_code = 409


class ResourceLockedError(CargoError):
    """Lease on the resource is held by someone else. Retry after backoff."""

    category = "RESOURCE_LOCKED"
    status_code = 423


class DuplicateReferenceError(CargoError):
    """Unique constraint on the reference code was hit. Retry with a new code."""

    category = "DUPLICATE_REFERENCE"
    status_code = 409


class StoreUnavailableError(CargoError):
    """Transport or connection failure talking to the persistence or lock store."""

    category = "STORE_UNAVAILABLE"
    status_code = 503


__all__ = [
    "CargoError",
    "ValidationError",
    "NotFoundError",
    "BusinessRuleViolation",
    "ConcurrentModificationError",
    "ResourceLockedError",
    "DuplicateReferenceError",
    "StoreUnavailableError",
]
