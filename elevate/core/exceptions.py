"""
Custom exception classes for the application.
Provides structured error handling across discovery, payout and processor jobs.
"""

from typing import Any, Optional, Dict


class ElevateException(Exception):
    """Base exception class for the Elevate backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ElevateException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(ElevateException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class SchedulerError(ElevateException):
    """Raised when there's a scheduler error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SCHEDULER_ERROR", details)


class ValidationError(ElevateException):
    """Raised when input is malformed. Never retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(ElevateException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class DuplicateError(ElevateException):
    """Raised when a record already exists. Callers treat it as an idempotent no-op."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DUPLICATE", details)


class RemoteUnavailableError(ElevateException):
    """Raised when a ledger node or provider API cannot be reached. Retried next tick."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "REMOTE_UNAVAILABLE", details)


class AttributionDeniedError(ElevateException):
    """Raised when a subject was already attributed an asset."""

    def __init__(self, address: str, asset_id: str):
        super().__init__(
            f"Asset {asset_id} already attributed to {address}",
            "ATTRIBUTION_DENIED",
            {"address": address, "asset_id": asset_id}
        )


class IntegrationMissingError(ElevateException):
    """Raised when a user has no OAuth integration with a provider."""

    def __init__(self, provider: str, address: str):
        super().__init__(
            f"Missing OAuth authorization for {provider} with address {address}",
            "INTEGRATION_MISSING",
            {"provider": provider, "address": address}
        )


class SigningError(ElevateException):
    """Raised when a payout transaction cannot be signed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SIGNING_ERROR", details)


class InvalidTransitionError(ElevateException):
    """Raised on an illegal payout state transition."""

    def __init__(self, old: str, new: str):
        super().__init__(
            f"Illegal payout transition: {old} -> {new}",
            "INVALID_TRANSITION",
            {"from": old, "to": new}
        )
