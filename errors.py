"""Error kinds shared by the route handlers and the business logic.

Every class carries the ``error`` value written to the response envelope and
the HTTP status it maps to.
"""
from typing import Any, List, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    error_kind = "ServerError"
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        self.message = message
        self.errors = errors
        super().__init__(message)

    def to_dict(self):
        body = {"error": self.error_kind, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(StorefrontError):
    """Malformed or missing input, raised before any write."""

    error_kind = "ValidationError"
    status_code = 400


class Unauthorized(StorefrontError):
    error_kind = "Unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Forbidden(StorefrontError):
    error_kind = "Forbidden"
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFound(StorefrontError):
    error_kind = "NotFound"
    status_code = 404


class ConflictError(StorefrontError):
    """Uniqueness violation, e.g. a duplicate slug or email."""

    error_kind = "ConflictError"
    status_code = 409


class Unavailable(StorefrontError):
    """Referenced catalog item exists but is inactive."""

    error_kind = "Unavailable"
    status_code = 409


class InsufficientStock(StorefrontError):
    error_kind = "InsufficientStock"
    status_code = 409


class TransactionAborted(StorefrontError):
    """Raised when a transaction keeps conflicting after all retries."""

    error_kind = "ConflictError"
    status_code = 409

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts, please retry")


class ServerError(StorefrontError):
    error_kind = "ServerError"
    status_code = 500


class ExternalServiceError(StorefrontError):
    """An integration (fulfillment, payment, feed) failed or answered badly."""

    error_kind = "ServerError"
    status_code = 502

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")
