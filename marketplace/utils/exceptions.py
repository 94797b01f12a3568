"""
Custom exceptions for the marketplace

Services raise these; the application's exception handlers turn them into
JSON error responses with the matching status code.
"""


class MarketplaceException(Exception):
    """Base exception class for all marketplace exceptions."""

    status_code = 400

    def __init__(self, message: str, details: dict = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationException(MarketplaceException):
    """Raised when user input is malformed or collides with an existing record."""
    status_code = 422


class AuthException(MarketplaceException):
    """Raised for bad credentials or the wrong login method."""
    status_code = 401


class VerificationException(MarketplaceException):
    """Raised when an OTP cannot be accepted."""

    NOT_FOUND = 'not_found'
    MISMATCH = 'mismatch'
    EXPIRED = 'expired'

    def __init__(self, reason: str, message: str, details: dict = None):
        super().__init__(message, details)
        self.reason = reason
        self.status_code = 404 if reason == self.NOT_FOUND else 400


class AuthorizationException(MarketplaceException):
    """Raised when acting on a resource the caller does not own."""
    status_code = 403


class NotFoundException(MarketplaceException):
    """Raised when a listing, order or user does not exist."""
    status_code = 404
