"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the exception handlers
in main.py. ReplayDetected is internal to settlement and never reaches HTTP.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """Resource not found (404)."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Validation error (400). No side effects have been applied."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidCouponError(DomainError):
    """Coupon rejected at checkout (400). The order is not created."""
    def __init__(self, reason: str, message: str):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details={"reason": reason})
        self.reason = reason


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class ConflictError(DomainError):
    """Resource conflict (409)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


class RateLimitError(DomainError):
    """Rate limit exceeded (429)."""
    def __init__(self, message: str = "Rate limit exceeded", details: dict | None = None, headers: dict | None = None):
        super().__init__(message, status_code=status.HTTP_429_TOO_MANY_REQUESTS, details=details)
        self.headers = headers


class GatewayError(DomainError):
    """
    Payment gateway failure (502): network error, timeout, non-2xx or
    malformed response. Retriable for checkout; never treated as a
    successful verification.
    """
    def __init__(self, message: str, details: dict | None = None, retriable: bool = True):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)
        self.retriable = retriable


class StorageError(DomainError):
    """Persistence failure (503). The current request is aborted."""
    def __init__(self, message: str = "Storage unavailable", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class ReplayDetected(Exception):
    """Settlement callback for an order that is already paid."""
    def __init__(self, transaction_id: str, status: str, payment_status: str):
        super().__init__(f"Order {transaction_id} already settled ({status}, {payment_status})")
        self.transaction_id = transaction_id
        self.status = status
        self.payment_status = payment_status
