"""
Shared error handling for the retailer access layer.

Every failure raised by the request pipeline is an ``AccessLayerException``
subclass carrying an ``ErrorCode`` discriminant, so callers branch on
``exc.code`` instead of parsing messages.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Closed set of error kinds raised by the access layer."""

    CREDENTIALS_ERROR = "CREDENTIALS_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    REQUEST_FAILED = "REQUEST_FAILED"


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for access layer services."""

    http_status: int = 500

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code.value,
            message=self.message,
            details=self.details
        )


class CredentialsError(AccessLayerException):
    """Client credentials are missing or were rejected by the token authority."""

    http_status = 401

    def __init__(self, message: str = "Invalid API credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.CREDENTIALS_ERROR, message, details)


class NetworkError(AccessLayerException):
    """Transport failure reaching the token authority or the partner API."""

    http_status = 502

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.NETWORK_ERROR, message, details)


class RateLimitError(AccessLayerException):
    """Partner quota exhausted; retry only after ``retry_after_seconds``."""

    http_status = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after_seconds: int = 60,
        status: int = 429,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after_seconds = retry_after_seconds
        self.status = status
        merged = {"retry_after_seconds": retry_after_seconds, "status": status}
        merged.update(details or {})
        super().__init__(ErrorCode.RATE_LIMIT_ERROR, message, merged)


class RequestFailedError(AccessLayerException):
    """Any other non-2xx response from the partner API."""

    def __init__(self, status: int, body: Any, message: Optional[str] = None):
        self.status = status
        self.body = body
        if 400 <= status < 600:
            self.http_status = status
        else:
            self.http_status = 502
        super().__init__(
            ErrorCode.REQUEST_FAILED,
            message or f"API request failed: {status}",
            {"status": status, "body": body},
        )
