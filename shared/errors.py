"""
Shared error handling for the contract read proxy.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str


class ProxyException(Exception):
    """Base exception for proxy services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message, code=self.code)


class UpstreamCallFailed(ProxyException):
    """The chain gateway failed while a client was waiting on it."""

    def __init__(self, message: str = "Upstream call failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_CALL_FAILED", message, details)


class StoreError(ProxyException):
    """Cache store read or write failed."""

    def __init__(self, message: str = "Cache store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)


class NotFound(ProxyException):
    """Unknown route or contract member."""

    status_code = 404

    def __init__(self, message: str = "API Endpoint Not Found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ValidationError(ProxyException):
    """Request arguments do not fit the contract member's inputs."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConfigurationError(ProxyException):
    """Service configuration is unusable."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)
