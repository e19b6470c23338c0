"""
Custom Exceptions for Reflets

Hierarchical exception classes for proper error handling across layers.
Each class carries the HTTP status it maps to; handlers in main.py use it.
"""

from datetime import datetime
from typing import Optional, Dict, Any


class RefletsError(Exception):
    """Base exception for all Reflets errors."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
        field: Optional[str] = None,
        code: Optional[str] = None,
        error: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        self.field = field
        self.code = code
        if error:
            self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        body: Dict[str, Any] = {
            "error": self.error,
            "message": self.message,
        }
        if self.field:
            body["field"] = self.field
        if self.code:
            body["code"] = self.code
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RefletsError):
    """Raised when input validation fails."""

    status_code = 400
    error = "Validation failed"


class PaymentRequiredError(RefletsError):
    """Raised when a checkout session has not been paid."""

    status_code = 400
    error = "Payment not completed"


class DatabaseError(RefletsError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None,
        field: Optional[str] = None,
        error: Optional[str] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error, field=field, error=error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""

    status_code = 404
    error = "Not found"


class DuplicateError(DatabaseError):
    """Raised when a unique constraint rejects a write."""

    status_code = 409
    error = "Duplicate"


class ConflictError(RefletsError):
    """Raised when a request conflicts with existing state (slug taken, etc.)."""

    status_code = 409
    error = "Conflict"


class AccountExistsError(RefletsError):
    """Raised when the identity provider already knows this email."""

    status_code = 400
    error = "Account error"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            message,
            original_error=original_error,
            field="email",
            code="ACCOUNT_EXISTS_OR_ERROR",
        )


class GatewayError(RefletsError):
    """Raised when an upstream provider fails. Never leaks provider internals."""

    status_code = 500

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)
        self.provider = provider


class PaymentGatewayError(GatewayError):
    """Raised when Stripe operations fail or time out."""

    error = "Payment provider error"


class SignatureVerificationError(PaymentGatewayError):
    """Raised when a webhook payload fails signature verification."""

    status_code = 400
    error = "Invalid signature"


class IdentityGatewayError(GatewayError):
    """Raised when Supabase Auth operations fail or time out."""

    error = "Failed to create account"


class ProvisioningError(RefletsError):
    """Raised when the account saga fails after payment; client should contact support."""

    status_code = 500


class RateLimitError(RefletsError):
    """Raised when a caller exceeds its request budget."""

    status_code = 429
    error = "Too many requests"

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: Optional[int] = None,
        reset_at: Optional[datetime] = None,
        remaining: int = 0,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error=original_error)
        self.retry_after = retry_after
        self.reset_at = reset_at
        self.remaining = remaining

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "retryAfter": self.retry_after,
        }

    def headers(self) -> Dict[str, str]:
        """Standard rate-limit response headers."""
        headers = {
            "Retry-After": str(self.retry_after if self.retry_after is not None else 60),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if self.reset_at is not None:
            headers["X-RateLimit-Reset"] = self.reset_at.isoformat()
        return headers


class ConfigurationError(RefletsError):
    """Raised when configuration is missing or invalid."""

    status_code = 503
    error = "Service not configured"

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class WebhookProcessingError(RefletsError):
    """Raised when a claimed webhook event fails; Stripe redelivers on 5xx."""

    status_code = 500
    error = "Webhook processing failed"
