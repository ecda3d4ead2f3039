"""Authentication error taxonomy.

Every error carries the HTTP status and the stable error code the API layer
reports, so handlers only need to raise.
"""

from typing import Optional


class AuthError(Exception):
    status = 500
    code = "INTERNAL_ERROR"
    public_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.extra = extra


class ValidationError(AuthError):
    status = 400
    code = "VALIDATION_ERROR"
    public_message = "Invalid request"


class AuthenticationError(AuthError):
    status = 401
    code = "AUTH_ERROR"
    public_message = "Invalid credentials"


class AuthorizationError(AuthError):
    status = 403
    code = "PERMISSION_DENIED"
    public_message = "Permission denied"


class NotFoundError(AuthError):
    status = 404
    code = "NOT_FOUND"
    public_message = "Not found"


class LockedError(AuthError):
    status = 423
    code = "ACCOUNT_LOCKED"
    public_message = "Account temporarily locked after too many failed attempts"


class RateLimitError(AuthError):
    status = 429
    code = "RATE_LIMITED"
    public_message = "Too many requests"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None, **extra):
        super().__init__(message, **extra)
        self.retry_after = retry_after


class InternalError(AuthError):
    pass


class ConfigurationError(AuthError):
    code = "CONFIGURATION_ERROR"
    public_message = "Service misconfigured"


class StorageError(InternalError):
    code = "STORAGE_ERROR"
    public_message = "Database operation failed"


class StorageTimeoutError(StorageError):
    code = "STORAGE_TIMEOUT"
    public_message = "Database operation timed out"


class StorageValidationError(ValidationError):
    code = "STORAGE_VALIDATION_ERROR"
    public_message = "Invalid parameters"


class StorageRateLimitError(RateLimitError):
    code = "STORAGE_RATE_LIMITED"
    public_message = "Too many database operations"


class CipherError(InternalError):
    code = "CIPHER_ERROR"
