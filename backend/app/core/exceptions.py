"""
Custom Exceptions for the College Portal
========================================

Every expected failure is a PortalError tagged with an ErrorKind. Services
return them inside a Result (see app.core.types); the HTTP boundary raises
them and a single exception handler turns them into the response envelope.

Usage:
    from app.core.exceptions import NotFoundError
    from app.core.types import Result

    if not material:
        return Result.fail(NotFoundError("Material"))
"""

import enum
from typing import Optional, Any, Dict, List


class ErrorKind(str, enum.Enum):
    """Closed set of failure categories, each mapped to one HTTP status"""
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INTERNAL: 500,
}


class PortalError(Exception):
    """Base exception for all portal errors"""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
        errors: Optional[List[Dict[str, str]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        self.errors = errors or []
        self.headers = headers or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Validation Errors (400)
# ============================================

class ValidationError(PortalError):
    """Input data validation failed"""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[List[Dict[str, str]]] = None,
    ):
        if errors is None and field:
            errors = [{"field": field, "message": message}]
        super().__init__(message, code="VALIDATION_ERROR", errors=errors)
        if field:
            self.details["field"] = field


class WeakPasswordError(ValidationError):
    """Password rejected by the password policy"""

    def __init__(self, reason: str, field: str = "password"):
        super().__init__(reason, field=field)
        self.code = "WEAK_PASSWORD"


class InvalidFileTypeError(ValidationError):
    """File type not in the upload allow-lists"""

    def __init__(self, file_type: str, allowed_types: list):
        super().__init__(
            f"File type '{file_type}' is not allowed. Allowed: {', '.join(allowed_types)}",
            field="file",
        )
        self.code = "INVALID_FILE_TYPE"
        self.details["allowed_types"] = allowed_types


class FileTooLargeError(ValidationError):
    """Upload exceeds the configured size limit"""

    def __init__(self, max_size: int):
        if max_size >= 1024 * 1024:
            limit = f"{max_size // 1024 // 1024}MB"
        else:
            limit = f"{max_size} bytes"
        super().__init__(
            f"File too large. Maximum size is {limit}",
            field="file",
        )
        self.code = "FILE_TOO_LARGE"
        self.details["max_size"] = max_size


# ============================================
# Authentication & Authorization Errors
# ============================================

class AuthenticationError(PortalError):
    """User authentication failed (401)"""

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, code="AUTH_FAILED")


class InvalidCredentialsError(AuthenticationError):
    """Unknown account or wrong password, deliberately indistinguishable"""

    def __init__(self):
        super().__init__("Invalid email or password")
        self.code = "INVALID_CREDENTIALS"


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""

    def __init__(self):
        super().__init__("Token has expired")
        self.code = "TOKEN_EXPIRED"


class InvalidTokenError(AuthenticationError):
    """JWT token is invalid"""

    def __init__(self):
        super().__init__("Invalid token")
        self.code = "INVALID_TOKEN"


class SessionExpiredError(AuthenticationError):
    """Session exceeded its maximum age or was ended"""

    def __init__(self):
        super().__init__("Session has expired. Please log in again")
        self.code = "SESSION_EXPIRED"


class AuthorizationError(PortalError):
    """User not authorized for this action (403)"""

    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, code="NOT_AUTHORIZED")


class InactiveAccountError(AuthorizationError):
    """Credentials are valid but the account is disabled"""

    def __init__(self):
        super().__init__("Account is disabled")
        self.code = "ACCOUNT_DISABLED"


class PathTraversalError(AuthorizationError):
    """Stored file path escapes its root directory"""

    def __init__(self):
        super().__init__("Access denied")
        self.code = "PATH_REJECTED"


# ============================================
# Not Found Errors
# ============================================

class NotFoundError(PortalError):
    """Base class for not found errors"""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource_type: str, resource_id: Optional[str] = None):
        super().__init__(f"{resource_type} not found", code="NOT_FOUND")
        self.details["resource_type"] = resource_type
        if resource_id:
            self.details["resource_id"] = resource_id


class StoredFileNotFoundError(NotFoundError):
    """Database row exists but the file is missing on disk"""

    def __init__(self):
        super().__init__("File")
        self.code = "FILE_NOT_FOUND"


# ============================================
# Rate Limiting Errors (429)
# ============================================

class RateLimitError(PortalError):
    """Too many requests for a category"""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: Optional[int] = None):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(message, code="RATE_LIMITED", headers=headers)
        if retry_after:
            self.details["retry_after"] = retry_after


class AccountLockedError(RateLimitError):
    """Too many failed logins for an account or address"""

    def __init__(self, retry_after: int):
        minutes = max(1, -(-retry_after // 60))
        super().__init__(
            "Too many failed login attempts. "
            f"Account temporarily locked, try again in {minutes} minutes.",
            retry_after=retry_after,
        )
        self.code = "ACCOUNT_LOCKED"


# ============================================
# Internal Errors (500)
# ============================================

class InternalError(PortalError):
    """Unexpected failure. The client only ever sees a generic message"""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, code="INTERNAL_ERROR")


GENERIC_INTERNAL_MESSAGE = "Internal server error"


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: PortalError) -> Dict[str, Any]:
    """Convert exception to the API response envelope"""
    message = error.message
    if error.kind is ErrorKind.INTERNAL:
        message = GENERIC_INTERNAL_MESSAGE
    body: Dict[str, Any] = {
        "success": False,
        "message": message,
    }
    if error.errors and error.kind is not ErrorKind.INTERNAL:
        body["errors"] = error.errors
    return body
