"""
Custom exceptions for PrintLink.

Exception Hierarchy:
    PrintLinkError (base)
    ├── StoreUnavailableError - Document store backend unreachable (startup failure)
    ├── ValidationError       - Field input rejected before any store call (runtime)
    ├── AuthError             - Identity could not be resolved (runtime, "not ready")
    └── PersistenceError      - Create/update/subscribe failed at the store boundary
        └── ConflictError     - Conditional status update lost a race (opt-in)

Usage:
    Startup errors (StoreUnavailableError) cause the app to fail fast.
    Runtime errors are caught at the route boundary and converted into
    user-facing status text. None of them is retried automatically.
"""

from typing import Optional, Dict, Any


class PrintLinkError(Exception):
    """
    Base exception for all PrintLink errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# STARTUP ERRORS - Application will not start if these occur
# =============================================================================

class StoreUnavailableError(PrintLinkError):
    """
    The configured document store backend could not be reached.

    This is a FATAL error - nothing in the marketplace works without
    the store. The app factory logs it and re-raises.

    Typical causes:
    - MongoDB not running or PRINTLINK_MONGO_URL wrong
    - Unknown PRINTLINK_STORE_BACKEND value
    """

    def __init__(self, backend: str, reason: str = ""):
        message = f"Document store '{backend}' is not available"
        if reason:
            message = f"{message}: {reason}"
        details = {
            "backend": backend,
            "resolution": "Check PRINTLINK_STORE_BACKEND and the backend connection settings in .env"
        }
        super().__init__(message, details)
        self.backend = backend


# =============================================================================
# RUNTIME ERRORS - Application continues, operation fails gracefully
# =============================================================================

class ValidationError(PrintLinkError):
    """
    A field value was rejected by client-side validation.

    Raised before any network call is made, so a failed validation has no
    side effects. The field key identifies the first unsatisfied field in
    schema order; the message is safe to show to the user as-is.
    """

    def __init__(self, field: str, message: str):
        super().__init__(message, {"field": field})
        self.field = field

    def __str__(self) -> str:
        return self.message


class AuthError(PrintLinkError):
    """
    Identity resolution failed.

    Surfaced as a persistent "not ready" state. Mutating operations
    must not run while the caller is unauthenticated.
    """

    def __init__(self, message: str = "Authentication not ready"):
        details = {
            "resolution": "Reload the page to start a new session or supply a valid token"
        }
        super().__init__(message, details)


class PersistenceError(PrintLinkError):
    """
    A create, update or subscribe call failed at the store boundary.

    Shown as a transient status message. The user must re-trigger the
    action; nothing retries automatically.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = details or {}
        if operation:
            error_details["operation"] = operation
        if path:
            error_details["path"] = path
        super().__init__(message, error_details)
        self.operation = operation
        self.path = path


class ConflictError(PersistenceError):
    """
    A conditional status update found a different status than expected.

    Two makers claiming the same Pending request race on the store; the
    loser sees this error only when it asked for it (raise_on_conflict).
    By default the losing transition is silently ignored.
    """

    def __init__(self, path: str, expected: str, actual: Optional[str]):
        message = (
            f"Request status changed before the update was applied "
            f"(expected '{expected}', found '{actual}')"
        )
        details = {
            "expected": expected,
            "actual": actual,
            "resolution": "Refresh the view; another maker may have claimed the job"
        }
        super().__init__(message, "update_if", path, details)
        self.expected = expected
        self.actual = actual
