"""
Exception taxonomy for the session persistence layer.

Store adapters convert every backend library exception into one of these
classes. The session engine catches them, logs them and degrades
gracefully; none of them escape to the hosting framework.
"""

from typing import Any, Optional

from errors.codes import ErrorCode


class SessionError(Exception):
    """
    Base exception class for all session layer errors.
    
    Carries structured error information:
    - error_code: A standardized error code from the ErrorCode enum
    - message: A human-readable error message
    - details: Optional additional context (session key, operation, ...)
    
    Example:
        raise BackendError(
            "Failed to read session",
            details={"operation": "get", "session_key": "cust-42"}
        )
    """
    
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    
    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Initialize a SessionError.
        
        Args:
            message: A human-readable error message
            error_code: The error code (defaults to the class default)
            details: Optional dictionary with additional error context
        """
        self.error_code = error_code or self.default_error_code
        self.message = message
        self.details = details
        super().__init__(message)
    
    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for structured logging.
        
        Returns:
            Dictionary containing error_code, message, and details
        """
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result
    
    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, details={self.details!r})"
        )


class ProvisioningError(SessionError):
    """Table creation or readiness failure. Logged, never fatal to startup."""
    
    default_error_code = ErrorCode.PROVISIONING_FAILED


class BackendError(SessionError):
    """
    Failure of a single get/put/delete/scan call.
    
    Raised for transport and auth failures (SESSION_STORE_UNAVAILABLE) and
    for records rejected before they reach the backend (VALIDATION_ERROR).
    """
    
    default_error_code = ErrorCode.SESSION_STORE_UNAVAILABLE
    
    @classmethod
    def from_exception(
        cls,
        operation: str,
        exc: Exception,
        session_key: Optional[str] = None
    ) -> "BackendError":
        """
        Wrap a backend library exception.
        
        Args:
            operation: Name of the store operation that failed
            exc: The original exception
            session_key: Key involved in the call, if any
            
        Returns:
            A BackendError whose details name the operation and cause
        """
        details: dict[str, Any] = {
            "operation": operation,
            "cause": type(exc).__name__,
        }
        if session_key is not None:
            details["session_key"] = session_key
        error = cls(f"Session store {operation} failed: {exc}", details=details)
        error.__cause__ = exc
        return error


class PersistError(SessionError):
    """A save that could not complete. The engine keeps its dirty flag set."""
    
    default_error_code = ErrorCode.PERSIST_FAILED


class InvalidStateError(SessionError):
    """Save attempted with an empty session key. No record is written."""
    
    default_error_code = ErrorCode.INVALID_STATE
