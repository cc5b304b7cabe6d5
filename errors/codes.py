"""
Error code catalog for the session persistence layer.

Every failure raised inside the session layer carries one of these codes,
so log lines and diagnostics can be grouped without parsing messages.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """
    Enumeration of all error codes used by the session layer.
    
    - Provisioning errors: the backing table could not be created or never
      became ready
    - Backend errors: a single get/put/delete/scan call failed
    - Engine errors: a save could not complete, or was attempted in an
      invalid state
    """
    
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    """Table creation or readiness wait failed"""
    
    SESSION_STORE_UNAVAILABLE = "SESSION_STORE_UNAVAILABLE"
    """Transport or auth failure talking to Redis/DynamoDB"""
    
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Record rejected before reaching the backend (empty key, bad expiry)"""
    
    PERSIST_FAILED = "PERSIST_FAILED"
    """A save could not be written; working state stays dirty"""
    
    INVALID_STATE = "INVALID_STATE"
    """Save attempted without a session key"""
    
    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected failure"""
