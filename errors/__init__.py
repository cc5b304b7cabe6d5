"""
Error handling module for the session persistence layer.

This module provides:
- ErrorCode enum for standardized error codes
- SessionError and its taxonomy (ProvisioningError, BackendError,
  PersistError, InvalidStateError)
"""

from errors.codes import ErrorCode
from errors.exceptions import (
    BackendError,
    InvalidStateError,
    PersistError,
    ProvisioningError,
    SessionError,
)

__all__ = [
    "ErrorCode",
    "SessionError",
    "ProvisioningError",
    "BackendError",
    "PersistError",
    "InvalidStateError",
]
