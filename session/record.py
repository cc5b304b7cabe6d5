"""
Persisted session record and the expiry rules shared by every store.

A record has three attributes, named the same way in every backend:
``session_key`` (primary key), ``session_value`` (serialized payload) and
``session_expiry`` (Unix timestamp, indexed for expired-record scans).
"""

import json
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Union

from errors.codes import ErrorCode
from errors.exceptions import BackendError

# Default TTL of 48 hours
DEFAULT_SESSION_TTL = timedelta(hours=48)


@dataclass
class SessionRecord:
    """
    One stored session.
    
    Attributes:
        session_key: Unique identifier derived from the customer/visitor id
        session_value: JSON-serialized mapping of session variables
        session_expiry: Unix timestamp as read from the backend. Usually an
            int; a corrupt stored value is passed through untouched so the
            engine can repair it.
    """
    session_key: str
    session_value: str
    session_expiry: Any


def _ttl_seconds(default_ttl: Union[timedelta, int, float]) -> float:
    if isinstance(default_ttl, timedelta):
        return default_ttl.total_seconds()
    return float(default_ttl)


def coerce_expiry(value: Any) -> Any:
    """
    Convert a numeric expiry to int, leaving anything else as it is.
    
    Backends hand expiry back as strings or Decimals; corrupt values such
    as ``"abc"`` are returned unchanged.
    """
    if isinstance(value, bool) or value is None:
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return value
    if not math.isfinite(number):
        return value
    return int(number)


def is_valid_expiry(value: Any) -> bool:
    """
    Check whether a value can be persisted as ``session_expiry``.
    
    Valid means numeric (int, float, Decimal or numeric string, but not
    bool) with a positive integer value.
    """
    coerced = coerce_expiry(value)
    return isinstance(coerced, int) and not isinstance(coerced, bool) and coerced > 0


def normalize_expiry(
    value: Any,
    now: float,
    default_ttl: Union[timedelta, int, float] = DEFAULT_SESSION_TTL
) -> int:
    """
    Return a persistable expiry for ``value``.
    
    Valid values come back as int unchanged; missing, non-numeric and
    non-positive values are replaced by ``now + default_ttl``. Applying
    the function to its own output is a no-op.
    
    Args:
        value: Candidate expiry
        now: Current Unix time
        default_ttl: TTL used when the value has to be replaced
        
    Returns:
        A positive integer Unix timestamp
    """
    if is_valid_expiry(value):
        return coerce_expiry(value)
    # a clock at or before the epoch still has to yield a positive timestamp
    return max(int(now + _ttl_seconds(default_ttl)), 1)


def serialize_payload(payload: dict[str, Any]) -> str:
    """
    Serialize working state for storage.
    
    Raises:
        TypeError: If a value is not JSON serializable
    """
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def deserialize_payload(raw: Any) -> dict[str, Any]:
    """
    Deserialize a stored ``session_value``.
    
    An empty or missing value is an empty session.
    
    Raises:
        ValueError: If the value is not JSON or does not decode to a mapping
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Session payload must be a mapping, got {type(data).__name__}")
    return data


def validate_record(record: SessionRecord) -> None:
    """
    Reject records that must never reach a backend.
    
    Raises:
        BackendError: VALIDATION_ERROR for an empty key or an invalid expiry
    """
    if not record.session_key:
        raise BackendError(
            "Refusing to store a session record without a key",
            error_code=ErrorCode.VALIDATION_ERROR,
            details={"operation": "put"}
        )
    expiry = record.session_expiry
    if isinstance(expiry, bool) or not isinstance(expiry, int) or expiry <= 0:
        raise BackendError(
            f"Refusing to store session record with invalid expiry {record.session_expiry!r}",
            error_code=ErrorCode.VALIDATION_ERROR,
            details={"operation": "put", "session_key": record.session_key}
        )
