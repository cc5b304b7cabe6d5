"""
Resilience patterns for the session persistence layer.

Provides the bounded readiness waiter used while provisioning the
session table.
"""

from resilience.waiter import (
    WaiterConfig,
    WaiterTimeoutError,
    wait_until,
)

__all__ = [
    "WaiterConfig",
    "WaiterTimeoutError",
    "wait_until",
]
