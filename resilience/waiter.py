"""
Bounded readiness waiter for session store provisioning.

Table provisioning is the only session layer operation allowed to loop:
it polls the backend until the table (or server) reports ready, with a
fixed delay between polls and a hard cap on attempts. Every other store
call is single-attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class WaiterConfig:
    """
    Configuration for a readiness wait.
    
    Attributes:
        delay: Seconds to sleep between polls. Default is 5.0.
        max_attempts: Maximum number of polls before giving up.
            Default is 20 (100 seconds in total with the default delay).
    """
    delay: float = 5.0
    max_attempts: int = 20
    
    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay cannot be negative")


class WaiterTimeoutError(Exception):
    """
    Raised when the probe never reported ready within max_attempts.
    
    Carries the number of polls made and the last exception raised by
    the probe (None if the probe simply kept returning False).
    """
    
    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Optional[Exception] = None,
        operation_name: Optional[str] = None
    ):
        self.attempts = attempts
        self.last_exception = last_exception
        self.operation_name = operation_name
        super().__init__(message)


async def wait_until(
    probe: Callable[[], Awaitable[bool]],
    config: Optional[WaiterConfig] = None,
    operation_name: Optional[str] = None
) -> int:
    """
    Poll an async probe until it returns True.
    
    A probe that raises counts as "not ready yet"; the exception is kept
    and attached to the WaiterTimeoutError if the wait runs out.
    
    Example usage:
        await wait_until(
            table_is_active,
            WaiterConfig(delay=5, max_attempts=20),
            operation_name="dynamodb.table_exists"
        )
    
    Args:
        probe: Async callable returning True once the resource is ready
        config: Optional WaiterConfig (defaults to 5s delay, 20 attempts)
        operation_name: Optional name for logging purposes
        
    Returns:
        The number of polls it took to observe readiness
        
    Raises:
        WaiterTimeoutError: When max_attempts polls never saw readiness
    """
    effective_config = config or WaiterConfig()
    op_name = operation_name or getattr(probe, "__name__", "probe")
    last_exception: Optional[Exception] = None
    
    for attempt in range(1, effective_config.max_attempts + 1):
        try:
            if await probe():
                if attempt > 1:
                    logger.info(
                        "'%s' ready after %d attempts",
                        op_name,
                        attempt,
                        extra={"extra_data": {"operation": op_name, "attempts": attempt}}
                    )
                return attempt
        except Exception as e:
            last_exception = e
            logger.debug(
                "Readiness probe '%s' raised %s: %s",
                op_name,
                type(e).__name__,
                str(e),
            )
        
        if attempt == effective_config.max_attempts:
            break
        
        logger.debug(
            "'%s' not ready (attempt %d/%d), waiting %.2f seconds",
            op_name,
            attempt,
            effective_config.max_attempts,
            effective_config.delay,
        )
        await asyncio.sleep(effective_config.delay)
    
    logger.error(
        "'%s' not ready after %d attempts",
        op_name,
        effective_config.max_attempts,
        extra={
            "extra_data": {
                "operation": op_name,
                "attempts": effective_config.max_attempts,
                "last_error": str(last_exception) if last_exception else None,
            }
        }
    )
    raise WaiterTimeoutError(
        f"Operation '{op_name}' not ready after {effective_config.max_attempts} attempts",
        attempts=effective_config.max_attempts,
        last_exception=last_exception,
        operation_name=op_name
    )
