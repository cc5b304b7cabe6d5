"""
Session store abstraction.

A session store is the thin capability object the session engine needs
from a key-value backend: get/put/delete by session key, a scan for
expired keys, an expiry-only update, and provisioning of the backing
table. Implementations convert every backend library exception into
BackendError or ProvisioningError.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from session.record import SessionRecord


class SessionStore(ABC):
    """
    Abstract base class for session storage implementations.
    
    Implementations may use Redis, DynamoDB or process memory. Stores hold
    no per-session state and are safe to share between engines; every
    call is a single attempt, only ensure_table waits.
    """
    
    async def connect(self) -> None:
        """Open the backend client. A no-op for stores without one."""
    
    async def disconnect(self) -> None:
        """Release the backend client. A no-op for stores without one."""
    
    @abstractmethod
    async def ensure_table(self) -> None:
        """
        Make sure the session table exists and is ready.
        
        Idempotent. Creates the table (primary key ``session_key``,
        secondary index on ``session_expiry``) when absent and waits for
        it to become ready within the configured waiter bounds.
        
        Raises:
            ProvisioningError: If creation fails or the table never
                becomes ready.
        """
    
    @abstractmethod
    async def get(self, session_key: str) -> Optional[SessionRecord]:
        """
        Retrieve a session record.
        
        Args:
            session_key: Unique identifier for the session.
            
        Returns:
            The stored record, or None if there is none.
            
        Raises:
            BackendError: On transport or auth failure.
        """
    
    @abstractmethod
    async def put(self, record: SessionRecord) -> None:
        """
        Store a record, overwriting any existing one with the same key.
        
        Args:
            record: The record to store.
            
        Raises:
            BackendError: On transport/auth failure, or VALIDATION_ERROR
                for an empty key or a non-positive/non-integer expiry.
        """
    
    @abstractmethod
    async def delete(self, session_key: str) -> None:
        """
        Delete a record.
        
        Idempotent: deleting a key that does not exist is not an error.
        
        Raises:
            BackendError: On transport or auth failure.
        """
    
    @abstractmethod
    def scan_expired(self, now: int) -> AsyncIterator[str]:
        """
        Yield the keys of all records whose expiry is before ``now``.
        
        Keys are produced lazily from one or more backend pages, in no
        particular order. The scan has no side effects.
        
        Raises:
            BackendError: On transport or auth failure while iterating.
        """
    
    @abstractmethod
    async def update_expiry(self, session_key: str, expiry: int) -> bool:
        """
        Rewrite only the expiry of an existing record.
        
        Returns:
            True if the record existed and was updated, False otherwise.
            
        Raises:
            BackendError: On transport or auth failure.
        """
    
    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check connectivity and health of the session store.
        
        Returns:
            True if the store is healthy and accessible, False otherwise.
            
        Note:
            This method must not raise - connectivity issues result in a
            False return value.
        """
