"""
Session backend capability interface and the backend override point.

The hosting integration depends only on SessionBackend. Which concrete
backend it builds per request is decided by the registered factory, so
an application can substitute its own implementation without touching
the middleware.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional


class SessionBackend(ABC):
    """Capabilities a per-request session backend must provide."""
    
    @abstractmethod
    async def initialize(self) -> None:
        """Load the session for the current key ("session start")."""
    
    @abstractmethod
    def get(self, name: str, default: Any = None) -> Any:
        """Read a session variable."""
    
    @abstractmethod
    def set(self, name: str, value: Any) -> None:
        """Write a session variable."""
    
    @abstractmethod
    async def save_data(self) -> bool:
        """Persist pending changes ("response finalize")."""
    
    @abstractmethod
    async def destroy_session(self) -> None:
        """Delete the session ("logout")."""


# Builds a backend for one request from its resolved session key
SessionBackendFactory = Callable[[str], SessionBackend]

_backend_factory: Optional[SessionBackendFactory] = None


def register_session_backend(factory: SessionBackendFactory) -> None:
    """
    Make ``factory`` the active session backend.
    
    Args:
        factory: Callable taking a session key and returning a backend
    """
    global _backend_factory
    _backend_factory = factory


def get_session_backend_factory() -> Optional[SessionBackendFactory]:
    """Return the registered factory, or None when nothing was registered."""
    return _backend_factory


def reset_session_backend_factory() -> None:
    """Forget the registered factory."""
    global _backend_factory
    _backend_factory = None
