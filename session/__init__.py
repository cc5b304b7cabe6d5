"""
Session persistence layer.

Stores per-user session state in an external key-value store (Redis or
DynamoDB, or process memory for development) and manages its lifecycle:
load on request start, dirty tracking, save on request end, and the
periodic sweep of expired sessions.
"""

from session.backend import (
    SessionBackend,
    get_session_backend_factory,
    register_session_backend,
    reset_session_backend_factory,
)
from session.engine import ReclaimReport, SessionEngine, SessionState, reclaim_expired
from session.factory import create_session_store, engine_factory
from session.memory_store import InMemorySessionStore
from session.record import (
    DEFAULT_SESSION_TTL,
    SessionRecord,
    is_valid_expiry,
    normalize_expiry,
)
from session.store import SessionStore

__all__ = [
    "DEFAULT_SESSION_TTL",
    "InMemorySessionStore",
    "ReclaimReport",
    "SessionBackend",
    "SessionEngine",
    "SessionRecord",
    "SessionState",
    "SessionStore",
    "create_session_store",
    "engine_factory",
    "get_session_backend_factory",
    "is_valid_expiry",
    "normalize_expiry",
    "reclaim_expired",
    "register_session_backend",
    "reset_session_backend_factory",
]
