"""
Session engine: the lifecycle of one session's working state.

One engine is bound to one request. It loads the record for its session
key on initialize, tracks changes with a dirty flag, repairs invalid
expiry values before anything is written, and persists on save_data.
Public operations never raise: backend failures are logged, recorded in
``last_error`` and the session degrades to request-only state.

    UNINITIALIZED -> LOADED -> (MUTATED)* -> SAVED | DESTROYED
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional, Union

from errors.codes import ErrorCode
from errors.exceptions import BackendError, InvalidStateError, PersistError, SessionError
from session.backend import SessionBackend
from session.record import (
    DEFAULT_SESSION_TTL,
    SessionRecord,
    coerce_expiry,
    deserialize_payload,
    is_valid_expiry,
    normalize_expiry,
    serialize_payload,
)
from session.store import SessionStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a SessionEngine."""
    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"
    MUTATED = "mutated"
    SAVED = "saved"
    DESTROYED = "destroyed"


@dataclass
class ReclaimReport:
    """
    Outcome of one reclamation sweep.
    
    Attributes:
        scanned: Expired keys returned by the scan
        deleted: Keys deleted successfully
        failed: Keys whose delete failed
        scan_error: Set when the scan itself failed part way
    """
    scanned: int = 0
    deleted: int = 0
    failed: list[str] = field(default_factory=list)
    scan_error: Optional[SessionError] = None
    
    @property
    def complete(self) -> bool:
        """True when every expired key found was deleted."""
        return self.scan_error is None and not self.failed
    
    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "scanned": self.scanned,
            "deleted": self.deleted,
            "failed": list(self.failed),
        }
        if self.scan_error is not None:
            result["scan_error"] = self.scan_error.to_dict()
        return result


def _as_session_error(operation: str, exc: Exception, session_key: Optional[str] = None) -> SessionError:
    if isinstance(exc, SessionError):
        return exc
    error = BackendError.from_exception(operation, exc, session_key)
    error.error_code = ErrorCode.INTERNAL_ERROR
    return error


def _log_error(message: str, error: SessionError, *args: Any) -> None:
    logger.error(
        message + ": %s",
        *args,
        error.message,
        exc_info=error.error_code is ErrorCode.INTERNAL_ERROR,
        extra={"extra_data": error.to_dict()}
    )


async def reclaim_expired(store: SessionStore, now: int) -> ReclaimReport:
    """
    Delete every record whose expiry is before ``now``.
    
    The full key list is collected from the scan before any delete, so a
    store whose scan reads live state is not disturbed by the deletes. A
    failed delete is logged and the sweep carries on; nothing is rolled
    back.
    
    Args:
        store: Store to sweep
        now: Cut-off Unix timestamp; keys with expiry >= now are kept
        
    Returns:
        A ReclaimReport describing the sweep
    """
    report = ReclaimReport()
    keys: list[str] = []
    
    try:
        async for session_key in store.scan_expired(now):
            keys.append(session_key)
    except Exception as e:
        report.scan_error = _as_session_error("scan_expired", e)
        _log_error("Error scanning for expired sessions", report.scan_error)
    
    report.scanned = len(keys)
    
    for session_key in keys:
        try:
            await store.delete(session_key)
        except Exception as e:
            report.failed.append(session_key)
            _log_error("Error deleting expired session %s", _as_session_error("delete", e, session_key), session_key)
            continue
        report.deleted += 1
    
    level = logging.INFO if report.complete else logging.WARNING
    logger.log(
        level,
        "Cleanup of expired sessions completed: %d deleted, %d failed",
        report.deleted,
        len(report.failed),
        extra={"extra_data": {"now": now, **report.to_dict()}}
    )
    return report


class SessionEngine(SessionBackend):
    """
    Working state of one session for the duration of a request.
    
    Example:
        engine = SessionEngine(store, "cust-42")
        await engine.initialize()
        engine.set("cart_total", 59.99)
        await engine.save_data()
    
    Attributes:
        store: The session store records are read from and written to
        default_ttl: Lifetime given to new sessions and to repaired expiries
        last_error: Most recent error of a public operation, or None
    """
    
    def __init__(
        self,
        store: SessionStore,
        session_key: Optional[str] = "",
        default_ttl: Union[timedelta, int, float] = DEFAULT_SESSION_TTL,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            store: Session store to use
            session_key: Identifier of the session; empty for an anonymous
                visitor, in which case nothing is ever persisted
            default_ttl: Default session lifetime (48 hours)
            clock: Returns the current Unix time
        """
        self.store = store
        self.default_ttl = default_ttl
        self.last_error: Optional[SessionError] = None
        self._session_key = str(session_key) if session_key else ""
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expiry: Any = None
        self._dirty = False
        self._has_record = False
        self._state = SessionState.UNINITIALIZED
    
    @property
    def session_key(self) -> str:
        return self._session_key
    
    @property
    def dirty(self) -> bool:
        return self._dirty
    
    @property
    def state(self) -> SessionState:
        return self._state
    
    @property
    def expiry(self) -> Any:
        return self._expiry
    
    def _now(self) -> int:
        return int(self._clock())
    
    def has_session(self) -> bool:
        """A session is active when it holds data or already exists in the store."""
        return bool(self._data) or self._has_record
    
    # Initialize
    
    async def initialize(self) -> None:
        """
        Load the record for the session key into working state.
        
        A missing, expired or unreadable record gives an empty session.
        The expiry is repaired right away when invalid, which marks the
        session dirty.
        """
        self.last_error = None
        self._data = {}
        self._expiry = None
        self._dirty = False
        self._has_record = False
        
        record = await self._load_record()
        if record is not None:
            self._adopt(record)
        
        self._repair_expiry("initialize")
        self._state = SessionState.LOADED
    
    async def _load_record(self) -> Optional[SessionRecord]:
        if not self._session_key:
            logger.debug("Attempted to get session data but session key is empty")
            return None
        
        try:
            record = await self.store.get(self._session_key)
        except Exception as e:
            self.last_error = _as_session_error("get", e, self._session_key)
            _log_error(
                "Error getting session data for key %s, starting an empty session",
                self.last_error,
                self._session_key
            )
            return None
        
        if record is None:
            logger.debug("No session data found for key: %s", self._session_key)
            return None
        
        expiry = coerce_expiry(record.session_expiry)
        if is_valid_expiry(expiry) and expiry < self._now():
            logger.info(
                "Session for key %s expired at %d, starting an empty session",
                self._session_key,
                expiry
            )
            return None
        
        return record
    
    def _adopt(self, record: SessionRecord) -> None:
        self._has_record = True
        self._expiry = record.session_expiry
        try:
            self._data = deserialize_payload(record.session_value)
        except ValueError as e:
            logger.warning(
                "Discarding unreadable session payload for key %s: %s",
                self._session_key,
                str(e)
            )
            self._data = {}
            self._dirty = True
            return
        logger.debug("Session data retrieved for key: %s", self._session_key)
    
    def _repair_expiry(self, stage: str) -> bool:
        """Normalize the in-memory expiry; True (and dirty) if it had to change."""
        if is_valid_expiry(self._expiry):
            self._expiry = coerce_expiry(self._expiry)
            return False
        
        invalid = self._expiry
        self._expiry = normalize_expiry(invalid, self._clock(), self.default_ttl)
        self._dirty = True
        
        if invalid is None and not self._has_record:
            logger.debug("New session expiry set to %d", self._expiry)
        else:
            logger.warning(
                "Session expiry was invalid (%r) during %s; reset to %d",
                invalid,
                stage,
                self._expiry,
                extra={"extra_data": {"stage": stage, "invalid_expiry": repr(invalid)}}
            )
        return True
    
    # Read / write
    
    def get(self, name: str, default: Any = None) -> Any:
        """Return a session variable, or ``default`` when it is not set."""
        return self._data.get(name, default)
    
    def set(self, name: str, value: Any) -> None:
        """Set a session variable and mark the session dirty."""
        self._data[name] = value
        self._mark_mutated()
    
    def remove(self, name: str) -> None:
        """Unset a session variable. Removing an unset variable changes nothing."""
        if name in self._data:
            del self._data[name]
            self._mark_mutated()
    
    def _mark_mutated(self) -> None:
        self._dirty = True
        if self._state is not SessionState.DESTROYED:
            self._state = SessionState.MUTATED
    
    def get_session_data(self) -> dict[str, Any]:
        """Return a copy of the working state."""
        return dict(self._data)
    
    # Save
    
    async def save_data(self) -> bool:
        """
        Persist working state if it changed.
        
        Skipped when the session was destroyed, is not dirty or holds
        nothing worth storing. An empty session key aborts with
        InvalidStateError; a failed write leaves the session dirty with
        PersistError. Both are reported through ``last_error``.
        
        Returns:
            True if a record was written
        """
        self.last_error = None
        
        if self._state is SessionState.DESTROYED:
            logger.debug("Session was destroyed, nothing to save")
            return False
        
        if not self._session_key:
            self.last_error = InvalidStateError(
                "Cannot save session data: session key is empty. Aborting save.",
                details={"dirty": self._dirty}
            )
            logger.error(self.last_error.message, extra={"extra_data": self.last_error.to_dict()})
            return False
        
        if not self._dirty or not self.has_session():
            return False
        
        self._repair_expiry("save")
        expiry = self._expiry
        
        try:
            value = serialize_payload(self._data)
        except (TypeError, ValueError) as e:
            self.last_error = PersistError(
                f"Session data for key {self._session_key} is not serializable: {e}",
                details={"session_key": self._session_key}
            )
            _log_error("Validation error in save_data for key %s", self.last_error, self._session_key)
            return False
        
        try:
            await self.store.put(SessionRecord(self._session_key, value, expiry))
        except Exception as e:
            cause = _as_session_error("put", e, self._session_key)
            error = PersistError(
                f"Error saving session data: {cause.message}",
                details={"session_key": self._session_key, "cause": cause.error_code.value}
            )
            error.__cause__ = cause
            self.last_error = error
            _log_error("Error saving session data for key %s", error, self._session_key)
            return False
        
        self._expiry = expiry
        self._dirty = False
        self._has_record = True
        self._state = SessionState.SAVED
        logger.info("Session data saved for key: %s with expiry: %d", self._session_key, expiry)
        return True
    
    # Destroy
    
    async def destroy_session(self) -> None:
        """Delete the stored session and clear working state. Idempotent."""
        self.last_error = None
        session_key = self._session_key
        
        self._data = {}
        self._expiry = None
        self._dirty = False
        self._has_record = False
        self._state = SessionState.DESTROYED
        
        if session_key:
            await self.delete_session(session_key)
    
    async def delete_session(self, session_key: str) -> bool:
        """
        Delete the record for ``session_key``.
        
        Returns:
            True if the store accepted the delete
        """
        try:
            await self.store.delete(session_key)
        except Exception as e:
            self.last_error = _as_session_error("delete", e, session_key)
            _log_error("Error deleting session %s", self.last_error, session_key)
            return False
        
        logger.info("Session deleted for key: %s", session_key)
        return True
    
    # Touch
    
    async def update_session_timestamp(self, session_key: str, timestamp: Any) -> bool:
        """
        Set a new expiry on an existing record without rewriting its payload.
        
        An invalid timestamp is repaired to now + default TTL first.
        
        Returns:
            True if a stored record was updated
        """
        self.last_error = None
        
        if not session_key:
            self.last_error = InvalidStateError("Cannot update session timestamp: session key is empty")
            logger.error(self.last_error.message)
            return False
        
        expiry = normalize_expiry(timestamp, self._clock(), self.default_ttl)
        if expiry != coerce_expiry(timestamp):
            logger.warning(
                "Invalid session timestamp %r for key %s; using %d",
                timestamp,
                session_key,
                expiry
            )
        
        try:
            updated = await self.store.update_expiry(session_key, expiry)
        except Exception as e:
            self.last_error = _as_session_error("update_expiry", e, session_key)
            _log_error("Error updating session timestamp for key %s", self.last_error, session_key)
            return False
        
        if session_key == self._session_key:
            self._expiry = expiry
        
        if updated:
            logger.info("Session timestamp updated for key: %s", session_key)
        else:
            logger.debug("No stored session to update for key: %s", session_key)
        return updated
    
    async def touch(self) -> bool:
        """Extend this session to now + default TTL."""
        expiry = normalize_expiry(None, self._clock(), self.default_ttl)
        return await self.update_session_timestamp(self._session_key, expiry)
    
    # Reclamation
    
    async def cleanup_sessions(self, now: Optional[int] = None) -> ReclaimReport:
        """Run one reclamation sweep against this engine's store."""
        return await reclaim_expired(self.store, self._now() if now is None else int(now))
