"""
In-process session store for development and tests.
"""

from typing import AsyncIterator, Optional

from session.record import SessionRecord, coerce_expiry, validate_record
from session.store import SessionStore


class InMemorySessionStore(SessionStore):
    """
    Dict-backed store. Records do not survive the process and are not
    shared between workers.
    """
    
    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}
    
    async def ensure_table(self) -> None:
        return None
    
    async def get(self, session_key: str) -> Optional[SessionRecord]:
        record = self._records.get(session_key)
        if record is None:
            return None
        return SessionRecord(record.session_key, record.session_value, record.session_expiry)
    
    async def put(self, record: SessionRecord) -> None:
        validate_record(record)
        self._records[record.session_key] = SessionRecord(
            record.session_key, record.session_value, record.session_expiry
        )
    
    async def delete(self, session_key: str) -> None:
        self._records.pop(session_key, None)
    
    async def scan_expired(self, now: int) -> AsyncIterator[str]:
        # snapshot so callers may delete while iterating
        for key, record in list(self._records.items()):
            expiry = coerce_expiry(record.session_expiry)
            if isinstance(expiry, int) and expiry < now:
                yield key
    
    async def update_expiry(self, session_key: str, expiry: int) -> bool:
        record = self._records.get(session_key)
        if record is None:
            return False
        record.session_expiry = expiry
        return True
    
    async def health_check(self) -> bool:
        return True
    
    def __len__(self) -> int:
        return len(self._records)
    
    def __contains__(self, session_key: object) -> bool:
        return session_key in self._records
