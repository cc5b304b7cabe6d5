"""
Redis-based session store implementation.

Each session is a hash ``session:<key>`` holding ``session_value`` and
``session_expiry``. A sorted set ``session:expiry-index`` scored by
expiry plays the role of the secondary index, so expired keys are found
with a range query instead of a keyspace scan. The hash also carries an
EXPIREAT so Redis drops it on its own; the sweep then only has to clear
the index entry.
"""

import logging
from typing import AsyncIterator, Optional

from redis.exceptions import RedisError, WatchError

from errors.exceptions import BackendError, ProvisioningError
from resilience.waiter import WaiterConfig, WaiterTimeoutError, wait_until
from session.record import SessionRecord, coerce_expiry, validate_record
from session.store import SessionStore

KEY_PREFIX = "session:"
EXPIRY_INDEX_KEY = "session:expiry-index"
SCAN_PAGE_SIZE = 500
WATCH_ATTEMPTS = 3

logger = logging.getLogger(__name__)


class RedisSessionStore(SessionStore):
    """
    Redis-backed session store implementation.
    
    Attributes:
        redis_url: Redis connection URL (e.g., "redis://localhost:6379")
        waiter_config: Bounds for the readiness wait in ensure_table
        page_size: Keys fetched per expiry-index page
        client: Redis async client instance (initialized via connect())
    """
    
    def __init__(
        self, 
        redis_url: str, 
        waiter_config: Optional[WaiterConfig] = None,
        page_size: int = SCAN_PAGE_SIZE,
        client=None
    ):
        """
        Initialize the Redis session store.
        
        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            waiter_config: Readiness wait bounds (default 5s x 20 attempts)
            page_size: Keys fetched per expiry-index page
            client: Pre-built client, mainly for tests
        """
        self.redis_url = redis_url
        self.waiter_config = waiter_config or WaiterConfig()
        self.page_size = page_size
        self.client = client
    
    async def connect(self) -> None:
        """
        Create the async Redis client from the configured URL.
        
        The client connects lazily, so this does not fail when Redis is
        down; ensure_table and health_check are where that shows up.
        """
        if self.client is None:
            import redis.asyncio as redis
            self.client = redis.from_url(self.redis_url, decode_responses=True)
    
    async def disconnect(self) -> None:
        """Close the Redis connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
    
    def _get_key(self, session_key: str) -> str:
        return f"{KEY_PREFIX}{session_key}"
    
    def _require_client(self):
        if not self.client:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self.client
    
    async def _ping(self) -> bool:
        return bool(await self._require_client().ping())
    
    async def ensure_table(self) -> None:
        """
        Wait for Redis to answer PING.
        
        Redis needs no schema: the hashes and the expiry index are created
        on first write. Readiness is the only thing to provision.
        """
        self._require_client()
        try:
            await wait_until(self._ping, self.waiter_config, operation_name="redis.ping")
        except WaiterTimeoutError as e:
            raise ProvisioningError(
                f"Redis at {self.redis_url} did not become ready",
                details={"attempts": e.attempts, "last_error": str(e.last_exception)}
            ) from e
    
    async def get(self, session_key: str) -> Optional[SessionRecord]:
        client = self._require_client()
        try:
            data = await client.hgetall(self._get_key(session_key))
        except RedisError as e:
            raise BackendError.from_exception("get", e, session_key) from e
        
        if not data:
            return None
        
        return SessionRecord(
            session_key=session_key,
            session_value=data.get("session_value", ""),
            session_expiry=coerce_expiry(data.get("session_expiry")),
        )
    
    async def put(self, record: SessionRecord) -> None:
        validate_record(record)
        client = self._require_client()
        key = self._get_key(record.session_key)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping={
                    "session_value": record.session_value,
                    "session_expiry": str(record.session_expiry),
                })
                pipe.expireat(key, record.session_expiry)
                pipe.zadd(EXPIRY_INDEX_KEY, {record.session_key: record.session_expiry})
                await pipe.execute()
        except RedisError as e:
            raise BackendError.from_exception("put", e, record.session_key) from e
    
    async def delete(self, session_key: str) -> None:
        client = self._require_client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._get_key(session_key))
                pipe.zrem(EXPIRY_INDEX_KEY, session_key)
                await pipe.execute()
        except RedisError as e:
            raise BackendError.from_exception("delete", e, session_key) from e
    
    async def scan_expired(self, now: int) -> AsyncIterator[str]:
        # Each page resumes just past the last score seen; keys sharing that
        # score are fetched in full, so no page depends on an offset.
        client = self._require_client()
        low = "-inf"
        while True:
            tied: list[str] = []
            try:
                page = await client.zrangebyscore(
                    EXPIRY_INDEX_KEY, low, f"({now}",
                    start=0, num=self.page_size, withscores=True
                )
                full = len(page) >= self.page_size
                if full:
                    last_score = page[-1][1]
                    page = [(key, score) for key, score in page if score != last_score]
                    tied = await client.zrangebyscore(EXPIRY_INDEX_KEY, last_score, last_score)
            except RedisError as e:
                raise BackendError.from_exception("scan_expired", e) from e
            
            for session_key, _ in page:
                yield session_key
            for session_key in tied:
                yield session_key
            
            if not full:
                return
            low = f"({last_score}"
    
    async def update_expiry(self, session_key: str, expiry: int) -> bool:
        """
        Set a new expiry on an existing record.
        
        The existence check and the write run under WATCH, so a delete
        landing in between aborts the transaction instead of leaving an
        expiry-only hash behind. The check is retried on a conflict.
        
        Returns:
            False if the record does not exist
        """
        client = self._require_client()
        key = self._get_key(session_key)
        try:
            async with client.pipeline(transaction=True) as pipe:
                for attempt in range(1, WATCH_ATTEMPTS + 1):
                    try:
                        await pipe.watch(key)
                        if not await pipe.exists(key):
                            return False
                        pipe.multi()
                        pipe.hset(key, "session_expiry", str(expiry))
                        pipe.expireat(key, expiry)
                        pipe.zadd(EXPIRY_INDEX_KEY, {session_key: expiry})
                        await pipe.execute()
                        return True
                    except WatchError:
                        if attempt == WATCH_ATTEMPTS:
                            raise
                        logger.debug("Session %s changed during touch, retrying", session_key)
        except RedisError as e:
            raise BackendError.from_exception("update_expiry", e, session_key) from e
    
    async def health_check(self) -> bool:
        if not self.client:
            return False
        
        try:
            return await self._ping()
        except Exception:
            return False
