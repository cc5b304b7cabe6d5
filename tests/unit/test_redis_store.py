"""
Unit tests for the Redis session store.

The redis.asyncio client is replaced by the mock_redis fixture; these
tests check the commands issued and the error translation.
"""

from unittest.mock import call, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, WatchError

from errors.codes import ErrorCode
from errors.exceptions import BackendError, ProvisioningError
from resilience.waiter import WaiterConfig
from session.record import SessionRecord
from session.redis_store import EXPIRY_INDEX_KEY, WATCH_ATTEMPTS, RedisSessionStore

NOW = 1705314600


@pytest.fixture
def store(mock_redis):
    return RedisSessionStore(
        "redis://localhost:6379/0",
        waiter_config=WaiterConfig(delay=0, max_attempts=3),
        page_size=2,
        client=mock_redis,
    )


class TestRedisGet:
    
    @pytest.mark.asyncio
    async def test_get_existing(self, store, mock_redis):
        mock_redis.hgetall.return_value = {
            "session_value": '{"cart_total":59.99}',
            "session_expiry": str(NOW),
        }
        
        record = await store.get("cust-42")
        
        mock_redis.hgetall.assert_awaited_once_with("session:cust-42")
        assert record == SessionRecord("cust-42", '{"cart_total":59.99}', NOW)
    
    @pytest.mark.asyncio
    async def test_get_missing(self, store, mock_redis):
        mock_redis.hgetall.return_value = {}
        
        assert await store.get("cust-42") is None
    
    @pytest.mark.asyncio
    async def test_corrupt_expiry_is_passed_through(self, store, mock_redis):
        mock_redis.hgetall.return_value = {"session_value": "{}", "session_expiry": "abc"}
        
        record = await store.get("cust-42")
        
        assert record.session_expiry == "abc"
    
    @pytest.mark.asyncio
    async def test_get_error_is_backend_error(self, store, mock_redis):
        mock_redis.hgetall.side_effect = RedisConnectionError("refused")
        
        with pytest.raises(BackendError) as exc_info:
            await store.get("cust-42")
        
        assert exc_info.value.error_code == ErrorCode.SESSION_STORE_UNAVAILABLE
        assert exc_info.value.details["operation"] == "get"
        assert exc_info.value.details["session_key"] == "cust-42"
    
    @pytest.mark.asyncio
    async def test_not_connected(self):
        store = RedisSessionStore("redis://localhost:6379/0")
        
        with pytest.raises(RuntimeError):
            await store.get("cust-42")


class TestRedisPut:
    
    @pytest.mark.asyncio
    async def test_put_writes_hash_ttl_and_index(self, store, mock_redis):
        await store.put(SessionRecord("cust-42", "{}", NOW))
        
        mock_redis.pipeline.assert_called_once_with(transaction=True)
        pipe = mock_redis.pipe
        pipe.hset.assert_called_once_with(
            "session:cust-42",
            mapping={"session_value": "{}", "session_expiry": str(NOW)},
        )
        pipe.expireat.assert_called_once_with("session:cust-42", NOW)
        pipe.zadd.assert_called_once_with(EXPIRY_INDEX_KEY, {"cust-42": NOW})
        pipe.execute.assert_awaited_once()
    
    @pytest.mark.asyncio
    async def test_put_validates_before_writing(self, store, mock_redis):
        with pytest.raises(BackendError) as exc_info:
            await store.put(SessionRecord("cust-42", "{}", -5))
        
        assert exc_info.value.error_code == ErrorCode.VALIDATION_ERROR
        mock_redis.pipeline.assert_not_called()
    
    @pytest.mark.asyncio
    async def test_put_error_is_backend_error(self, store, mock_redis):
        mock_redis.pipe.execute.side_effect = RedisConnectionError("reset by peer")
        
        with pytest.raises(BackendError) as exc_info:
            await store.put(SessionRecord("cust-42", "{}", NOW))
        
        assert exc_info.value.details["operation"] == "put"


class TestRedisDelete:
    
    @pytest.mark.asyncio
    async def test_delete_removes_hash_and_index_entry(self, store, mock_redis):
        await store.delete("cust-42")
        
        mock_redis.pipe.delete.assert_called_once_with("session:cust-42")
        mock_redis.pipe.zrem.assert_called_once_with(EXPIRY_INDEX_KEY, "cust-42")
    
    @pytest.mark.asyncio
    async def test_delete_error_is_backend_error(self, store, mock_redis):
        mock_redis.pipe.execute.side_effect = RedisConnectionError("down")
        
        with pytest.raises(BackendError):
            await store.delete("cust-42")


class TestRedisScanExpired:
    
    @pytest.mark.asyncio
    async def test_pages_resume_after_last_score(self, store, mock_redis):
        mock_redis.zrangebyscore.side_effect = [
            [("a", 100.0), ("b", 200.0)],
            ["b"],
            [("c", 300.0)],
        ]
        
        keys = [key async for key in store.scan_expired(NOW)]
        
        assert keys == ["a", "b", "c"]
        assert mock_redis.zrangebyscore.await_args_list == [
            call(EXPIRY_INDEX_KEY, "-inf", f"({NOW}", start=0, num=2, withscores=True),
            call(EXPIRY_INDEX_KEY, 200.0, 200.0),
            call(EXPIRY_INDEX_KEY, "(200.0", f"({NOW}", start=0, num=2, withscores=True),
        ]
    
    @pytest.mark.asyncio
    async def test_keys_sharing_a_score_are_returned_once(self, store, mock_redis):
        mock_redis.zrangebyscore.side_effect = [
            [("a", 100.0), ("b", 100.0)],
            ["a", "b", "c"],
            [],
        ]
        
        keys = [key async for key in store.scan_expired(NOW)]
        
        assert keys == ["a", "b", "c"]
    
    @pytest.mark.asyncio
    async def test_deletes_between_pages_do_not_skip_keys(self, store, mock_redis):
        index = {"a": 100.0, "b": 200.0, "c": 300.0, "d": 400.0, "e": 500.0}
        
        def bound(value, inclusive_default=True):
            if value == "-inf":
                return float("-inf"), True
            if isinstance(value, str) and value.startswith("("):
                return float(value[1:]), False
            return float(value), inclusive_default
        
        async def zrangebyscore(name, low, high, start=None, num=None, withscores=False):
            low_value, low_inclusive = bound(low)
            high_value, high_inclusive = bound(high)
            members = sorted(
                (score, key) for key, score in index.items()
                if (score >= low_value if low_inclusive else score > low_value)
                and (score <= high_value if high_inclusive else score < high_value)
            )
            if start is not None:
                members = members[start:start + num]
            if withscores:
                return [(key, score) for score, key in members]
            return [key for _, key in members]
        
        mock_redis.zrangebyscore.side_effect = zrangebyscore
        
        keys = []
        async for key in store.scan_expired(NOW):
            keys.append(key)
            # a concurrent sweep removes what this one has already seen
            index.pop(key)
        
        assert keys == ["a", "b", "c", "d", "e"]
    
    @pytest.mark.asyncio
    async def test_empty_index(self, store, mock_redis):
        mock_redis.zrangebyscore.return_value = []
        
        assert [key async for key in store.scan_expired(NOW)] == []
    
    @pytest.mark.asyncio
    async def test_scan_error_is_backend_error(self, store, mock_redis):
        mock_redis.zrangebyscore.side_effect = RedisConnectionError("down")
        
        with pytest.raises(BackendError) as exc_info:
            [key async for key in store.scan_expired(NOW)]
        
        assert exc_info.value.details["operation"] == "scan_expired"


class TestRedisUpdateExpiry:
    
    @pytest.mark.asyncio
    async def test_updates_existing(self, store, mock_redis):
        pipe = mock_redis.pipe
        
        assert await store.update_expiry("cust-42", NOW + 60) is True
        
        pipe.watch.assert_awaited_once_with("session:cust-42")
        pipe.exists.assert_awaited_once_with("session:cust-42")
        pipe.multi.assert_called_once()
        pipe.hset.assert_called_once_with("session:cust-42", "session_expiry", str(NOW + 60))
        pipe.expireat.assert_called_once_with("session:cust-42", NOW + 60)
        pipe.zadd.assert_called_once_with(EXPIRY_INDEX_KEY, {"cust-42": NOW + 60})
        pipe.execute.assert_awaited_once()
    
    @pytest.mark.asyncio
    async def test_missing_record(self, store, mock_redis):
        mock_redis.pipe.exists.return_value = 0
        
        assert await store.update_expiry("cust-42", NOW + 60) is False
        mock_redis.pipe.hset.assert_not_called()
        mock_redis.pipe.execute.assert_not_called()
    
    @pytest.mark.asyncio
    async def test_concurrent_delete_does_not_recreate_record(self, store, mock_redis):
        pipe = mock_redis.pipe
        # the record is deleted after the existence check; the watched
        # transaction is discarded and the recheck finds nothing
        pipe.exists.side_effect = [1, 0]
        pipe.execute.side_effect = WatchError("Watched variable changed.")
        
        assert await store.update_expiry("cust-42", NOW + 60) is False
        
        assert pipe.watch.await_count == 2
        pipe.execute.assert_awaited_once()
    
    @pytest.mark.asyncio
    async def test_concurrent_save_is_retried(self, store, mock_redis):
        pipe = mock_redis.pipe
        pipe.execute.side_effect = [WatchError("Watched variable changed."), []]
        
        assert await store.update_expiry("cust-42", NOW + 60) is True
        assert pipe.execute.await_count == 2
    
    @pytest.mark.asyncio
    async def test_persistent_conflict_is_backend_error(self, store, mock_redis):
        mock_redis.pipe.execute.side_effect = WatchError("Watched variable changed.")
        
        with pytest.raises(BackendError) as exc_info:
            await store.update_expiry("cust-42", NOW + 60)
        
        assert exc_info.value.details["operation"] == "update_expiry"
        assert mock_redis.pipe.execute.await_count == WATCH_ATTEMPTS
    
    @pytest.mark.asyncio
    async def test_update_error_is_backend_error(self, store, mock_redis):
        mock_redis.pipe.watch.side_effect = RedisConnectionError("down")
        
        with pytest.raises(BackendError):
            await store.update_expiry("cust-42", NOW + 60)


class TestRedisProvisioning:
    
    @pytest.mark.asyncio
    async def test_ensure_table_waits_for_ping(self, store, mock_redis):
        mock_redis.ping.side_effect = [RedisConnectionError("loading"), True]
        
        await store.ensure_table()
        
        assert mock_redis.ping.await_count == 2
    
    @pytest.mark.asyncio
    async def test_ensure_table_gives_up(self, store, mock_redis):
        mock_redis.ping.side_effect = RedisConnectionError("refused")
        
        with pytest.raises(ProvisioningError) as exc_info:
            await store.ensure_table()
        
        assert exc_info.value.error_code == ErrorCode.PROVISIONING_FAILED
        assert exc_info.value.details["attempts"] == 3
        assert mock_redis.ping.await_count == 3
    
    @pytest.mark.asyncio
    async def test_health_check(self, store, mock_redis):
        assert await store.health_check() is True
        
        mock_redis.ping.side_effect = RedisConnectionError("refused")
        assert await store.health_check() is False
    
    @pytest.mark.asyncio
    async def test_health_check_without_client(self):
        assert await RedisSessionStore("redis://localhost:6379/0").health_check() is False


class TestRedisConnection:
    
    @pytest.mark.asyncio
    async def test_connect_builds_client_from_url(self):
        store = RedisSessionStore("redis://cache:6379/1")
        
        with patch("redis.asyncio.from_url") as mock_from_url:
            await store.connect()
        
        mock_from_url.assert_called_once_with("redis://cache:6379/1", decode_responses=True)
        assert store.client is mock_from_url.return_value
    
    @pytest.mark.asyncio
    async def test_disconnect_closes_client(self, store, mock_redis):
        await store.disconnect()
        
        mock_redis.aclose.assert_awaited_once()
        assert store.client is None
