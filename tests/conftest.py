"""
Shared pytest fixtures and configuration for all tests.
"""
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import FIXED_NOW, FakeClock
from session.engine import SessionEngine
from session.memory_store import InMemorySessionStore
from session.record import SessionRecord

# Hypothesis configuration for property-based testing
from hypothesis import settings, Verbosity, Phase

# Default profile: balanced for local development
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,  # Disable deadline for async tests
    print_blob=True,
)

# CI profile: more thorough and reproducible
settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,
)

# Debug profile: minimal examples, no shrinking
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],
)

# Fast profile: quick smoke tests
settings.register_profile(
    "fast",
    max_examples=20,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def make_engine(memory_store, clock):
    """Build engines sharing the memory store and the fake clock."""
    def build(session_key: str = "cust-42", store=None) -> SessionEngine:
        return SessionEngine(store or memory_store, session_key, clock=clock)
    return build


@pytest.fixture
def seed_record(memory_store):
    """Place a record in the memory store without validation (for corrupt data)."""
    def seed(session_key: str, session_value: str = "{}", session_expiry=FIXED_NOW + 3600):
        memory_store._records[session_key] = SessionRecord(session_key, session_value, session_expiry)
    return seed


@pytest.fixture
def mock_store() -> MagicMock:
    """A SessionStore double whose calls all succeed."""
    mock = MagicMock()
    mock.get = AsyncMock(return_value=None)
    mock.put = AsyncMock(return_value=None)
    mock.delete = AsyncMock(return_value=None)
    mock.update_expiry = AsyncMock(return_value=True)
    mock.ensure_table = AsyncMock(return_value=None)
    mock.health_check = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def mock_redis() -> MagicMock:
    """Create a mock redis.asyncio client for unit tests."""
    mock = MagicMock()
    mock.hgetall = AsyncMock(return_value={})
    mock.zrangebyscore = AsyncMock(return_value=[])
    mock.ping = AsyncMock(return_value=True)
    mock.aclose = AsyncMock(return_value=None)
    
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    pipe.watch = AsyncMock(return_value=None)
    pipe.exists = AsyncMock(return_value=1)
    pipeline_cm = MagicMock()
    pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
    pipeline_cm.__aexit__ = AsyncMock(return_value=False)
    mock.pipeline = MagicMock(return_value=pipeline_cm)
    mock.pipe = pipe
    return mock


@pytest.fixture
def mock_dynamodb() -> MagicMock:
    """Create a mock aiobotocore DynamoDB client for unit tests."""
    mock = MagicMock()
    mock.describe_table = AsyncMock(return_value={"Table": {"TableStatus": "ACTIVE"}})
    mock.create_table = AsyncMock(return_value={})
    mock.get_item = AsyncMock(return_value={})
    mock.put_item = AsyncMock(return_value={})
    mock.delete_item = AsyncMock(return_value={})
    mock.update_item = AsyncMock(return_value={})
    
    waiter = MagicMock()
    waiter.wait = AsyncMock(return_value=None)
    mock.get_waiter = MagicMock(return_value=waiter)
    mock.waiter = waiter
    return mock
