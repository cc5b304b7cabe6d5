"""
Integration test configuration and fixtures.

Application-level tests run against the in-memory store. Tests against a
live Redis or DynamoDB run only when one is configured through
environment variables; otherwise they are skipped.
"""
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

import pytest

from config.settings import Settings
from session.backend import reset_session_backend_factory
from session.memory_store import InMemorySessionStore


logger = logging.getLogger(__name__)


@dataclass
class LiveBackendConfig:
    """
    Configuration for live backend integration tests.
    
    Environment Variables:
    - TEST_REDIS_URL: Redis URL, e.g. redis://localhost:6379/15
    - TEST_DYNAMODB_ENDPOINT: Endpoint of a local DynamoDB, e.g. http://localhost:8000
    - TEST_DYNAMODB_TABLE: Table to provision (default: random test table)
    """
    redis_url: str = field(default_factory=lambda: os.getenv("TEST_REDIS_URL", ""))
    dynamodb_endpoint: str = field(default_factory=lambda: os.getenv("TEST_DYNAMODB_ENDPOINT", ""))
    dynamodb_table: str = field(
        default_factory=lambda: os.getenv("TEST_DYNAMODB_TABLE", f"test-sessions-{uuid.uuid4().hex[:8]}")
    )
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        return {
            "redis_configured": bool(self.redis_url),
            "dynamodb_endpoint": self.dynamodb_endpoint,
            "dynamodb_table": self.dynamodb_table,
        }


@pytest.fixture(scope="session")
def live_backend_config() -> LiveBackendConfig:
    """Provide live backend configuration."""
    config = LiveBackendConfig()
    logger.info("Live backend config: %s", config.to_dict())
    return config


@pytest.fixture
def restore_root_logger():
    """Undo the root logger changes made by the application lifespan."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def app_settings(tmp_path) -> Settings:
    """Development settings with the diagnostics file under tmp_path."""
    return Settings(
        environment="development",
        session_store_type="memory",
        session_ttl_hours=48,
        log_level="INFO",
        log_file=str(tmp_path / "logs" / "session-sync.log"),
    )


@pytest.fixture
def app_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture(autouse=True)
def reset_backend_registry():
    yield
    reset_session_backend_factory()
