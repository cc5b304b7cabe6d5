"""
Builds the configured session store and engines bound to it.
"""

import logging
from datetime import timedelta
from typing import Optional, Union

from config.settings import Settings
from resilience.waiter import WaiterConfig
from session.backend import SessionBackendFactory
from session.engine import SessionEngine
from session.record import DEFAULT_SESSION_TTL
from session.store import SessionStore

logger = logging.getLogger(__name__)


def create_session_store(settings: Settings) -> SessionStore:
    """
    Create the store selected by ``settings.session_store_type``.
    
    Backend modules are imported here so that a deployment only needs the
    client library of the store it actually uses.
    """
    waiter_config = WaiterConfig(
        delay=settings.provisioning_poll_seconds,
        max_attempts=settings.provisioning_max_attempts,
    )
    
    if settings.session_store_type == "redis":
        from session.redis_store import RedisSessionStore
        store: SessionStore = RedisSessionStore(settings.redis_url, waiter_config=waiter_config)
    elif settings.session_store_type == "dynamodb":
        from session.dynamodb_store import DynamoDBSessionStore
        store = DynamoDBSessionStore(
            table_name=settings.dynamodb_table,
            region=settings.aws_region,
            endpoint_url=settings.dynamodb_endpoint_url,
            aws_access_key_id=(
                settings.aws_access_key_id.get_secret_value()
                if settings.aws_access_key_id else None
            ),
            aws_secret_access_key=(
                settings.aws_secret_access_key.get_secret_value()
                if settings.aws_secret_access_key else None
            ),
            waiter_config=waiter_config,
        )
    else:
        from session.memory_store import InMemorySessionStore
        store = InMemorySessionStore()
    
    logger.debug(
        "Session store created",
        extra={"extra_data": {"store_type": settings.session_store_type}}
    )
    return store


def engine_factory(
    store: SessionStore,
    default_ttl: Optional[Union[timedelta, int]] = None
) -> SessionBackendFactory:
    """
    Return a factory building one SessionEngine per session key.
    
    Suitable for ``register_session_backend``.
    """
    ttl = default_ttl if default_ttl is not None else DEFAULT_SESSION_TTL
    
    def build(session_key: str) -> SessionEngine:
        return SessionEngine(store, session_key, default_ttl=ttl)
    
    return build
