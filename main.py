"""
Application wiring for the session persistence layer.

- ``create_app``: FastAPI application with the session middleware and
  health endpoints (run with ``uvicorn --factory main:create_app``)
- ``cleanup_main``: one reclamation sweep, for a daily scheduler
- ``provision_main``: create the session table ahead of the first request
"""

import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from config.settings import ConfigurationError, Settings, get_settings, validate_startup
from errors.exceptions import ProvisioningError
from middleware.session import SessionMiddleware, header_or_cookie_resolver
from session.backend import register_session_backend
from session.engine import ReclaimReport, reclaim_expired
from session.factory import create_session_store, engine_factory
from session.store import SessionStore
from telemetry.service import initialize_telemetry

logger = logging.getLogger(__name__)


async def provision_store(store: SessionStore) -> bool:
    """
    Run ensure_table, logging instead of raising on ProvisioningError.
    
    Returns:
        True if the table is ready
    """
    try:
        await store.ensure_table()
    except ProvisioningError as e:
        logger.error(
            "Session table provisioning failed: %s",
            e.message,
            extra={"extra_data": e.to_dict()}
        )
        return False
    return True


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None
) -> FastAPI:
    """
    Build the FastAPI application.
    
    Startup configures logging, connects the store and provisions the
    table; a provisioning failure is logged and startup continues, with
    sessions degrading to per-request state until the backend recovers.
    
    Args:
        settings: Settings to use (defaults to get_settings())
        store: Store to use (defaults to the configured store)
    """
    settings = settings or get_settings()
    store = store or create_session_store(settings)
    default_ttl = settings.session_ttl_seconds
    
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        telemetry = initialize_telemetry(settings)
        logger.info(
            "Starting session service",
            extra={"extra_data": {"store_type": settings.session_store_type}}
        )
        await store.connect()
        await provision_store(store)
        
        yield
        
        logger.info("Shutting down session service")
        await store.disconnect()
        telemetry.shutdown()
    
    register_session_backend(engine_factory(store, default_ttl))
    
    app = FastAPI(title="Session Service", version="1.0.0", lifespan=lifespan)
    app.state.session_store = store
    app.add_middleware(
        SessionMiddleware,
        key_resolver=header_or_cookie_resolver(
            settings.session_header_name,
            settings.session_cookie_name
        ),
    )
    
    @app.get("/health/live")
    async def health_live():
        """Returns 200 while the process is running."""
        return {"status": "healthy"}
    
    @app.get("/health/ready")
    async def health_ready():
        """Returns 503 when the session store is not reachable."""
        started = time.perf_counter()
        healthy = await store.health_check()
        body = {
            "status": "healthy" if healthy else "unhealthy",
            "dependencies": [{
                "name": f"session_store:{settings.session_store_type}",
                "healthy": healthy,
                "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            }],
        }
        return JSONResponse(status_code=200 if healthy else 503, content=body)
    
    return app


async def run_cleanup(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None,
    now: Optional[int] = None
) -> ReclaimReport:
    """
    Run one reclamation sweep against the configured store.
    
    Intended to be triggered by an external scheduler, e.g. once a day.
    """
    settings = settings or get_settings()
    store = store or create_session_store(settings)
    await store.connect()
    try:
        return await reclaim_expired(store, int(time.time()) if now is None else now)
    finally:
        await store.disconnect()


async def run_provisioning(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None
) -> bool:
    """Create the session table if needed and wait for it to be ready."""
    settings = settings or get_settings()
    store = store or create_session_store(settings)
    await store.connect()
    try:
        return await provision_store(store)
    finally:
        await store.disconnect()


def _load_settings() -> Settings:
    try:
        settings = get_settings()
        validate_startup(settings)
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(2) from e
    return settings


def cleanup_main() -> int:
    """Console entry point: ``session-cleanup``."""
    settings = _load_settings()
    telemetry = initialize_telemetry(settings)
    try:
        report = asyncio.run(run_cleanup(settings))
    finally:
        telemetry.shutdown()
    return 0 if report.complete else 1


def provision_main() -> int:
    """Console entry point: ``session-provision``."""
    settings = _load_settings()
    telemetry = initialize_telemetry(settings)
    try:
        ready = asyncio.run(run_provisioning(settings))
    finally:
        telemetry.shutdown()
    return 0 if ready else 1


if __name__ == "__main__":
    sys.exit(cleanup_main())
