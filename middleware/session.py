"""
Session middleware: the hosting integration of the session engine.

For every request the middleware resolves the session key, builds a
session backend through the registered factory and initializes it
("session start"). After the response, whether or not the handler
raised, pending changes are saved ("response finalize"). Routes reach
the session through ``get_session`` and end it with ``logout``.

The middleware only reads the session key; issuing cookies belongs to
the application.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from session.backend import SessionBackend, SessionBackendFactory, get_session_backend_factory
from session.engine import SessionEngine, SessionState
from telemetry.service import session_key_var, set_session_key

logger = logging.getLogger(__name__)

DEFAULT_SESSION_HEADER = "X-Session-Key"
DEFAULT_SESSION_COOKIE = "session_key"

SessionKeyResolver = Callable[[Request], str]


def header_or_cookie_resolver(
    header_name: str = DEFAULT_SESSION_HEADER,
    cookie_name: str = DEFAULT_SESSION_COOKIE
) -> SessionKeyResolver:
    """
    Build a resolver reading the session key from a header, then a cookie.
    
    Returns:
        Resolver returning the key, or "" for an anonymous visitor
    """
    def resolve(request: Request) -> str:
        value = request.headers.get(header_name) or request.cookies.get(cookie_name) or ""
        return value.strip()
    
    return resolve


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Attaches a session backend to ``request.state.session``.
    
    The backend factory passed here wins; otherwise the factory registered
    with ``register_session_backend`` is used.
    """
    
    def __init__(
        self,
        app: ASGIApp,
        backend_factory: Optional[SessionBackendFactory] = None,
        key_resolver: Optional[SessionKeyResolver] = None
    ):
        """
        Args:
            app: The ASGI application to wrap
            backend_factory: Builds a backend from a session key
            key_resolver: Maps a request to its session key
        """
        super().__init__(app)
        self.backend_factory = backend_factory
        self.key_resolver = key_resolver or header_or_cookie_resolver()
    
    def _factory(self) -> SessionBackendFactory:
        factory = self.backend_factory or get_session_backend_factory()
        if factory is None:
            raise RuntimeError(
                "No session backend registered. Pass backend_factory or call "
                "register_session_backend() at startup."
            )
        return factory
    
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        session_key = self.key_resolver(request)
        token = set_session_key(session_key)
        
        try:
            backend = self._factory()(session_key)
            await backend.initialize()
            request.state.session = backend
            
            try:
                response = await call_next(request)
            finally:
                await self._finalize(backend)
            
            return response
        finally:
            session_key_var.reset(token)
    
    async def _finalize(self, backend: SessionBackend) -> None:
        # anonymous visitors that changed nothing are not a save error
        if (
            isinstance(backend, SessionEngine)
            and not backend.session_key
            and backend.state is not SessionState.MUTATED
        ):
            return
        await backend.save_data()


def get_session(request: Request) -> SessionBackend:
    """
    FastAPI dependency returning the session of the current request.
    
    Example:
        @app.post("/cart")
        async def add(session: SessionBackend = Depends(get_session)):
            session.set("cart_total", 59.99)
    """
    session = getattr(request.state, "session", None)
    if session is None:
        raise RuntimeError("SessionMiddleware is not installed")
    return session


async def logout(request: Request) -> None:
    """Destroy the session of the current request."""
    await get_session(request).destroy_session()
