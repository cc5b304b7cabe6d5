"""
Middleware components for hosting the session layer in FastAPI.
"""

from middleware.session import (
    DEFAULT_SESSION_COOKIE,
    DEFAULT_SESSION_HEADER,
    SessionMiddleware,
    get_session,
    header_or_cookie_resolver,
    logout,
)

__all__ = [
    "DEFAULT_SESSION_COOKIE",
    "DEFAULT_SESSION_HEADER",
    "SessionMiddleware",
    "get_session",
    "header_or_cookie_resolver",
    "logout",
]
