"""Request context for logs: correlation ID plus the calling user.

Provides:
- CorrelationIdMiddleware setup (X-Request-ID echoed or generated)
- bind_user_context: HTTP middleware binding the X-User-Id header into
  structlog contextvars, so every session log line of a request carries user_id
- get_correlation_id for error handlers
"""

import uuid

import structlog
from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI, Request

USER_HEADER = "X-User-Id"


async def bind_user_context(request: Request, call_next):
    """Bind user_id for the duration of one request and clear it afterwards."""
    user_id = request.headers.get(USER_HEADER)
    if user_id:
        structlog.contextvars.bind_contextvars(user_id=user_id)
    try:
        return await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("user_id")


def setup_correlation_middleware(app: FastAPI) -> None:
    """Add correlation ID and user context middleware to the app.

    The correlation middleware is added last so it runs first and the user
    context is bound inside a request that already has its X-Request-ID.
    """
    app.middleware("http")(bind_user_context)
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name="X-Request-ID",
        generator=lambda: str(uuid.uuid4()),
        validator=None,
        transformer=lambda a: a,
    )


def get_correlation_id() -> str | None:
    try:
        return correlation_id.get()
    except LookupError:
        return None


__all__ = ["USER_HEADER", "bind_user_context", "setup_correlation_middleware", "get_correlation_id"]
