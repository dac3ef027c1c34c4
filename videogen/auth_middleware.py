"""
Session authentication middleware.

Every non-public route requires `Authorization: Bearer <access token>`.
The token is resolved through Supabase Auth into a user id, which is stored
on `request.state.caller` as a CallerContext and handed to the stages
explicitly. Nothing downstream reads ambient session state.

In development (ENVIRONMENT=development) an `X-User-Id` header is accepted
instead, so the API can be driven without a real login.
"""

import os
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .pipeline.db import get_service_client
from .pipeline.errors import UnauthorizedError
from .pipeline.models import CallerContext

logger = logging.getLogger(__name__)


def resolve_session_token(token: str) -> Optional[str]:
    """Return the user id for a Supabase access token, or None if invalid."""
    try:
        response = get_service_client().auth.get_user(token)
    except Exception as e:
        logger.warning(f"Session lookup failed: {e}")
        return None
    user = getattr(response, "user", None)
    return getattr(user, "id", None)


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests without a valid session; attach the caller otherwise."""

    # Paths that are always public (health checks, etc.)
    PUBLIC_PATHS = {"/health", "/metrics", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        user_id = None
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            token = auth[len("Bearer "):].strip()
            if token:
                user_id = await run_in_threadpool(resolve_session_token, token)
        elif os.environ.get("ENVIRONMENT", "production") == "development":
            user_id = request.headers.get("X-User-Id") or None

        if not user_id:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        request.state.caller = CallerContext(user_id=str(user_id))
        return await call_next(request)


def get_caller(request: Request) -> CallerContext:
    """FastAPI dependency: the authenticated caller for this request."""
    caller = getattr(request.state, "caller", None)
    if caller is None:
        raise UnauthorizedError()
    return caller
