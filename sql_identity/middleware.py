"""Identity middleware.

Resolves the request identity before the handler runs and persists any
change the handler made before the response leaves the application.
"""
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from sql_identity.policy import SqlIdentityPolicy


class IdentityMiddleware(BaseHTTPMiddleware):
    """Attach an identity to ``request.state`` and write it back afterwards."""

    def __init__(self, app: ASGIApp, policy: SqlIdentityPolicy):
        super().__init__(app)
        self.policy = policy

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        identity = await self.policy.extract(request)
        request.state.identity = identity
        response = await call_next(request)
        return await self.policy.finalize(identity, response)
