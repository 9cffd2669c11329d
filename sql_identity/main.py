"""SQL Identity - demo API protected by SQL-backed bearer sessions.

Run with ``uvicorn --factory sql_identity.main:create_app``.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from sql_identity.config import get_settings
from sql_identity.middleware import IdentityMiddleware
from sql_identity.policy import SqlIdentityPolicy

logger = logging.getLogger(__name__)


def create_app(policy: SqlIdentityPolicy | None = None) -> FastAPI:
    """Build the application around ``policy`` (or one built from settings)."""
    settings = get_settings()
    if policy is None:
        policy = SqlIdentityPolicy.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        from sql_identity.database import Base

        # Import all models so they're registered with Base
        from sql_identity import models  # noqa: F401

        Base.metadata.create_all(bind=policy.store.engine)
        logger.info("Identity tables ready")

        yield

        policy.close()

    app = FastAPI(
        title=settings.app_name,
        description="Bearer-token sessions persisted in a SQL database",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.identity_policy = policy
    app.add_middleware(IdentityMiddleware, policy=policy)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "app": settings.app_name}

    from sql_identity.api import auth

    app.include_router(auth.router, prefix="/api")
    return app
