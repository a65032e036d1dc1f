"""Timeloo — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from timeloo.auth.router import router as auth_router
from timeloo.common.cache import QueryCache
from timeloo.common.exceptions import register_exception_handlers
from timeloo.common.logging import setup_logging
from timeloo.common.rate_limit import limiter
from timeloo.config import settings
from timeloo.database import engine
from timeloo.leave.router import router as leave_router
from timeloo.notifications.feed import ChangeFeed
from timeloo.notifications.router import router as notifications_router
from timeloo.roles.router import router as roles_router
from timeloo.webhooks.router import router as slack_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Timeloo starting (%s)", settings.ENVIRONMENT)
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="Timeloo",
        description="Leave management: balances, leave types, roles and live approval updates",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Shared per-process state
    app.state.query_cache = QueryCache()
    app.state.change_feed = ChangeFeed()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(roles_router, prefix="/api/v1/roles", tags=["roles"])
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])
    app.include_router(slack_router, prefix="/api/v1/slack", tags=["slack"])

    return app


app = create_app()
