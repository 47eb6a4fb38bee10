"""
DachsTaler Slots Main Application Entry Point
FastAPI service answering chat commands (!slots, !shop) with plain-text replies.
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# Add parent directory to path so imports work when running directly
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
import uvicorn

from dachstaler.core.logger import init_logging, get_logger
from dachstaler.config import settings
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from dachstaler.routers import api
from dachstaler.core.context import SlotsContext
from dachstaler.core.storage import create_store

# Initialize logging first
init_logging(
    level=settings.logging.level,
    log_to_file=settings.logging.log_to_file,
    formatter=settings.logging.formatter,
    log_file_path=settings.paths.get_log_path(),
)
logger = get_logger("main")


# ==================== Security Headers Middleware ====================


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        return response


# ==================== Application Setup ====================


def create_app(context: Optional[SlotsContext] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        context: Prebuilt game context. When omitted, the lifespan opens the
            configured store and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_store = context is None
        ctx = context or SlotsContext(store=create_store(settings.storage), settings=settings)
        app.state.ctx = ctx
        logger.info(f"Game context ready (store: {type(ctx.store).__name__})")
        try:
            yield
        finally:
            if owns_store:
                await ctx.store.close()
            logger.info("Game context closed")

    app = FastAPI(
        title=settings.server.name,
        docs_url="/docs" if settings.server.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # Add slowapi rate limiter
    app.state.limiter = api.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(api.router, prefix="/api")

    return app


# ==================== Global Exception Handler ====================


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions gracefully."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    if request.url.path.startswith("/api/command"):
        return PlainTextResponse("❌ Internal server error", status_code=500)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.server.debug else None,
        },
    )


app = create_app()

logger.info(f"Application '{settings.server.name}' initialized")
logger.info(f"Debug mode: {settings.server.debug}")


# ==================== Main Entry Point ====================

if __name__ == "__main__":
    logger.info(f"Starting server on {settings.server.host}:{settings.server.port}")
    uvicorn.run(
        "dachstaler.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
    )
