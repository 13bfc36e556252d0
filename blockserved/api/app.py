"""FastAPI application factory and lifespan management.

create_app() builds the fully configured Record Store application:
logging, middleware, exception handlers, and routes. The lifespan
opens the database engine on startup and disposes it on shutdown.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from blockserved import __version__
from blockserved.api.dependencies import get_settings
from blockserved.api.middleware import RequestTracingMiddleware, register_exception_handlers
from blockserved.api.routes import api_router
from blockserved.core.config import Settings
from blockserved.core.logging import setup_logging
from blockserved.db.session import create_engine, create_session_factory, create_tables

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown."""
    settings: Settings = app.state.settings
    logger.info("application_starting", version=__version__, debug=settings.debug)

    engine = create_engine(settings)
    if settings.database_create_tables:
        await create_tables(engine)
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    try:
        yield
    finally:
        logger.info("application_shutting_down")
        await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return a fully configured FastAPI application."""
    if settings is None:
        settings = get_settings()

    setup_logging(settings)

    app = FastAPI(
        title="BlockServed Record Store",
        description="Served-notice records and recipient activity audit trail",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings

    app.add_middleware(RequestTracingMiddleware)

    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.api_prefix)

    return app
