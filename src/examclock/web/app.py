"""FastAPI application factory for Examclock.

This module provides the main application factory function that creates
and configures a FastAPI application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Database connection lifecycle management
- The window lifecycle service (scheduler, sweep, broadcaster), started
  and stopped with the application

Example usage:
    >>> from examclock.config import ExamclockConfig
    >>> from examclock.web.app import create_app
    >>>
    >>> config = ExamclockConfig()
    >>> app = create_app(config)
    >>>
    >>> # Run with uvicorn
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from examclock import __version__
from examclock.config import ExamclockConfig
from examclock.database.connection import get_engine, get_session_factory
from examclock.lifecycle.service import WindowLifecycleService
from examclock.logging import get_logger
from examclock.web.middleware import RequestLoggingMiddleware
from examclock.web.routes.enrollments import create_enrollments_router
from examclock.web.routes.events import create_events_router
from examclock.web.routes.health import create_health_router
from examclock.web.routes.windows import create_windows_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

APP_VERSION = __version__


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    On startup, creates the database engine and session factory, builds
    the lifecycle service and starts its background components. On
    shutdown, stops them (ending SSE streams) and disposes of the engine.

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: ExamclockConfig = app.state.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    engine = get_engine(config.database)
    session_factory = get_session_factory(engine)
    lifecycle = WindowLifecycleService(config, session_factory)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.lifecycle = lifecycle

    logger.info(
        "database_pool_initialized",
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )

    await lifecycle.start()

    yield

    logger.info("app_shutdown_begin")
    await lifecycle.stop()
    await engine.dispose()
    logger.info("database_pool_disposed")


def create_app(config: ExamclockConfig | None = None) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional ExamclockConfig. If None, creates default config.

    Returns:
        Configured FastAPI application instance.

    Example:
        >>> from examclock.config import ExamclockConfig, WebConfig
        >>>
        >>> app = create_app(
        ...     ExamclockConfig(web=WebConfig(cors_origins=["https://example.com"]))
        ... )
    """
    if config is None:
        config = ExamclockConfig()

    app = FastAPI(
        title="Examclock",
        version=APP_VERSION,
        description="Exam window lifecycle service",
        lifespan=lifespan,
    )

    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_windows_router())
    app.include_router(create_enrollments_router())
    app.include_router(create_events_router())

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        version=APP_VERSION,
    )

    return app
