"""
Students API - FastAPI application entry point.

This module:
1. Sets up structured JSON logging
2. Creates the FastAPI app with CORS and request ID middleware
3. Owns the MongoDB connection manager through the app lifespan
4. Registers the student routes (gated behind the database connection)
5. Provides the root, health and info endpoints, which are never gated

Layout:
- routes/: API endpoint handlers
- models/: request schemas
- services/: entity operations against MongoDB
- database.py: connection lifecycle and FastAPI dependencies
- errors.py: error taxonomy and exception handlers
- config.py: settings from the environment
"""

import platform
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from students_api import PROCESS_STARTED_AT, __version__
from students_api.config import Settings, get_settings
from students_api.database import ConnectionManager, ConnectionState, get_db_manager
from students_api.errors import register_exception_handlers
from students_api.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from students_api.routes import students

SERVICE_NAME = "students-api"

logger = get_logger("http")
app_logger = get_logger("app")


def route_catalog(settings: Settings) -> List[Dict[str, str]]:
    """Every route the service answers, for the not-found response."""
    return [
        {"method": "GET", "path": "/", "description": "API information"},
        {"method": "GET", "path": "/health", "description": "Health check"},
        {"method": "GET", "path": "/info", "description": "Runtime information"},
        {"method": "GET", "path": "/debug", "description": "Runtime information"},
    ] + students.student_routes(settings)


def _log_startup(settings: Settings):
    log_with_context(app_logger, "INFO", "Starting students API",
        extra_data={
            "environment": settings.environment,
            "port": settings.port,
            "route_style": settings.route_style,
            "retry_strategy": settings.retry_strategy,
            "database_url_defined": bool(settings.database_url),
            "database_url": settings.redacted_database_url(),
        })


def create_app(settings: Optional[Settings] = None,
               manager: Optional[ConnectionManager] = None) -> FastAPI:
    """
    Build the application.

    ``manager`` defaults to a ConnectionManager for ``settings``; tests pass
    their own to control the connection state.
    """
    settings = settings or get_settings()
    manager = manager or ConnectionManager(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log_startup(settings)
        if settings.retry_strategy == "bounded":
            # Exhausting the retry budget aborts the startup.
            await manager.connect(max_attempts=settings.max_connect_attempts)
        manager.start()
        try:
            yield
        finally:
            await manager.stop()

    app = FastAPI(
        title="Students API",
        description="REST API for managing student records stored in MongoDB.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db_manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"]
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """
        Tag the request with an id (incoming X-Request-ID or a new UUID),
        log its start and completion with latency, and echo the id back in
        the X-Request-ID response header.
        """
        req_id = request.headers.get("x-request-id") or generate_request_id()
        token = request_id_var.set(req_id)
        start_time = time.time()

        log_with_context(logger, "INFO",
            f"Request started: {request.method} {request.url.path}",
            extra_data={
                "ip": request.client.host if request.client else "unknown",
                "user_agent": request.headers.get("user-agent", ""),
            })

        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        duration_ms = (time.time() - start_time) * 1000
        response.headers["X-Request-ID"] = req_id

        log_with_context(logger, "INFO",
            f"Request completed: {request.method} {request.url.path} → {response.status_code}",
            context={"request_id": req_id},
            extra_data={
                "duration_ms": round(duration_ms, 2),
                "status_code": response.status_code
            })
        return response

    register_exception_handlers(app, settings, lambda: route_catalog(settings))
    app.include_router(students.create_router(settings))

    @app.get("/health", tags=["Health"])
    def health_check(request: Request):
        """
        Liveness and readiness probe.

        Answers even when the database is down so that an orchestrator can
        tell "process alive, database down" (503) from a dead process.
        """
        state = get_db_manager(request).state
        healthy = state is ConnectionState.CONNECTED
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "database": state.label,
                "database_state": state.value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": round(time.monotonic() - PROCESS_STARTED_AT, 3),
                "service": SERVICE_NAME,
            },
        )

    @app.get("/", tags=["Root"])
    def root(request: Request):
        """Root endpoint with API information."""
        state = get_db_manager(request).state
        return {
            "success": True,
            "service": "Students API",
            "status": "online",
            "database": state.label,
            "version": __version__,
            "environment": settings.environment,
            "docs": "/docs",
            "endpoints": {
                "students": settings.students_prefix,
                "health": "/health",
                "info": "/info",
            },
        }

    def runtime_info(request: Request):
        """Runtime introspection without secrets."""
        return {
            "python_version": platform.python_version(),
            "environment": settings.environment,
            "port": settings.port,
            "route_style": settings.route_style,
            "retry_strategy": settings.retry_strategy,
            "has_database_url": bool(settings.database_url),
            "database_url": settings.redacted_database_url(),
            "database": get_db_manager(request).status(),
        }

    app.add_api_route("/info", runtime_info, methods=["GET"], tags=["Root"])
    app.add_api_route("/debug", runtime_info, methods=["GET"], tags=["Root"],
                      include_in_schema=False)

    return app


setup_logging(get_settings().log_level)
app = create_app()
