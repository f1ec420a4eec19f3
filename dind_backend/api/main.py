"""
dind_backend/api/main.py
FastAPI application entry point.

Architecture:
- Thin main.py (app creation, middleware, server entry)
- Lifespan drives the lifecycle coordinator
- Health and metrics routes read from the coordinator
- Exit signals are forwarded to the coordinator before uvicorn handles them
"""

import sys
import time
from typing import Optional
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import Settings, get_settings
from ..core.logging import LogContext, get_logger, setup_logging
from .lifespan.coordinator import LifecycleCoordinator
from .lifespan.manager import SpecsFactory, build_coordinator, lifespan
from .metrics.registry import ACTIVE_REQUESTS, track_request
from .routes import health, metrics

# Setup logging first
setup_logging()
logger = get_logger("main")

# Always served, even while draining
EXEMPT_PREFIXES = ("/health", "/metrics")


def _is_exempt(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in EXEMPT_PREFIXES)


# ============================================================================
# Create Application
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    specs_factory: Optional[SpecsFactory] = None,
) -> FastAPI:
    """
    Create the FastAPI application and its lifecycle coordinator.

    Args:
        settings: Settings to use (defaults to the process settings)
        specs_factory: Builds the dependency specs (defaults to settings-driven)

    Returns:
        Configured FastAPI app

    Raises:
        ConfigurationError: invalid dependency configuration
    """
    settings = settings or get_settings()

    logger.info(
        "creating_app",
        name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Backend service with dependency lifecycle and health aggregation",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.settings = settings
    app.state.accepting_requests = True
    app.state.coordinator = build_coordinator(settings, app, specs_factory)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def lifecycle_middleware(request: Request, call_next):
        path = request.url.path
        if not request.app.state.accepting_requests and not _is_exempt(path):
            coordinator: LifecycleCoordinator = request.app.state.coordinator
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "error": "Service is shutting down",
                    "phase": coordinator.phase.value,
                },
                headers={"Connection": "close"},
            )

        request_id = request.headers.get("x-request-id") or uuid4().hex
        started = time.perf_counter()
        ACTIVE_REQUESTS.inc()
        try:
            with LogContext(request_id=request_id, method=request.method, path=path):
                response = await call_next(request)
        finally:
            ACTIVE_REQUESTS.dec()

        route = request.scope.get("route")
        if settings.METRICS_ENABLED:
            track_request(
                request.method,
                getattr(route, "path", "unmatched"),
                response.status_code,
                time.perf_counter() - started,
            )
        response.headers["X-Request-ID"] = request_id
        return response

    # Register routes
    app.include_router(health.router)
    app.include_router(metrics.router)

    @app.get("/", tags=["Root"])
    async def root(request: Request):
        """Service info endpoint"""
        coordinator: LifecycleCoordinator = request.app.state.coordinator
        endpoints = {
            "health": "/health",
            "readiness": "/health/ready",
            "liveness": "/health/live",
            "metrics": "/metrics",
        }
        if settings.ENABLE_WEBSOCKET:
            endpoints["realtime"] = settings.WEBSOCKET_PATH
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "phase": coordinator.phase.value,
            "dependencies": coordinator.dependencies.names(),
            "endpoints": endpoints,
        }

    logger.info("app_created_successfully", dependencies=app.state.coordinator.dependencies.names())
    return app


# ============================================================================
# Server
# ============================================================================

class CoordinatedServer(uvicorn.Server):
    """
    uvicorn server that tells the coordinator about exit signals.

    The first signal starts the drain, a second one forces the stop.
    uvicorn keeps its own graceful/forced exit handling.
    """

    def __init__(self, config: uvicorn.Config, coordinator: LifecycleCoordinator):
        super().__init__(config)
        self.coordinator = coordinator

    def handle_exit(self, sig, frame) -> None:
        self.coordinator.notify_signal(sig)
        super().handle_exit(sig, frame)


def run(application: Optional[FastAPI] = None) -> None:
    """Serve the app; exit non-zero when startup fails."""
    application = application or app
    settings: Settings = application.state.settings

    logger.info(
        "starting_server",
        host=settings.API_HOST,
        port=settings.API_PORT
    )

    config = uvicorn.Config(
        application,
        host=settings.API_HOST,
        port=settings.API_PORT,
        lifespan="on",
        log_level=settings.LOG_LEVEL.lower(),
    )
    server = CoordinatedServer(config, application.state.coordinator)
    server.run()

    if not server.started:
        logger.critical("server_startup_failed")
        sys.exit(3)


# Create app instance
app = create_app()


# ============================================================================
# CLI Entry Point
# ============================================================================

if __name__ == "__main__":
    run()


# ============================================================================
# Exports
# ============================================================================

__all__ = ["app", "create_app", "CoordinatedServer", "run"]
