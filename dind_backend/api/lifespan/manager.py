"""
dind_backend/api/lifespan/manager.py
Lifespan wiring for FastAPI.

Responsibilities:
1. Build the dependency specs from settings
2. Build the lifecycle coordinator (one per app, stored on app.state)
3. Start the coordinator on startup
4. Drain and stop it on shutdown
"""

from contextlib import asynccontextmanager
from typing import Callable, List, Optional

import structlog
from fastapi import FastAPI

from ...core.config import Settings
from ...core.exceptions import MandatoryDependencyError
from ..realtime.hub import ConnectionHub
from .coordinator import LifecycleCoordinator
from .modules import CacheAdapter, DatabaseAdapter, RealtimeAdapter
from .registry import DependencySpec

logger = structlog.get_logger("lifespan")

# settings, app -> ordered specs
SpecsFactory = Callable[[Settings, FastAPI], List[DependencySpec]]


# ============================================================================
# Builders
# ============================================================================

def build_dependency_specs(settings: Settings, app: FastAPI) -> List[DependencySpec]:
    """
    Dependencies in startup order: database, cache, realtime.

    Raises:
        ConfigurationError: missing URL or invalid timeout
    """
    retry = dict(
        connect_timeout=settings.CONNECT_TIMEOUT,
        retry_attempts=settings.CONNECT_RETRY_ATTEMPTS,
        retry_base_delay=settings.CONNECT_RETRY_BASE_DELAY,
        retry_max_delay=settings.CONNECT_RETRY_MAX_DELAY,
    )

    specs = [
        DependencySpec(
            DatabaseAdapter(settings.database_url_for_env, **retry),
            mandatory=settings.DATABASE_MANDATORY,
            start_timeout=settings.DATABASE_START_TIMEOUT,
            drain_timeout=settings.DATABASE_DRAIN_TIMEOUT,
        )
    ]

    if settings.CACHE_ENABLED:
        specs.append(DependencySpec(
            CacheAdapter(
                settings.REDIS_URL,
                password=settings.REDIS_PASSWORD,
                allow_flush=settings.is_testing,
                **retry,
            ),
            mandatory=settings.CACHE_MANDATORY,
            start_timeout=settings.CACHE_START_TIMEOUT,
            drain_timeout=settings.CACHE_DRAIN_TIMEOUT,
        ))

    if settings.ENABLE_WEBSOCKET:
        hub = ConnectionHub(settings.WEBSOCKET_PATH)
        app.state.realtime_hub = hub
        specs.append(DependencySpec(
            RealtimeAdapter(hub, app, **retry),
            mandatory=settings.REALTIME_MANDATORY,
            start_timeout=settings.CONNECT_TIMEOUT,
            drain_timeout=settings.CONNECT_TIMEOUT,
        ))

    return specs


def stop_accepting_requests(app: FastAPI) -> None:
    """Drain hook: the HTTP surface refuses new work from here on."""
    app.state.accepting_requests = False
    logger.info("http_intake_stopped")


def build_coordinator(
    settings: Settings,
    app: FastAPI,
    specs_factory: Optional[SpecsFactory] = None,
) -> LifecycleCoordinator:
    factory = specs_factory or build_dependency_specs
    return LifecycleCoordinator(
        factory(settings, app),
        grace_period=settings.STARTUP_GRACE_PERIOD,
        drain_timeout=settings.DRAIN_TIMEOUT,
        exit_on_mandatory_failure=settings.fail_fast_on_mandatory_failure,
        on_drain=lambda: stop_accepting_requests(app),
    )


# ============================================================================
# Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Startup:
    - Connect dependencies through the coordinator

    Shutdown:
    - Drain (bounded) and stop
    """

    # ========================================================================
    # STARTUP
    # ========================================================================

    settings: Settings = app.state.settings
    coordinator: LifecycleCoordinator = app.state.coordinator

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )
    app.state.accepting_requests = True

    try:
        health = await coordinator.start()
    except MandatoryDependencyError as e:
        logger.critical("startup_aborted", **e.to_dict())
        await coordinator.shutdown()
        raise
    except Exception as e:
        coordinator.record_fault(f"startup raised {type(e).__name__}: {e}")
        logger.error("startup_failed", error=str(e), exc_info=True)
        await coordinator.shutdown()
        raise

    logger.info("startup_completed", overall_state=health.overall_state.value)

    # ========================================================================
    # APP RUNNING (yield control to FastAPI)
    # ========================================================================

    try:
        yield
    finally:
        # ====================================================================
        # SHUTDOWN
        # ====================================================================
        logger.info("application_shutting_down", phase=coordinator.phase.value)
        health = await coordinator.shutdown()
        logger.info("shutdown_completed", phase=health.phase.value)


# ============================================================================
# Export
# ============================================================================

__all__ = [
    "lifespan",
    "build_coordinator",
    "build_dependency_specs",
    "stop_accepting_requests",
    "SpecsFactory",
]
