"""Health check endpoints for monitoring and orchestration probes."""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
import structlog

from ...schemas.health import (
    DependencyDetail,
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
    StartupResponse,
)
from ..lifespan.base import LifecyclePhase
from ..lifespan.coordinator import LifecycleCoordinator

router = APIRouter(prefix="/health", tags=["Health"])
logger = structlog.get_logger(__name__)


def _coordinator(request: Request) -> LifecycleCoordinator:
    return request.app.state.coordinator


@router.get("", response_model=HealthResponse, summary="Service health")
@router.get("/", include_in_schema=False)
async def health_check(request: Request):
    """
    Full service health.

    Returns:
    - overall_state: starting/ready/degraded/unhealthy/stopping
    - phase: lifecycle phase
    - dependencies: status of each dependency, in startup order
    - summary: dependency count by state

    Status Codes:
    - 200: Service is ready
    - 503: Any other overall state
    """
    coordinator = _coordinator(request)
    health = coordinator.get_health()

    body = HealthResponse(
        status="healthy" if health.is_ready else health.overall_state.value,
        summary=coordinator.dependency_summary(),
        **health.to_dict(),
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if health.is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
    )


@router.get("/live", response_model=LivenessResponse, summary="Liveness probe")
async def liveness(request: Request):
    """
    Liveness probe.

    Returns 200 while the process works, whatever the dependency health.
    Returns 500 only after an internal fault or once stopped.
    """
    coordinator = _coordinator(request)
    health = coordinator.get_health()
    alive = coordinator.is_alive()

    body = LivenessResponse(
        status="alive" if alive else "dead",
        phase=health.phase.value,
        uptime_seconds=round(health.uptime_seconds, 3),
        fault=coordinator.fault,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if alive else status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(mode="json"),
    )


@router.get("/ready", response_model=ReadinessResponse, summary="Readiness probe")
async def readiness(request: Request):
    """
    Readiness probe.

    Returns:
    - 200: overall state is ready
    - 503: starting, degraded, unhealthy or stopping
    """
    health = _coordinator(request).get_health()

    body = ReadinessResponse(
        status="ready" if health.is_ready else "not_ready",
        overall_state=health.overall_state.value,
        phase=health.phase.value,
        dependencies=[
            {
                "name": d.name,
                "state": d.state.value,
                "mandatory": d.mandatory,
                "last_error": d.last_error,
            }
            for d in health.dependencies
        ],
        timestamp=health.timestamp,
    )
    if not health.is_ready:
        logger.debug("readiness_check_failed", overall_state=health.overall_state.value)

    return JSONResponse(
        status_code=status.HTTP_200_OK if health.is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
    )


@router.get("/startup", response_model=StartupResponse, summary="Startup probe")
async def startup(request: Request):
    """
    Startup probe.

    Returns:
    - 200: startup finished (phase left initializing)
    - 503: still starting
    """
    phase = _coordinator(request).phase
    started = phase != LifecyclePhase.INITIALIZING

    body = StartupResponse(status="started" if started else "starting", phase=phase.value)
    return JSONResponse(
        status_code=status.HTTP_200_OK if started else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
    )


@router.get("/dependencies/{name}", response_model=DependencyDetail, summary="Dependency health")
async def dependency_health(name: str, request: Request):
    """
    Health details for one dependency.

    Args:
        name: Dependency name (e.g., "database", "cache", "realtime")

    Returns:
        Dependency details or 404 if not found
    """
    details = _coordinator(request).dependency_details(name)

    if details is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "Dependency not found",
                "dependency": name,
            }
        )

    return DependencyDetail(**details).model_dump(mode="json")
