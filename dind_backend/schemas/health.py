"""
dind_backend/schemas/health.py
Response models for the health and readiness endpoints
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import BaseModel

# ============================================================================
# Dependency
# ============================================================================

class DependencySummary(BaseModel):
    """Dependency entry in the readiness payload"""
    name: str
    state: str
    mandatory: bool
    last_error: Optional[str] = None


class DependencyStatusSchema(DependencySummary):
    """Full dependency status"""
    last_transition_at: datetime
    transitions: int = Field(0, ge=0)


class DependencyDetail(DependencyStatusSchema):
    """Per-dependency health details"""
    probe: Optional[str] = None
    start_timeout: float
    drain_timeout: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Probes
# ============================================================================

class HealthResponse(BaseModel):
    """Full service health"""
    status: str
    overall_state: str
    phase: str
    dependencies: List[DependencyStatusSchema]
    uptime_seconds: float
    memory_usage: Dict[str, Any]
    summary: Dict[str, int]
    timestamp: datetime


class ReadinessResponse(BaseModel):
    """Readiness probe payload"""
    status: str
    overall_state: str
    phase: str
    dependencies: List[DependencySummary]
    timestamp: datetime


class LivenessResponse(BaseModel):
    """Liveness probe payload"""
    status: str
    probe: str = "liveness"
    phase: str
    uptime_seconds: float
    fault: Optional[str] = None


class StartupResponse(BaseModel):
    """Startup probe payload"""
    status: str
    probe: str = "startup"
    phase: str


__all__ = [
    "DependencySummary",
    "DependencyStatusSchema",
    "DependencyDetail",
    "HealthResponse",
    "ReadinessResponse",
    "LivenessResponse",
    "StartupResponse",
]
