"""
Lifecycle management for the backend service.
Dependency startup, health aggregation, and graceful shutdown.
"""

from .base import (
    BaseDependencyAdapter,
    DependencyState,
    LifecyclePhase,
    OverallState,
)
from .coordinator import LifecycleCoordinator
from .health_registry import DependencyStatus, HealthRegistry, ServiceHealth, compute_overall_state
from .manager import build_coordinator, build_dependency_specs, lifespan
from .registry import DependencyRegistry, DependencySpec


__all__ = [
    "lifespan",
    "build_coordinator",
    "build_dependency_specs",
    "BaseDependencyAdapter",
    "DependencyState",
    "LifecyclePhase",
    "OverallState",
    "LifecycleCoordinator",
    "DependencyRegistry",
    "DependencySpec",
    "HealthRegistry",
    "DependencyStatus",
    "ServiceHealth",
    "compute_overall_state",
]
