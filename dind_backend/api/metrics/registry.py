"""
dind_backend/api/metrics/registry.py
Central Prometheus metrics registry for the backend service.
"""

from enum import Enum
from typing import Any, Dict, Optional

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest
)
import psutil

# Global registry instance
REGISTRY = CollectorRegistry(auto_describe=True)

_PROCESS = psutil.Process()

# =============================
# Metric definitions
# =============================
DEPENDENCY_STATE = Gauge(
    "backend_dependency_state",
    "1 for the current state of each dependency, 0 otherwise",
    ["dependency", "state"],
    registry=REGISTRY,
)

DEPENDENCY_TRANSITIONS = Counter(
    "backend_dependency_transitions_total",
    "Dependency state transitions applied by the lifecycle coordinator",
    ["dependency", "state"],
    registry=REGISTRY,
)

LIFECYCLE_PHASE = Gauge(
    "backend_lifecycle_phase",
    "1 for the current lifecycle phase, 0 otherwise",
    ["phase"],
    registry=REGISTRY,
)

OVERALL_STATE = Gauge(
    "backend_overall_state",
    "1 for the current aggregate health state, 0 otherwise",
    ["state"],
    registry=REGISTRY,
)

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "route", "status_code"],
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "route", "status_code"],
    buckets=(0.1, 0.3, 0.5, 0.7, 1, 3, 5, 7, 10),
    registry=REGISTRY,
)

ACTIVE_REQUESTS = Gauge(
    "http_active_connections",
    "Number of in-flight HTTP requests",
    registry=REGISTRY,
)

REALTIME_CLIENTS = Gauge(
    "backend_realtime_connected_clients",
    "Currently connected WebSocket clients",
    registry=REGISTRY,
)

CPU_USAGE = Gauge(
    "backend_system_cpu_usage_percent",
    "Current CPU utilization percentage",
    registry=REGISTRY,
)

MEMORY_USAGE = Gauge(
    "backend_system_memory_usage_percent",
    "Current memory utilization percentage",
    registry=REGISTRY,
)

PROCESS_RSS = Gauge(
    "backend_process_resident_memory_bytes",
    "Resident memory of this process",
    registry=REGISTRY,
)

# =============================
# Updater helpers
# =============================

def _set_one_hot(gauge: Gauge, label: str, current: Enum) -> None:
    for value in type(current):
        gauge.labels(**{label: value.value}).set(1 if value == current else 0)


def record_dependency_state(dependency: str, state: Enum) -> None:
    """Track a dependency's current state and count the transition."""
    for value in type(state):
        DEPENDENCY_STATE.labels(dependency=dependency, state=value.value).set(
            1 if value == state else 0
        )
    DEPENDENCY_TRANSITIONS.labels(dependency=dependency, state=state.value).inc()


def record_phase(phase: Enum) -> None:
    _set_one_hot(LIFECYCLE_PHASE, "phase", phase)


def record_overall_state(state: Enum) -> None:
    _set_one_hot(OVERALL_STATE, "state", state)


def track_request(method: str, route: str, status_code: int, latency: float) -> None:
    """Record HTTP request count and latency."""
    REQUEST_COUNT.labels(method=method, route=route, status_code=str(status_code)).inc()
    REQUEST_LATENCY.labels(method=method, route=route, status_code=str(status_code)).observe(latency)


def set_realtime_clients(count: int) -> None:
    REALTIME_CLIENTS.set(count)


def memory_snapshot() -> Dict[str, Any]:
    """Process memory usage. Local syscalls only."""
    try:
        info = _PROCESS.memory_info()
        return {
            "rss_bytes": info.rss,
            "vms_bytes": info.vms,
            "percent": round(_PROCESS.memory_percent(), 2),
        }
    except psutil.Error as e:
        return {"error": str(e)}


def update_system_metrics() -> None:
    """Refresh system resource gauges."""
    CPU_USAGE.set(psutil.cpu_percent(interval=None))
    MEMORY_USAGE.set(psutil.virtual_memory().percent)
    PROCESS_RSS.set(_PROCESS.memory_info().rss)


def render_prometheus_metrics(coordinator: Optional[Any] = None) -> bytes:
    """Return text for Prometheus scrape endpoint."""
    update_system_metrics()
    if coordinator is not None:
        health = coordinator.get_health()
        record_overall_state(health.overall_state)
    return generate_latest(REGISTRY)
