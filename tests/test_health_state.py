import itertools

import pytest

from dind_backend.api.lifespan.base import DependencyState, LifecyclePhase, OverallState
from dind_backend.api.lifespan.health_registry import (
    DependencyStatus,
    HealthRegistry,
    compute_overall_state,
)

NOW = 1000.0
GRACE = 10.0


def status(name, state, mandatory=True, since=NOW):
    return DependencyStatus(name=name, mandatory=mandatory, state=state, since=since)


def overall(statuses, phase=LifecyclePhase.RUNNING, now=NOW):
    return compute_overall_state(statuses, phase, now, GRACE)


@pytest.mark.parametrize("phase", [LifecyclePhase.DRAINING, LifecyclePhase.STOPPED])
def test_draining_or_stopped_is_stopping(phase):
    statuses = [status("database", DependencyState.CONNECTED)]
    assert overall(statuses, phase) == OverallState.STOPPING


def test_mandatory_error_is_unhealthy():
    statuses = [
        status("database", DependencyState.ERROR),
        status("cache", DependencyState.CONNECTED, mandatory=False),
    ]
    assert overall(statuses) == OverallState.UNHEALTHY


def test_mandatory_dropped_while_running_is_unhealthy():
    statuses = [status("database", DependencyState.DISCONNECTED)]
    assert overall(statuses, LifecyclePhase.RUNNING) == OverallState.UNHEALTHY
    assert overall(statuses, LifecyclePhase.INITIALIZING) == OverallState.STARTING


def test_optional_error_is_degraded():
    statuses = [
        status("database", DependencyState.CONNECTED),
        status("cache", DependencyState.ERROR, mandatory=False),
    ]
    assert overall(statuses) == OverallState.DEGRADED


def test_mandatory_connecting_past_grace_period_is_degraded():
    statuses = [status("database", DependencyState.CONNECTING, since=NOW - GRACE - 1)]
    assert overall(statuses, LifecyclePhase.INITIALIZING) == OverallState.DEGRADED

    recent = [status("database", DependencyState.CONNECTING, since=NOW - 1)]
    assert overall(recent, LifecyclePhase.INITIALIZING) == OverallState.STARTING


def test_all_mandatory_connected_is_ready():
    statuses = [
        status("database", DependencyState.CONNECTED),
        status("realtime", DependencyState.CONNECTING, mandatory=False),
    ]
    assert overall(statuses) == OverallState.READY


def test_overall_state_is_pure_and_order_independent():
    statuses = [
        status("database", DependencyState.CONNECTED),
        status("cache", DependencyState.ERROR, mandatory=False),
        status("realtime", DependencyState.CONNECTING, mandatory=False),
    ]
    first = overall(statuses)
    assert overall(statuses) == first
    for ordering in itertools.permutations(statuses):
        assert overall(list(ordering)) == first


# ============================================================================
# Registry
# ============================================================================

def test_registry_applies_legal_transitions():
    registry = HealthRegistry()
    registry.register("database", mandatory=True)

    updated = registry.apply("database", DependencyState.CONNECTING)

    assert updated.state == DependencyState.CONNECTING
    assert updated.transitions == 1
    assert registry.get("database") is updated


def test_registry_ignores_repeats_and_illegal_edges():
    registry = HealthRegistry()
    registry.register("database", mandatory=True)

    assert registry.apply("database", DependencyState.CONNECTED) is None
    assert registry.apply("database", DependencyState.DISCONNECTED) is None
    assert registry.apply("unknown", DependencyState.CONNECTING) is None
    assert registry.get("database").transitions == 0


def test_registry_repeated_error_refreshes_message():
    registry = HealthRegistry()
    registry.register("database", mandatory=True)
    registry.apply("database", DependencyState.CONNECTING)
    registry.apply("database", DependencyState.ERROR, "refused")

    assert registry.apply("database", DependencyState.ERROR, "timed out") is None
    current = registry.get("database")
    assert current.last_error == "timed out"
    assert current.transitions == 2


def test_registry_summary_counts_states():
    registry = HealthRegistry()
    registry.register("database", mandatory=True)
    registry.register("cache", mandatory=False)
    registry.apply("cache", DependencyState.CONNECTING)

    summary = registry.summary()

    assert summary["disconnected"] == 1
    assert summary["connecting"] == 1
    assert summary["total"] == 2
    assert [s.name for s in registry.snapshot()] == ["database", "cache"]
