"""Dependency status tracking and overall health calculation."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import time

import structlog

from .base import DependencyState, LifecyclePhase, OverallState, is_allowed_transition

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DependencyStatus:
    """Status of a single tracked dependency."""
    name: str
    mandatory: bool = True
    state: DependencyState = DependencyState.DISCONNECTED
    last_error: Optional[str] = None
    last_transition_at: datetime = field(default_factory=_utcnow)
    # monotonic clock reading of the last transition, used for grace periods
    since: float = field(default_factory=time.monotonic)
    transitions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            "name": self.name,
            "state": self.state.value,
            "mandatory": self.mandatory,
            "last_error": self.last_error,
            "last_transition_at": self.last_transition_at.isoformat(),
            "transitions": self.transitions,
        }


@dataclass(frozen=True)
class ServiceHealth:
    """Point-in-time health of the whole service. Never persisted."""
    overall_state: OverallState
    phase: LifecyclePhase
    dependencies: List[DependencyStatus]
    uptime_seconds: float
    memory_usage: Dict[str, Any]
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def is_ready(self) -> bool:
        return self.overall_state == OverallState.READY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_state": self.overall_state.value,
            "phase": self.phase.value,
            "dependencies": [d.to_dict() for d in self.dependencies],
            "uptime_seconds": round(self.uptime_seconds, 3),
            "memory_usage": self.memory_usage,
            "timestamp": self.timestamp.isoformat(),
        }


def compute_overall_state(
    statuses: Iterable[DependencyStatus],
    phase: LifecyclePhase,
    now: float,
    grace_period: float,
) -> OverallState:
    """
    Reduce a full status snapshot to one overall state.

    Logic (first match wins):
    - STOPPING: lifecycle is draining or stopped
    - UNHEALTHY: any mandatory dependency in error, or a mandatory
      dependency dropped after the service started running
    - DEGRADED: any optional dependency in error, or a mandatory
      dependency still connecting past the grace period
    - READY: all mandatory dependencies connected
    - STARTING: otherwise
    """
    if phase in (LifecyclePhase.DRAINING, LifecyclePhase.STOPPED):
        return OverallState.STOPPING

    statuses = list(statuses)
    mandatory = [s for s in statuses if s.mandatory]
    optional = [s for s in statuses if not s.mandatory]

    if any(s.state == DependencyState.ERROR for s in mandatory):
        return OverallState.UNHEALTHY

    if phase == LifecyclePhase.RUNNING and any(
        s.state == DependencyState.DISCONNECTED for s in mandatory
    ):
        return OverallState.UNHEALTHY

    if any(s.state == DependencyState.ERROR for s in optional):
        return OverallState.DEGRADED

    if any(
        s.state == DependencyState.CONNECTING and now - s.since > grace_period
        for s in mandatory
    ):
        return OverallState.DEGRADED

    if all(s.state == DependencyState.CONNECTED for s in mandatory):
        return OverallState.READY

    return OverallState.STARTING


class HealthRegistry:
    """
    Ordered set of dependency statuses for one coordinator.

    Only the owning coordinator writes to it, always from the event loop
    thread, so there is no locking. Statuses are immutable; every update
    swaps in a new record.
    """

    def __init__(self):
        self._statuses: Dict[str, DependencyStatus] = {}
        logger.debug("health_registry_initialized")

    def register(
        self,
        name: str,
        mandatory: bool,
        state: DependencyState = DependencyState.DISCONNECTED,
    ) -> DependencyStatus:
        status = DependencyStatus(name=name, mandatory=mandatory, state=state)
        self._statuses[name] = status
        return status

    def __contains__(self, name: str) -> bool:
        return name in self._statuses

    def __len__(self) -> int:
        return len(self._statuses)

    def get(self, name: str) -> Optional[DependencyStatus]:
        return self._statuses.get(name)

    def snapshot(self) -> List[DependencyStatus]:
        """All statuses in registration (startup) order."""
        return list(self._statuses.values())

    def apply(
        self,
        name: str,
        new_state: DependencyState,
        error: Optional[str] = None,
    ) -> Optional[DependencyStatus]:
        """
        Apply a transition.

        Returns:
            The updated status, or None when the transition was a repeat,
            illegal, or for an unknown dependency
        """
        current = self._statuses.get(name)
        if current is None:
            logger.warning("unknown_dependency_reported", dependency=name, state=new_state.value)
            return None

        if current.state == new_state:
            if new_state == DependencyState.ERROR and error and error != current.last_error:
                self._statuses[name] = replace(current, last_error=error)
            return None

        if not is_allowed_transition(current.state, new_state):
            logger.warning(
                "illegal_transition_rejected",
                dependency=name,
                current=current.state.value,
                requested=new_state.value,
            )
            return None

        updated = replace(
            current,
            state=new_state,
            last_error=error if new_state == DependencyState.ERROR else None,
            last_transition_at=_utcnow(),
            since=time.monotonic(),
            transitions=current.transitions + 1,
        )
        self._statuses[name] = updated

        log = logger.error if new_state == DependencyState.ERROR else logger.info
        log(
            "dependency_state_changed",
            dependency=name,
            previous=current.state.value,
            state=new_state.value,
            error=error,
            mandatory=current.mandatory,
        )
        return updated

    def summary(self) -> Dict[str, int]:
        """Dependency count by state."""
        counts = {state.value: 0 for state in DependencyState}
        for status in self._statuses.values():
            counts[status.state.value] += 1
        counts["total"] = len(self._statuses)
        return counts
