"""Base classes and enums for lifecycle-managed dependencies."""
import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from ...core.exceptions import DependencyConnectionError

logger = structlog.get_logger(__name__)


class DependencyState(Enum):
    """Connection state of a single external dependency."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class LifecyclePhase(Enum):
    """Process-wide lifecycle phase owned by the coordinator."""
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class OverallState(Enum):
    """Aggregate service health derived from dependency states."""
    STARTING = "starting"
    READY = "ready"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    STOPPING = "stopping"


# Legal dependency state edges. Anything else is rejected.
ALLOWED_TRANSITIONS = {
    DependencyState.DISCONNECTED: {DependencyState.CONNECTING},
    DependencyState.CONNECTING: {DependencyState.CONNECTED, DependencyState.ERROR},
    DependencyState.CONNECTED: {DependencyState.DISCONNECTED},
    DependencyState.ERROR: {DependencyState.CONNECTING},
}

ALLOWED_PHASES = {
    LifecyclePhase.INITIALIZING: {LifecyclePhase.RUNNING, LifecyclePhase.DRAINING},
    LifecyclePhase.RUNNING: {LifecyclePhase.DRAINING},
    LifecyclePhase.DRAINING: {LifecyclePhase.STOPPED},
    LifecyclePhase.STOPPED: set(),
}

# name, new_state, error message
TransitionReporter = Callable[[str, DependencyState, Optional[str]], Any]


def is_allowed_transition(current: DependencyState, new: DependencyState) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


class BaseDependencyAdapter(ABC):
    """
    Abstract base class for an external dependency (datastore, cache,
    realtime transport).

    Subclasses implement ``_open`` (create the client and complete the
    handshake) and ``_close`` (release whatever ``_open`` created; must
    tolerate a partially opened client). The base class owns the state
    machine, bounded retry with exponential backoff, and pushes every
    transition to the coordinator exactly once.
    """

    # Override in subclasses
    name: str = "unnamed"

    def __init__(
        self,
        connect_timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.1,
        retry_max_delay: float = 3.0,
    ):
        self.connect_timeout = connect_timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._state = DependencyState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._reporter: Optional[TransitionReporter] = None
        self._logger = structlog.get_logger(f"dependency.{self.name}")

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _open(self) -> None:
        """Create the client and complete the handshake. Raise on failure."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the client. May raise; the caller logs and continues."""

    def metadata(self) -> Dict[str, Any]:
        """Adapter-specific details. Must not perform I/O."""
        return {}

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def bind(self, reporter: TransitionReporter) -> None:
        """Attach the coordinator's transition reporter."""
        self._reporter = reporter

    @property
    def state(self) -> DependencyState:
        return self._state

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def probe(self) -> DependencyState:
        """Last known state, no network round-trip."""
        return self._state

    def _transition(self, new_state: DependencyState, error: Optional[str] = None) -> bool:
        if new_state == self._state:
            return False
        if not is_allowed_transition(self._state, new_state):
            self._logger.warning(
                "illegal_transition_skipped",
                dependency=self.name,
                current=self._state.value,
                requested=new_state.value,
            )
            return False

        self._state = new_state
        self._last_error = error if new_state == DependencyState.ERROR else None

        if self._reporter is not None:
            try:
                self._reporter(self.name, new_state, error)
            except Exception as e:
                self._logger.error("transition_report_failed", dependency=self.name, error=str(e))
        return True

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)

    async def connect(self) -> None:
        """
        Connect with bounded retry.

        Raises:
            DependencyConnectionError: all attempts failed
        """
        if self._state == DependencyState.CONNECTED:
            return

        self._transition(DependencyState.CONNECTING)
        last_error = "unknown error"

        for attempt in range(1, self.retry_attempts + 1):
            try:
                await asyncio.wait_for(self._open(), timeout=self.connect_timeout)
            except asyncio.CancelledError:
                await self._safe_close()
                self._transition(DependencyState.ERROR, "connect cancelled")
                raise
            except asyncio.TimeoutError:
                last_error = f"handshake timed out after {self.connect_timeout}s"
            except Exception as e:
                last_error = str(e) or type(e).__name__
            else:
                self._transition(DependencyState.CONNECTED)
                self._logger.info("dependency_connected", dependency=self.name, attempt=attempt)
                return

            await self._safe_close()
            self._logger.warning(
                "connect_attempt_failed",
                dependency=self.name,
                attempt=attempt,
                max_attempts=self.retry_attempts,
                error=last_error,
            )
            if attempt < self.retry_attempts:
                try:
                    await asyncio.sleep(self._backoff(attempt))
                except asyncio.CancelledError:
                    self._transition(DependencyState.ERROR, "connect cancelled")
                    raise

        self._transition(DependencyState.ERROR, last_error)
        raise DependencyConnectionError(self.name, last_error, attempts=self.retry_attempts)

    async def disconnect(self) -> None:
        """Idempotent teardown. Never raises."""
        if self._state == DependencyState.CONNECTING:
            return
        # a dropped or failed client may still hold sockets
        await self._safe_close()
        if self._state == DependencyState.CONNECTED:
            self._transition(DependencyState.DISCONNECTED)
            self._logger.info("dependency_disconnected", dependency=self.name)

    def mark_dropped(self, reason: str) -> None:
        """Report a connection lost outside of an explicit teardown."""
        if self._transition(DependencyState.DISCONNECTED):
            self._logger.warning("dependency_dropped", dependency=self.name, reason=reason)

    async def _safe_close(self) -> None:
        try:
            await self._close()
        except Exception as e:
            # best effort
            self._logger.error(
                "dependency_close_failed",
                dependency=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
