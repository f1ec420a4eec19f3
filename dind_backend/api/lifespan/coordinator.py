"""
dind_backend/api/lifespan/coordinator.py
Lifecycle coordinator for the backend service.

Responsibilities:
1. Connect dependencies in order (concurrently, each bounded by its own timeout)
2. Own the lifecycle phase and every dependency status
3. Compute service health on demand without touching the network
4. Drain on termination: stop intake, disconnect in reverse order, bounded
"""

import asyncio
import inspect
import signal
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

import structlog

from ...core.exceptions import (
    ConfigurationError,
    MandatoryDependencyError,
    ShutdownTimeoutError,
)
from ..metrics.registry import memory_snapshot, record_dependency_state, record_phase
from .base import ALLOWED_PHASES, BaseDependencyAdapter, DependencyState, LifecyclePhase, OverallState
from .health_registry import HealthRegistry, ServiceHealth, compute_overall_state
from .registry import DependencyRegistry, DependencySpec

logger = structlog.get_logger("lifecycle")

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LifecycleCoordinator:
    """
    Single owner of the lifecycle phase and the dependency status set.

    Adapters push transitions through ``report_transition``; everything
    runs on one event loop, so state is never mutated concurrently.
    """

    def __init__(
        self,
        specs: Union[DependencyRegistry, Iterable[DependencySpec]],
        *,
        grace_period: float = 10.0,
        drain_timeout: float = 15.0,
        exit_on_mandatory_failure: bool = False,
        on_drain: Optional[Callable[[], Any]] = None,
    ):
        if drain_timeout is None or drain_timeout <= 0:
            raise ConfigurationError("drain_timeout", f"must be a positive number, got {drain_timeout!r}")
        if grace_period is None or grace_period < 0:
            raise ConfigurationError("grace_period", f"must be zero or more, got {grace_period!r}")

        self._dependencies = specs if isinstance(specs, DependencyRegistry) else DependencyRegistry(specs)
        self._health = HealthRegistry()
        for spec in self._dependencies:
            self._health.register(spec.name, spec.mandatory, state=spec.adapter.probe())
            spec.adapter.bind(self.report_transition)

        self.grace_period = grace_period
        self.drain_timeout = drain_timeout
        self.exit_on_mandatory_failure = exit_on_mandatory_failure
        self._on_drain = on_drain

        self._phase = LifecyclePhase.INITIALIZING
        self.phase_history: List[Tuple[LifecyclePhase, float]] = [(self._phase, time.monotonic())]
        self._started_at = time.monotonic()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._connect_tasks: Dict[str, asyncio.Task] = {}
        self._disconnected: Set[str] = set()
        self._late_releases: Set[asyncio.Task] = set()
        self._drain_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._stop_requested: Optional[asyncio.Event] = None
        self._signals_received = 0
        self._fault: Optional[str] = None

        record_phase(self._phase)
        logger.debug(
            "coordinator_created",
            dependencies=self._dependencies.names(),
            grace_period=grace_period,
            drain_timeout=drain_timeout,
            exit_on_mandatory_failure=exit_on_mandatory_failure,
        )

    # ========================================================================
    # State
    # ========================================================================

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    @property
    def dependencies(self) -> DependencyRegistry:
        return self._dependencies

    @property
    def fault(self) -> Optional[str]:
        return self._fault

    def adapter(self, name: str) -> Optional[BaseDependencyAdapter]:
        spec = self._dependencies.get(name)
        return spec.adapter if spec else None

    def _set_phase(self, new_phase: LifecyclePhase) -> bool:
        if new_phase not in ALLOWED_PHASES[self._phase]:
            return False
        previous, self._phase = self._phase, new_phase
        self.phase_history.append((new_phase, time.monotonic()))
        record_phase(new_phase)
        logger.info("lifecycle_phase_changed", previous=previous.value, phase=new_phase.value)
        return True

    def report_transition(
        self,
        name: str,
        new_state: DependencyState,
        error: Optional[str] = None,
    ) -> bool:
        """
        Record a dependency state transition.

        Returns:
            True if the status changed; repeats, illegal edges and unknown
            names are logged and ignored
        """
        if self._health.apply(name, new_state, error) is None:
            return False
        record_dependency_state(name, new_state)
        return True

    def get_health(self) -> ServiceHealth:
        """Current service health. Pure read, no I/O."""
        statuses = self._health.snapshot()
        now = time.monotonic()
        return ServiceHealth(
            overall_state=compute_overall_state(statuses, self._phase, now, self.grace_period),
            phase=self._phase,
            dependencies=statuses,
            uptime_seconds=now - self._started_at,
            memory_usage=memory_snapshot(),
        )

    @property
    def overall_state(self) -> OverallState:
        return compute_overall_state(
            self._health.snapshot(), self._phase, time.monotonic(), self.grace_period
        )

    def is_alive(self) -> bool:
        """Liveness: the process works, regardless of dependency health."""
        return self._fault is None and self._phase != LifecyclePhase.STOPPED

    def record_fault(self, reason: str) -> None:
        """Mark an unrecoverable internal fault (liveness fails)."""
        self._fault = reason
        logger.critical("internal_fault_recorded", reason=reason)

    def dependency_summary(self) -> Dict[str, int]:
        return self._health.summary()

    def dependency_details(self, name: str) -> Optional[Dict[str, Any]]:
        spec = self._dependencies.get(name)
        status = self._health.get(name)
        if spec is None or status is None:
            return None

        try:
            probed = spec.adapter.probe().value
            metadata = spec.adapter.metadata()
        except Exception as e:
            probed, metadata = None, {"error": str(e)}

        return {
            **status.to_dict(),
            "probe": probed,
            "start_timeout": spec.start_timeout,
            "drain_timeout": spec.drain_timeout,
            "metadata": metadata,
        }

    # ========================================================================
    # Startup
    # ========================================================================

    async def start(self) -> ServiceHealth:
        """
        Connect every dependency and enter the running phase.

        Mandatory dependencies are awaited (each bounded by its start
        timeout); optional ones keep connecting in the background.

        Raises:
            MandatoryDependencyError: a mandatory dependency failed and
                exit_on_mandatory_failure is enabled
        """
        if self._connect_tasks:
            logger.warning("coordinator_already_started", phase=self._phase.value)
            return self.get_health()

        self._loop = asyncio.get_running_loop()
        logger.info("lifecycle_starting", dependencies=self._dependencies.names())

        for spec in self._dependencies.startup_order():
            self._connect_tasks[spec.name] = asyncio.create_task(
                self._start_one(spec), name=f"connect:{spec.name}"
            )

        mandatory = [self._connect_tasks[s.name] for s in self._dependencies if s.mandatory]
        if mandatory:
            # asyncio.wait leaves the connect tasks running if start() is cancelled
            await asyncio.wait(mandatory)
        for task in mandatory:
            if not task.cancelled() and task.exception() is not None:
                self.record_fault(f"startup failed: {task.exception()}")

        if not self._set_phase(LifecyclePhase.RUNNING):
            logger.warning("startup_interrupted", phase=self._phase.value)
        health = self.get_health()

        failed = [
            s.name for s in health.dependencies
            if s.mandatory and s.state == DependencyState.ERROR
        ]
        logger.info(
            "lifecycle_started",
            overall_state=health.overall_state.value,
            phase=health.phase.value,
            failed_mandatory=failed,
        )

        if failed and self._phase == LifecyclePhase.RUNNING:
            if self.exit_on_mandatory_failure:
                logger.critical("mandatory_dependencies_failed", dependencies=failed, policy="exit")
                raise MandatoryDependencyError(failed)
            logger.error("mandatory_dependencies_failed", dependencies=failed, policy="continue_degraded")

        return health

    async def _start_one(self, spec: DependencySpec) -> None:
        try:
            await asyncio.wait_for(spec.adapter.connect(), timeout=spec.start_timeout)
        except asyncio.TimeoutError:
            self._mark_error(spec.name, f"did not connect within {spec.start_timeout}s")
        except asyncio.CancelledError:
            self._mark_error(spec.name, "connect cancelled")
            raise
        except Exception as e:
            self._mark_error(spec.name, str(e) or type(e).__name__)

    def _mark_error(self, name: str, message: str) -> None:
        status = self._health.get(name)
        if status is None:
            return
        if status.state == DependencyState.CONNECTED:
            logger.warning("connect_error_after_connected", dependency=name, error=message)
            return
        if status.state == DependencyState.DISCONNECTED:
            # adapter raised without reporting; keep the edge sequence legal
            self.report_transition(name, DependencyState.CONNECTING)
        self.report_transition(name, DependencyState.ERROR, message)

    # ========================================================================
    # Shutdown
    # ========================================================================

    async def shutdown(self, drain_timeout: Optional[float] = None) -> ServiceHealth:
        """
        Drain and stop. Safe to call repeatedly; every caller waits on the
        same drain, which never outlives drain_timeout.
        """
        drain = self._begin_drain(drain_timeout)
        await asyncio.shield(drain)
        return self.get_health()

    def _begin_drain(self, drain_timeout: Optional[float] = None) -> asyncio.Task:
        if self._drain_task is None:
            timeout = drain_timeout if drain_timeout is not None else self.drain_timeout
            self._stop_requested = asyncio.Event()
            if self._set_phase(LifecyclePhase.DRAINING):
                logger.info("lifecycle_draining", drain_timeout=timeout)
            self._drain_task = asyncio.get_running_loop().create_task(
                self._drain(timeout), name="lifecycle:drain"
            )
        return self._drain_task

    async def _drain(self, timeout: float) -> None:
        if self._phase == LifecyclePhase.STOPPED:
            return

        self._teardown_task = asyncio.create_task(self._teardown(), name="lifecycle:teardown")
        stop_waiter = asyncio.create_task(self._stop_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {self._teardown_task, stop_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_waiter.cancel()

        if self._teardown_task not in done:
            # leave the hung teardown behind; stopping on time wins
            self._teardown_task.cancel()
            if self._phase != LifecyclePhase.STOPPED:
                pending = [n for n in self._dependencies.names() if n not in self._disconnected]
                error = ShutdownTimeoutError(timeout, pending=pending)
                logger.error("shutdown_timeout", **error.to_dict())

        if self._set_phase(LifecyclePhase.STOPPED):
            logger.info("lifecycle_stopped", uptime_seconds=round(time.monotonic() - self._started_at, 3))

    async def _teardown(self) -> None:
        await self._notify_drain()
        for spec in self._dependencies.shutdown_order():
            try:
                await self._teardown_one(spec)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "dependency_teardown_failed",
                    dependency=spec.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def _notify_drain(self) -> None:
        if self._on_drain is None:
            return
        try:
            result = self._on_drain()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("drain_callback_failed", error=str(e), error_type=type(e).__name__)

    async def _teardown_one(self, spec: DependencySpec) -> None:
        name = spec.name

        connect_task = self._connect_tasks.get(name)
        if connect_task is not None and not connect_task.done():
            # let the in-flight connect settle, then disconnect
            logger.info("awaiting_inflight_connect", dependency=name)
            try:
                await asyncio.wait({connect_task}, timeout=spec.drain_timeout)
            finally:
                if not connect_task.done():
                    self._release_when_settled(spec, connect_task)
            if not connect_task.done():
                return

        if name in self._disconnected:
            return
        self._disconnected.add(name)
        await self._release(spec)

    def _release_when_settled(self, spec: DependencySpec, connect_task: asyncio.Task) -> None:
        """Disconnect once a connect that outlived the drain wait resolves."""
        logger.warning(
            "inflight_connect_outlived_drain",
            dependency=spec.name,
            drain_timeout=spec.drain_timeout,
        )

        def _on_settled(_task: asyncio.Task) -> None:
            if spec.name in self._disconnected:
                return
            self._disconnected.add(spec.name)
            release = asyncio.ensure_future(self._release(spec))
            self._late_releases.add(release)
            release.add_done_callback(self._late_releases.discard)

        connect_task.add_done_callback(_on_settled)

    async def _release(self, spec: DependencySpec) -> None:
        name = spec.name
        disconnect = asyncio.ensure_future(spec.adapter.disconnect())
        try:
            done, _ = await asyncio.wait({disconnect}, timeout=spec.drain_timeout)
        except asyncio.CancelledError:
            disconnect.cancel()
            raise
        if not done:
            disconnect.cancel()
            logger.warning("dependency_disconnect_timeout", dependency=name, timeout=spec.drain_timeout)
        elif not disconnect.cancelled() and disconnect.exception() is not None:
            logger.error("dependency_disconnect_failed", dependency=name, error=str(disconnect.exception()))
        else:
            logger.info("dependency_released", dependency=name)

    def force_stop(self, reason: str = "forced") -> None:
        """Jump to stopped now; outstanding disconnects are abandoned."""
        if self._phase == LifecyclePhase.STOPPED:
            return
        logger.warning("lifecycle_force_stop", reason=reason, phase=self._phase.value)

        if self._teardown_task is not None and not self._teardown_task.done():
            self._teardown_task.cancel()
        if self._stop_requested is not None:
            self._stop_requested.set()

        if self._phase in (LifecyclePhase.INITIALIZING, LifecyclePhase.RUNNING):
            self._set_phase(LifecyclePhase.DRAINING)
        if self._set_phase(LifecyclePhase.STOPPED):
            logger.info("lifecycle_stopped", forced=True)

    # ========================================================================
    # Signals
    # ========================================================================

    def handle_signal(self, signum: Optional[int] = None) -> None:
        """
        First termination signal starts the drain; another one while
        draining forces an immediate stop. Must run on the event loop.
        """
        self._signals_received += 1
        sig_name = signal.Signals(signum).name if signum is not None else "manual"

        if self._phase == LifecyclePhase.STOPPED:
            logger.info("signal_ignored", signal=sig_name, phase=self._phase.value)
            return

        if self._drain_task is None:
            logger.warning("termination_signal_received", signal=sig_name, action="drain")
            self._begin_drain()
        else:
            logger.warning("termination_signal_received", signal=sig_name, action="force_stop")
            self.force_stop(f"repeated signal {sig_name}")

    def notify_signal(self, signum: int) -> None:
        """Thread/signal-handler safe entry point for handle_signal."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.handle_signal, signum)

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Route SIGINT/SIGTERM to handle_signal on the given loop."""
        loop = loop or asyncio.get_running_loop()
        self._loop = loop
        for sig in TERMINATION_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops
                signal.signal(sig, lambda s, _frame: self.notify_signal(s))
        logger.debug("signal_handlers_installed", signals=[s.name for s in TERMINATION_SIGNALS])


__all__ = ["LifecycleCoordinator", "TERMINATION_SIGNALS"]
