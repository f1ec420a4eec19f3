import asyncio
from typing import List, Optional, Tuple

import pytest

from dind_backend.api.lifespan.base import BaseDependencyAdapter, DependencyState
from dind_backend.api.lifespan.registry import DependencySpec
from dind_backend.core.config import Settings


class FakeAdapter(BaseDependencyAdapter):
    """In-memory adapter with scriptable connect/disconnect behaviour."""

    def __init__(
        self,
        name: str,
        fail_times: int = 0,
        always_fail: bool = False,
        hang_connect: bool = False,
        hang_disconnect: bool = False,
        close_error: bool = False,
        connect_delay: float = 0.0,
        **kwargs,
    ):
        self.name = name
        kwargs.setdefault("connect_timeout", 1.0)
        kwargs.setdefault("retry_attempts", 1)
        kwargs.setdefault("retry_base_delay", 0.0)
        super().__init__(**kwargs)
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.hang_connect = hang_connect
        self.hang_disconnect = hang_disconnect
        self.close_error = close_error
        self.connect_delay = connect_delay
        self.open_calls = 0
        self.close_calls = 0
        self.disconnect_calls = 0

    async def _open(self) -> None:
        self.open_calls += 1
        if self.hang_connect:
            await asyncio.Event().wait()
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.always_fail or self.open_calls <= self.fail_times:
            raise ConnectionRefusedError(f"{self.name} refused connection")

    async def _close(self) -> None:
        self.close_calls += 1
        if self.hang_disconnect:
            await asyncio.Event().wait()
        if self.close_error:
            raise RuntimeError("close blew up")

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        await super().disconnect()


class TransitionLog:
    """Reporter that records every transition pushed by an adapter."""

    def __init__(self):
        self.events: List[Tuple[str, DependencyState, Optional[str]]] = []

    def __call__(self, name, state, error=None):
        self.events.append((name, state, error))

    @property
    def states(self) -> List[DependencyState]:
        return [state for _, state, _ in self.events]


def spec(adapter, mandatory=True, start_timeout=2.0, drain_timeout=1.0) -> DependencySpec:
    return DependencySpec(adapter, mandatory=mandatory, start_timeout=start_timeout, drain_timeout=drain_timeout)


@pytest.fixture
def transition_log():
    return TransitionLog()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        LOG_FORMAT="console",
        STARTUP_GRACE_PERIOD=10.0,
        DRAIN_TIMEOUT=2.0,
        EXIT_ON_MANDATORY_FAILURE=False,
    )


@pytest.fixture
def make_app(test_settings):
    """Build an app whose dependencies are the given (adapter, mandatory) pairs."""
    from dind_backend.api.main import create_app

    def _make(dependencies, **overrides):
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings

        def factory(_settings, _app):
            return [spec(adapter, mandatory=mandatory) for adapter, mandatory in dependencies]

        return create_app(settings, specs_factory=factory)

    return _make
