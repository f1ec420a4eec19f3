"""Dependency specs and the ordered registry the coordinator starts from."""
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional

import structlog

from ...core.exceptions import ConfigurationError
from .base import BaseDependencyAdapter

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DependencySpec:
    """
    How one dependency takes part in the lifecycle.

    Validated once at construction; a bad spec raises ConfigurationError
    before any async work starts.
    """
    adapter: BaseDependencyAdapter
    mandatory: bool = True
    start_timeout: float = 30.0
    drain_timeout: float = 10.0

    def __post_init__(self):
        if not isinstance(self.adapter, BaseDependencyAdapter):
            raise ConfigurationError(
                "adapter",
                f"expected a BaseDependencyAdapter, got {type(self.adapter).__name__}"
            )
        if not self.adapter.name or self.adapter.name == "unnamed":
            raise ConfigurationError(
                "adapter.name",
                f"{type(self.adapter).__name__} must define a 'name' attribute"
            )
        for setting in ("start_timeout", "drain_timeout"):
            value = getattr(self, setting)
            if value is None or value <= 0:
                raise ConfigurationError(
                    f"{self.adapter.name}.{setting}", f"must be a positive number, got {value!r}"
                )

    @property
    def name(self) -> str:
        return self.adapter.name


class DependencyRegistry:
    """
    Ordered, validated collection of dependency specs.

    Startup follows registration order; shutdown runs in reverse (LIFO).
    """

    def __init__(self, specs: Optional[Iterable[DependencySpec]] = None):
        self._specs: List[DependencySpec] = []
        self._by_name: Dict[str, DependencySpec] = {}
        for spec in specs or ():
            self.register(spec)

    def register(self, spec: DependencySpec) -> DependencySpec:
        """
        Register a dependency.

        Raises:
            ConfigurationError: not a DependencySpec, or duplicate name
        """
        if not isinstance(spec, DependencySpec):
            raise ConfigurationError("dependencies", f"expected DependencySpec, got {type(spec).__name__}")

        if spec.name in self._by_name:
            raise ConfigurationError(
                spec.name,
                f"dependency registered twice. Registered: {sorted(self._by_name)}"
            )

        self._specs.append(spec)
        self._by_name[spec.name] = spec

        logger.debug(
            "dependency_registered",
            name=spec.name,
            adapter=type(spec.adapter).__name__,
            mandatory=spec.mandatory,
            start_timeout=spec.start_timeout,
            drain_timeout=spec.drain_timeout,
        )
        return spec

    def get(self, name: str) -> Optional[DependencySpec]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return [spec.name for spec in self._specs]

    def startup_order(self) -> List[DependencySpec]:
        return list(self._specs)

    def shutdown_order(self) -> List[DependencySpec]:
        return list(reversed(self._specs))

    def __iter__(self) -> Iterator[DependencySpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)
