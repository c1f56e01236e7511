"""Driver registry.

The host application builds a DriverRegistry at startup and passes it into
the machine client; nothing registers itself at import time.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Optional

from config import ClusterConfig, Node
from driver.base import Driver

logger = logging.getLogger(__name__)


class Kind(Enum):
    """What a driver's machines are."""
    VM = 'vm'
    KIC = 'kic'
    BARE_METAL = 'bare-metal'
    MOCK = 'mock'


class Priority(IntEnum):
    """Preference used when auto-selecting a driver."""
    UNKNOWN = 0
    DISCOURAGED = 1
    DEPRECATED = 2
    FALLBACK = 3
    DEFAULT = 4
    PREFERRED = 5


@dataclass
class DriverState:
    """Health of a driver on this host."""
    installed: bool = False
    healthy: bool = False
    error: Optional[str] = None
    fix: str = ''
    doc: str = ''


def _always_healthy() -> DriverState:
    return DriverState(installed=True, healthy=True)


@dataclass
class DriverDef:
    """Registry entry for a driver.

    Attributes:
        name: Driver name used in cluster configs
        kind: Machine kind (decides runner and post-start steps)
        config: Builds the driver config dict for a cluster node
        init: Builds a driver object from a config dict
        status: Reports whether the driver is usable on this host
        priority: Auto-selection preference
    """
    name: str
    kind: Kind
    config: Callable[[ClusterConfig, Node], dict]
    init: Callable[[dict], Driver]
    status: Callable[[], DriverState] = field(default=_always_healthy)
    priority: Priority = Priority.DEFAULT


class DriverRegistry:
    """Mapping from driver name to its definition."""

    def __init__(self):
        self._drivers: dict[str, DriverDef] = {}

    def register(self, definition: DriverDef) -> None:
        """Add a driver.

        Raises:
            ValueError: If a driver with that name is already registered
        """
        if definition.name in self._drivers:
            raise ValueError(f"Driver '{definition.name}' is already registered")
        self._drivers[definition.name] = definition

    def get(self, name: str) -> Optional[DriverDef]:
        return self._drivers.get(name)

    def kind(self, name: str) -> Optional[Kind]:
        definition = self._drivers.get(name)
        return definition.kind if definition else None

    def names(self) -> list[str]:
        """Registered driver names, sorted."""
        return sorted(self._drivers)

    def available(self) -> list[tuple[DriverDef, DriverState]]:
        """Installed and healthy drivers, highest priority first."""
        usable = []
        for definition in self._drivers.values():
            if definition.kind == Kind.MOCK:
                continue
            state = definition.status()
            logger.debug(f"{definition.name} default: {definition.priority.name} state: {state}")
            if state.installed and state.healthy:
                usable.append((definition, state))
        return sorted(usable, key=lambda pair: pair[0].priority, reverse=True)

    def choose(self) -> Optional[DriverDef]:
        """Pick a driver automatically, or None if nothing is usable."""
        for definition, _ in self.available():
            if definition.priority > Priority.DISCOURAGED:
                return definition
        return None


def default_registry() -> DriverRegistry:
    """Registry with the bundled drivers."""
    from driver import kic, mock, none

    registry = DriverRegistry()
    for definition in (kic.docker_driver_def(), kic.podman_driver_def(), none.driver_def(), mock.driver_def()):
        registry.register(definition)
    return registry
