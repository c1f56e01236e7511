"""Machine backends and the registry that maps driver names to them."""

from driver.base import Driver, State
from driver.registry import (
    DriverDef,
    DriverRegistry,
    DriverState,
    Kind,
    Priority,
    default_registry,
)

__all__ = [
    'Driver',
    'State',
    'DriverDef',
    'DriverRegistry',
    'DriverState',
    'Kind',
    'Priority',
    'default_registry',
]
