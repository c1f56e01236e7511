"""Machine lifecycle: host records, the machine API and start/delete flows."""

from machine.client import LocalClient
from machine.host import AuthOptions, EngineOptions, Host
from machine.store import HostNotFoundError, HostStore

__all__ = [
    'LocalClient',
    'AuthOptions',
    'EngineOptions',
    'Host',
    'HostNotFoundError',
    'HostStore',
]
