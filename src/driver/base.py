"""Driver interface for backend machines."""

from enum import Enum
from typing import Protocol, runtime_checkable


class State(str, Enum):
    """Machine state as reported by a driver."""
    NONE = 'None'
    RUNNING = 'Running'
    STARTING = 'Starting'
    STOPPED = 'Stopped'
    ERROR = 'Error'

    def __str__(self) -> str:
        return self.value


@runtime_checkable
class Driver(Protocol):
    """One backend machine (VM, container or the local host)."""

    def driver_name(self) -> str:
        """Registry name of this driver."""

    def exists(self) -> bool:
        """True if the backend unit exists."""

    def create(self) -> None:
        """Materialize the backend unit."""

    def start(self) -> None:
        """Start a stopped unit."""

    def stop(self) -> None:
        """Stop a running unit."""

    def remove(self) -> None:
        """Delete the unit and its volumes."""

    def get_state(self) -> State:
        """Current state of the unit."""

    def get_ip(self) -> str:
        """Address the unit is reachable at from the host."""

    def get_ssh_hostname(self) -> str:
        """Host to connect to for SSH."""

    def get_ssh_port(self) -> int:
        """Port to connect to for SSH."""

    def get_ssh_key_path(self) -> str:
        """Private key used for SSH."""

    def get_ssh_username(self) -> str:
        """User for SSH."""

    def to_dict(self) -> dict:
        """Driver configuration for the host record."""
