"""In-memory driver for tests and dry runs."""

import threading

from config import machine_name
from driver.base import State
from driver.registry import DriverDef, Kind, Priority

NAME = 'mock'


class MockDriver:
    """Records calls and tracks state in memory."""

    def __init__(self, config: dict):
        self.config = dict(config)
        self.name = config['machine_name']
        self.state = State.NONE
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def _record(self, call: str) -> None:
        with self._lock:
            self.calls.append(call)

    def driver_name(self) -> str:
        return NAME

    def exists(self) -> bool:
        return self.state != State.NONE

    def create(self) -> None:
        self._record('create')
        self.state = State.RUNNING

    def start(self) -> None:
        self._record('start')
        self.state = State.RUNNING

    def stop(self) -> None:
        self._record('stop')
        self.state = State.STOPPED

    def remove(self) -> None:
        self._record('remove')
        self.state = State.NONE

    def get_state(self) -> State:
        return self.state

    def get_ip(self) -> str:
        return self.config.get('ip', '127.0.0.1')

    def get_ssh_hostname(self) -> str:
        return 'localhost'

    def get_ssh_port(self) -> int:
        return 22

    def get_ssh_key_path(self) -> str:
        return ''

    def get_ssh_username(self) -> str:
        return 'docker'

    def to_dict(self) -> dict:
        return dict(self.config)


def driver_def() -> DriverDef:
    return DriverDef(
        name=NAME,
        kind=Kind.MOCK,
        config=lambda cc, node: {'machine_name': machine_name(cc, node)},
        init=MockDriver,
        priority=Priority.UNKNOWN,
    )
