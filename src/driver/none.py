"""Bare-metal driver: Kubernetes runs directly on this host."""

import logging
import os
import socket

from common import run_command
from config import machine_name
from driver.base import State
from driver.registry import DriverDef, DriverState, Kind, Priority

logger = logging.getLogger(__name__)

NAME = 'none'


class NoneDriver:
    """The local host as a machine. Create and remove are no-ops."""

    def __init__(self, config: dict):
        self.config = dict(config)
        self.name = config['machine_name']

    def driver_name(self) -> str:
        return NAME

    def exists(self) -> bool:
        return False

    def create(self) -> None:
        logger.info(f"Using the local host for {self.name}; nothing to create")

    def start(self) -> None:
        pass

    def stop(self) -> None:
        rc, _, err = run_command(['sudo', 'systemctl', 'stop', 'kubelet'], timeout=60)
        if rc != 0:
            logger.warning(f"Failed to stop kubelet: {err.strip()}")

    def remove(self) -> None:
        pass

    def get_state(self) -> State:
        rc, out, _ = run_command(['systemctl', 'is-active', 'kubelet'], timeout=30)
        if rc == 0 and out.strip() == 'active':
            return State.RUNNING
        return State.STOPPED

    def get_ip(self) -> str:
        try:
            return socket.gethostbyname(socket.gethostname())
        except OSError:
            return '127.0.0.1'

    def get_ssh_hostname(self) -> str:
        return ''

    def get_ssh_port(self) -> int:
        return 0

    def get_ssh_key_path(self) -> str:
        return ''

    def get_ssh_username(self) -> str:
        return ''

    def to_dict(self) -> dict:
        return dict(self.config)


def _status() -> DriverState:
    if os.name != 'posix':
        return DriverState(installed=False, error='The none driver requires Linux')
    return DriverState(installed=True, healthy=True)


def driver_def() -> DriverDef:
    return DriverDef(
        name=NAME,
        kind=Kind.BARE_METAL,
        config=lambda cc, node: {'machine_name': machine_name(cc, node)},
        init=NoneDriver,
        status=_status,
        priority=Priority.DISCOURAGED,
    )
