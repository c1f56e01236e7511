"""Machine API: host records plus the drivers that back them."""

import json
import logging
import time
from typing import Union

from command import CommandRunner, ExecRunner, KICRunner, SSHRunner
from driver.registry import DriverRegistry, Kind
from errors import ErrorKind, MinikubeError
from machine.host import Host
from machine.store import HostStore

logger = logging.getLogger(__name__)


class LocalClient:
    """Creates, loads and saves hosts through a driver registry and a store."""

    def __init__(self, registry: DriverRegistry, store: HostStore):
        self.registry = registry
        self.store = store

    def _definition(self, driver_name: str):
        definition = self.registry.get(driver_name)
        if definition is None:
            raise MinikubeError(ErrorKind.UNSUPPORTED_DRIVER, f"unsupported/missing driver: {driver_name}")
        return definition

    def exists(self, name: str) -> bool:
        return self.store.exists(name)

    def new_host(self, driver_name: str, raw_config: Union[bytes, str]) -> Host:
        """Build a host from a serialized driver config."""
        config = json.loads(raw_config)
        driver = self._definition(driver_name).init(config)
        return Host(name=config['machine_name'], driver_name=driver_name, driver_config=config, driver=driver)

    def create(self, host: Host) -> None:
        start = time.time()
        logger.info(f"Creating {host.driver_name} machine {host.name}")
        host.driver.create()
        logger.info(f"duration metric: libmachine.API.Create for {host.name!r} took {time.time() - start:.1f}s")

    def load(self, name: str) -> Host:
        """Load a host record and attach its driver."""
        host = self.store.load(name)
        host.driver = self._definition(host.driver_name).init(host.driver_config)
        return host

    def save(self, host: Host) -> None:
        self.store.save(host)

    def remove(self, name: str) -> None:
        """Delete the backend unit and the host record."""
        host = self.load(name)
        host.driver.remove()
        self.store.remove(name)

    def command_runner(self, host: Host) -> CommandRunner:
        """Runner for the host, chosen by driver kind."""
        kind = self._definition(host.driver_name).kind
        if kind == Kind.BARE_METAL:
            return ExecRunner()
        if kind == Kind.KIC:
            return KICRunner(name=host.name, oci_binary=host.driver_config.get('oci_binary', 'docker'))
        if kind == Kind.VM:
            driver = host.driver
            return SSHRunner(
                host=driver.get_ssh_hostname(),
                port=driver.get_ssh_port(),
                user=driver.get_ssh_username(),
                key_path=driver.get_ssh_key_path() or None,
            )
        raise ValueError(f"No command runner for {kind.value} driver {host.driver_name}")
