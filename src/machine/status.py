"""Machine status for the `status` command."""

import logging
from dataclasses import dataclass

from config import ClusterConfig, machine_name
from driver.base import State

logger = logging.getLogger(__name__)

RUNNING = 'Running'
STOPPED = 'Stopped'
NONEXISTENT = 'Nonexistent'

# Exit code bits
HOST_NOT_RUNNING_FLAG = 1 << 0
CLUSTER_NOT_RUNNING_FLAG = 1 << 1


@dataclass
class NodeStatus:
    name: str
    host: str
    control_plane: bool = True

    def to_dict(self) -> dict:
        return {'Name': self.name, 'Host': self.host, 'ControlPlane': self.control_plane}


def host_status(api, name: str) -> str:
    """Running, Stopped or Nonexistent for one machine."""
    if not api.exists(name):
        return NONEXISTENT
    host = api.load(name)
    state = host.driver.get_state()
    if state == State.RUNNING:
        return RUNNING
    if state == State.NONE:
        return NONEXISTENT
    return STOPPED


def cluster_status(api, cc: ClusterConfig) -> list[NodeStatus]:
    statuses = []
    for node in cc.nodes:
        name = machine_name(cc, node)
        try:
            state = host_status(api, name)
        except Exception as e:
            logger.warning(f"status {name}: {e}")
            state = STOPPED
        statuses.append(NodeStatus(name=name, host=state, control_plane=node.control_plane))
    return statuses


def exit_code(statuses: list[NodeStatus]) -> int:
    """Bit flags: host not running, control plane not running."""
    code = 0
    for status in statuses:
        if status.host != RUNNING:
            code |= HOST_NOT_RUNNING_FLAG
            if status.control_plane:
                code |= CLUSTER_NOT_RUNNING_FLAG
    return code
