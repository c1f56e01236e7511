"""Container runtime (docker/podman) CLI helpers for container nodes."""

import json
import logging
import time
from typing import Optional

from common import run_command
from driver.base import State

logger = logging.getLogger(__name__)

DOCKER = 'docker'
PODMAN = 'podman'

# Written on every container, volume and network minikube creates
CREATED_BY_LABEL_KEY = 'created_by.minikube.sigs.k8s.io'
CREATED_BY_LABEL = f'{CREATED_BY_LABEL_KEY}=true'
PROFILE_LABEL_KEY = 'name.minikube.sigs.k8s.io'
NODE_LABEL_KEY = 'mode.minikube.sigs.k8s.io'

_STATE_MAP = {
    'running': State.RUNNING,
    'created': State.STOPPED,
    'exited': State.STOPPED,
    'paused': State.STOPPED,
    'restarting': State.STARTING,
    'removing': State.STOPPED,
    'dead': State.ERROR,
}


class OCIError(Exception):
    """Container runtime command failed."""


def _run(oci_binary: str, args: list[str], timeout: int = 120) -> str:
    cmd = [oci_binary] + args
    rc, out, err = run_command(cmd, timeout=timeout)
    if rc != 0:
        raise OCIError(f"{' '.join(cmd)}: {(err or out).strip()}")
    return out


def container_exists(oci_binary: str, name: str) -> bool:
    """True if a container with exactly this name exists (running or not)."""
    out = _run(oci_binary, ['ps', '-a', '--filter', f'name=^{name}$', '--format', '{{.Names}}'])
    return name in out.split()


def container_labels(oci_binary: str, name: str) -> dict:
    out = _run(oci_binary, ['inspect', '--format', '{{json .Config.Labels}}', name])
    return json.loads(out.strip() or '{}') or {}


def is_created_by_minikube(oci_binary: str, name: str) -> bool:
    """True if the container carries the label minikube writes at creation."""
    return container_labels(oci_binary, name).get(CREATED_BY_LABEL_KEY) == 'true'


def container_status(oci_binary: str, name: str) -> State:
    rc, out, _ = run_command(
        [oci_binary, 'container', 'inspect', name, '--format', '{{.State.Status}}'], timeout=60,
    )
    if rc != 0:
        return State.NONE
    return _STATE_MAP.get(out.strip(), State.ERROR)


def container_ip(oci_binary: str, name: str) -> str:
    out = _run(oci_binary, [
        'container', 'inspect', '-f', '{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}', name,
    ])
    return out.strip()


def forwarded_port(oci_binary: str, name: str, container_port: int) -> int:
    """Host port published for a container port."""
    template = f'{{{{(index (index .NetworkSettings.Ports "{container_port}/tcp") 0).HostPort}}}}'
    out = _run(oci_binary, ['container', 'inspect', '-f', template, name])
    try:
        return int(out.strip().strip("'"))
    except ValueError as e:
        raise OCIError(f"unexpected host port for {name}:{container_port}: {out.strip()!r}") from e


def delete_container(oci_binary: str, name: str) -> None:
    """Stop and remove a container; a missing container is not an error."""
    if not container_exists(oci_binary, name):
        return
    rc, _, err = run_command([oci_binary, 'stop', name], timeout=120)
    if rc != 0:
        logger.warning(f"Failed to stop container {name}: {err.strip()}")
    _run(oci_binary, ['rm', '-f', '-v', name])


def create_volume(oci_binary: str, name: str, profile: str) -> None:
    """Create the node's data volume, labelled as minikube-owned."""
    _run(oci_binary, [
        'volume', 'create', name,
        '--label', f'{PROFILE_LABEL_KEY}={profile}',
        '--label', CREATED_BY_LABEL,
    ])


def delete_volume(oci_binary: str, name: str) -> None:
    rc, _, err = run_command([oci_binary, 'volume', 'rm', '-f', name], timeout=120)
    if rc != 0:
        logger.warning(f"Failed to remove volume {name}: {err.strip()}")


def extract_tarball_to_volume(oci_binary: str, tarball: str, volume: str, image: str) -> None:
    """Unpack a preload tarball into a volume with a throwaway container."""
    start = time.time()
    _run(oci_binary, [
        'run', '--rm', '--entrypoint', '/usr/bin/tar',
        '-v', f'{tarball}:/preloaded.tar:ro',
        '-v', f'{volume}:/extractDir',
        image, '-I', 'lz4', '-xf', '/preloaded.tar', '-C', '/extractDir',
    ], timeout=600)
    logger.info(f"duration metric: took {time.time() - start:.1f}s to extract preloaded images to volume {volume}")


def create_container_node(
    oci_binary: str,
    name: str,
    image: str,
    profile: str,
    cpus: int,
    memory: int,
    port_mappings: list[int],
    envs: Optional[dict] = None,
    role: str = 'control-plane',
    timeout: int = 60,
) -> None:
    """Run a privileged node container and wait until it is running.

    Raises:
        OCIError: If the container cannot be created or never reaches running
    """
    args = [
        'run', '-d', '-t', '--privileged',
        '--security-opt', 'seccomp=unconfined',
        '--tmpfs', '/tmp', '--tmpfs', '/run',
        '-v', '/lib/modules:/lib/modules:ro',
        '--hostname', name, '--name', name,
        '--label', CREATED_BY_LABEL,
        '--label', f'{PROFILE_LABEL_KEY}={profile}',
        '--label', f'{NODE_LABEL_KEY}={role}',
        '--volume', f'{name}:/var',
        f'--cpus={cpus}', f'--memory={memory}mb',
    ]
    for key, value in sorted((envs or {}).items()):
        args += ['-e', f'{key}={value}']
    for port in port_mappings:
        args += ['--publish', f'127.0.0.1::{port}']
    _run(oci_binary, args + [image], timeout=300)

    deadline = time.time() + timeout
    while time.time() < deadline:
        if container_status(oci_binary, name) == State.RUNNING:
            return
        time.sleep(1)
    raise OCIError(f"container {name} did not reach running state within {timeout}s")
