"""KIC driver: each node is a privileged container on the local docker or podman."""

import logging
import shutil
from pathlib import Path

import download
from common import run_command
from config import ClusterConfig, Node, machine_name
from constants import APISERVER_PORT, DOCKER_DAEMON_PORT, REGISTRY_ADDON_PORT, SSH_PORT
from driver import oci
from driver.base import State
from driver.registry import DriverDef, DriverState, Kind, Priority
from errors import ErrorKind, MinikubeError
from tasks import TaskGroup, TaskGroupError

logger = logging.getLogger(__name__)

VERSION = 'v0.0.10'
SHA = 'f58e0c4662bac8a9b5dda7984b185bad8502ade5d9fa364bf2755d636ab51438'

BASE_IMAGE = f'gcr.io/k8s-minikube/kicbase:{VERSION}@sha256:{SHA}'
BASE_IMAGE_FALLBACK_1 = f'kicbase/stable:{VERSION}@sha256:{SHA}'
BASE_IMAGE_FALLBACK_2 = f'docker.pkg.github.com/kubernetes/minikube/kicbase:{VERSION}'

SSH_USER = 'docker'


class KicDriver:
    """Node container managed through the docker or podman CLI.

    Config keys: machine_name, store_path, image, profile, cpus, memory,
    oci_binary, apiserver_port, kubernetes_version, container_runtime,
    envs, role.
    """

    def __init__(self, config: dict):
        self.config = dict(config)
        self.name = config['machine_name']
        self.oci_binary = config.get('oci_binary', oci.DOCKER)
        self.store_path = Path(config.get('store_path', '.'))
        self.image = config.get('image') or BASE_IMAGE

    def driver_name(self) -> str:
        return self.oci_binary

    def _machine_dir(self) -> Path:
        return self.store_path / 'machines' / self.name

    def exists(self) -> bool:
        return oci.container_exists(self.oci_binary, self.name)

    def create(self) -> None:
        """Create the node container.

        A container already using the name is deleted and recreated only if
        minikube created it.

        Raises:
            MinikubeError: CONFLICTING_RESOURCE for a container minikube does
                not own, PROVISION for runtime failures
        """
        if oci.container_exists(self.oci_binary, self.name):
            if not oci.is_created_by_minikube(self.oci_binary, self.name):
                raise MinikubeError(
                    ErrorKind.CONFLICTING_RESOURCE,
                    f'container "{self.name}" already exists and was not created by minikube',
                    remediation=f'Remove the container or choose another profile name: '
                                f'{self.oci_binary} rm -f {self.name}',
                )
            logger.warning(f"Found abandoned minikube container {self.name}, deleting it")
            oci.delete_container(self.oci_binary, self.name)

        try:
            oci.create_volume(self.oci_binary, self.name, self.config.get('profile', self.name))
        except oci.OCIError as e:
            raise MinikubeError(ErrorKind.PROVISION, str(e)).wrap('prepare kic volume') from e

        preload_group = self._begin_preload_extraction()
        try:
            oci.create_container_node(
                self.oci_binary, self.name, self.image,
                profile=self.config.get('profile', self.name),
                cpus=self.config.get('cpus', 2),
                memory=self.config.get('memory', 2000),
                port_mappings=[SSH_PORT, DOCKER_DAEMON_PORT, self.config.get('apiserver_port', APISERVER_PORT),
                               REGISTRY_ADDON_PORT],
                envs=self.config.get('envs') or {},
                role=self.config.get('role', 'control-plane'),
            )
            self._prepare_ssh()
        except oci.OCIError as e:
            raise MinikubeError(ErrorKind.PROVISION, str(e)).wrap('create kic node') from e
        finally:
            logger.info("Waiting for pre-loaded images to be extracted")
            try:
                preload_group.wait()
            except TaskGroupError as e:
                logger.info(f"Unable to extract preloaded tarball to volume: {e}")
            finally:
                preload_group.close()

    def _begin_preload_extraction(self) -> TaskGroup:
        group = TaskGroup(f'{self.name}-preload', concurrency=1)
        version = self.config.get('kubernetes_version', '')
        runtime = self.config.get('container_runtime', 'docker')
        tarball = download.tarball_path(self.store_path / 'cache', version, runtime)
        # Only a tarball already in the cache is extracted
        if runtime == 'docker' and tarball.exists():
            group.go(oci.extract_tarball_to_volume, self.oci_binary, str(tarball), self.name, self.image,
                     name='extract-preload')
        return group

    def _prepare_ssh(self) -> None:
        """Generate the machine key pair and authorize it inside the container."""
        machine_dir = self._machine_dir()
        machine_dir.mkdir(parents=True, exist_ok=True)
        key_path = machine_dir / 'id_rsa'
        if not key_path.exists():
            rc, _, err = run_command(['ssh-keygen', '-q', '-t', 'rsa', '-N', '', '-f', str(key_path)], timeout=60)
            if rc != 0:
                raise oci.OCIError(f"generate ssh key: {err.strip()}")

        target = f'/home/{SSH_USER}/.ssh/authorized_keys'
        for args in (
            ['exec', self.name, 'mkdir', '-p', f'/home/{SSH_USER}/.ssh'],
            ['cp', f'{key_path}.pub', f'{self.name}:{target}'],
            ['exec', '--privileged', self.name, 'chown', f'{SSH_USER}:{SSH_USER}', target],
        ):
            rc, _, err = run_command([self.oci_binary] + args, timeout=60)
            if rc != 0:
                raise oci.OCIError(f"prepare ssh: {err.strip()}")

    def start(self) -> None:
        rc, _, err = run_command([self.oci_binary, 'start', self.name], timeout=120)
        if rc != 0:
            raise MinikubeError(ErrorKind.PROVISION, f"start {self.name}: {err.strip()}")

    def stop(self) -> None:
        rc, _, err = run_command([self.oci_binary, 'stop', self.name], timeout=120)
        if rc != 0:
            raise MinikubeError(ErrorKind.PROVISION, f"stop {self.name}: {err.strip()}")

    def remove(self) -> None:
        oci.delete_container(self.oci_binary, self.name)
        oci.delete_volume(self.oci_binary, self.name)

    def get_state(self) -> State:
        return oci.container_status(self.oci_binary, self.name)

    def get_ip(self) -> str:
        return oci.container_ip(self.oci_binary, self.name)

    def get_ssh_hostname(self) -> str:
        return '127.0.0.1'

    def get_ssh_port(self) -> int:
        return oci.forwarded_port(self.oci_binary, self.name, SSH_PORT)

    def get_ssh_key_path(self) -> str:
        return str(self._machine_dir() / 'id_rsa')

    def get_ssh_username(self) -> str:
        return SSH_USER

    def to_dict(self) -> dict:
        return dict(self.config)


def kic_config(cc: ClusterConfig, node: Node, oci_binary: str) -> dict:
    return {
        'machine_name': machine_name(cc, node),
        'image': cc.kic_base_image or BASE_IMAGE,
        'profile': cc.name,
        'cpus': cc.cpus,
        'memory': cc.memory,
        'oci_binary': oci_binary,
        'apiserver_port': node.port,
        'kubernetes_version': node.kubernetes_version or cc.kubernetes_config.kubernetes_version,
        'container_runtime': cc.kubernetes_config.container_runtime,
        'envs': {'container': oci_binary},
        'role': 'control-plane' if node.control_plane else 'worker',
    }


def _status(oci_binary: str) -> DriverState:
    if not shutil.which(oci_binary):
        return DriverState(installed=False, error=f"{oci_binary} not found in PATH",
                           fix=f"Install {oci_binary}")
    rc, _, err = run_command([oci_binary, 'version', '--format', '{{.Server.Os}}'], timeout=30)
    if rc != 0:
        return DriverState(installed=True, healthy=False, error=err.strip(),
                           fix=f"Start the {oci_binary} service")
    return DriverState(installed=True, healthy=True)


def docker_driver_def() -> DriverDef:
    return DriverDef(
        name=oci.DOCKER,
        kind=Kind.KIC,
        config=lambda cc, node: kic_config(cc, node, oci.DOCKER),
        init=KicDriver,
        status=lambda: _status(oci.DOCKER),
        priority=Priority.FALLBACK,
    )


def podman_driver_def() -> DriverDef:
    return DriverDef(
        name=oci.PODMAN,
        kind=Kind.KIC,
        config=lambda cc, node: kic_config(cc, node, oci.PODMAN),
        init=KicDriver,
        status=lambda: _status(oci.PODMAN),
        priority=Priority.DISCOURAGED,
    )
