"""Cluster configuration management.

Configuration lives under the minikube home directory:
- config/config.yaml: Global defaults (driver, cpus, memory, cache images)
- profiles/{name}/config.yaml: One cluster configuration per profile

Resolution order for the minikube home:
1. $MINIKUBE_HOME environment variable
2. ~/.minikube

The merge order for `start` is: built-in defaults → config.yaml → existing
profile → command-line flags.
"""

import dataclasses
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from constants import (
    CONTAINER_RUNTIMES,
    DEFAULT_CONTAINER_RUNTIME,
    DEFAULT_CPUS,
    DEFAULT_DISK_SIZE,
    DEFAULT_KUBERNETES_VERSION,
    DEFAULT_MEMORY,
    DEFAULT_PROFILE,
    APISERVER_PORT,
    MIN_USABLE_MEMORY,
)

# Worker nodes are named m02, m03, ...
_WORKER_NAME = re.compile(r'^m\d{2,}$')
_WORKER_SUFFIX = re.compile(r'-m\d+$')
_PROFILE_NAME = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9._-]*$')


class ConfigError(Exception):
    """Configuration error."""


def get_minikube_home() -> Path:
    """Discover the minikube home directory."""
    if env_path := os.environ.get('MINIKUBE_HOME'):
        path = Path(env_path)
        # Accept both the parent directory and the .minikube directory itself
        if path.name != '.minikube' and (path / '.minikube').is_dir():
            return path / '.minikube'
        return path
    return Path.home() / '.minikube'


@dataclass
class Settings:
    """Per-invocation settings passed explicitly into the core.

    Attributes:
        minikube_home: Base directory for certs, machines, profiles and caches
        cache_images: Cache Kubernetes images in the background
        download_only: Download artifacts and stop before creating machines
        preload: Use preloaded image tarballs when available
        lock_timeout: Seconds to wait for the machines lock
        create_timeout: Seconds allowed for backend creation
        interactive: Prompts and progress output are allowed
    """
    minikube_home: Path = field(default_factory=get_minikube_home)
    cache_images: bool = True
    download_only: bool = False
    preload: bool = True
    lock_timeout: float = 15 * 60
    create_timeout: float = 4 * 60
    interactive: bool = False

    def __post_init__(self):
        if isinstance(self.minikube_home, str):
            self.minikube_home = Path(self.minikube_home)

    @classmethod
    def from_env(cls, **overrides) -> 'Settings':
        """Build settings from the environment plus explicit overrides."""
        settings = cls(**overrides)
        if os.environ.get('MINIKUBE_CACHE_IMAGES', '').lower() == 'false':
            settings.cache_images = False
        return settings

    @property
    def machines_dir(self) -> Path:
        return self.minikube_home / 'machines'

    @property
    def lock_dir(self) -> Path:
        return self.minikube_home / 'machines' / '.locks'

    @property
    def profiles_dir(self) -> Path:
        return self.minikube_home / 'profiles'

    @property
    def cache_dir(self) -> Path:
        return self.minikube_home / 'cache'

    @property
    def image_cache_dir(self) -> Path:
        return self.minikube_home / 'cache' / 'images'

    @property
    def files_dir(self) -> Path:
        return self.minikube_home / 'files'

    @property
    def certs_dir(self) -> Path:
        return self.minikube_home / 'certs'

    @property
    def logs_dir(self) -> Path:
        return self.minikube_home / 'logs'

    @property
    def global_config_file(self) -> Path:
        return self.minikube_home / 'config' / 'config.yaml'


@dataclass
class KubernetesConfig:
    """Kubernetes settings for a cluster."""
    kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    cluster_name: str = DEFAULT_PROFILE
    container_runtime: str = DEFAULT_CONTAINER_RUNTIME
    image_repository: str = ''
    service_cidr: str = ''

    @classmethod
    def from_dict(cls, data: dict) -> 'KubernetesConfig':
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Node:
    """One member of a cluster."""
    name: str = ''
    ip: str = ''
    port: int = APISERVER_PORT
    kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    control_plane: bool = True
    worker: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> 'Node':
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ClusterConfig:
    """Cluster-wide settings for one profile.

    The orchestrator works on copies of this object; use `copy()` before
    changing a value that the caller should not see.
    """
    name: str = DEFAULT_PROFILE
    driver: str = ''
    cpus: int = DEFAULT_CPUS
    memory: int = DEFAULT_MEMORY
    disk_size: int = DEFAULT_DISK_SIZE
    kic_base_image: str = ''
    docker_env: list = field(default_factory=list)
    docker_opt: list = field(default_factory=list)
    insecure_registry: list = field(default_factory=list)
    registry_mirror: list = field(default_factory=list)
    kubernetes_config: KubernetesConfig = field(default_factory=KubernetesConfig)
    nodes: list = field(default_factory=list)

    def copy(self, **changes) -> 'ClusterConfig':
        """Return a deep-enough copy with optional field changes."""
        values = {
            'docker_env': list(self.docker_env),
            'docker_opt': list(self.docker_opt),
            'insecure_registry': list(self.insecure_registry),
            'registry_mirror': list(self.registry_mirror),
            'kubernetes_config': dataclasses.replace(self.kubernetes_config),
            'nodes': [dataclasses.replace(n) for n in self.nodes],
        }
        values.update(changes)
        return dataclasses.replace(self, **values)

    def control_plane(self) -> Node:
        """Return the control-plane node.

        Raises:
            ConfigError: If the cluster has no control-plane node
        """
        for node in self.nodes:
            if node.control_plane:
                return node
        raise ConfigError(f"Cluster '{self.name}' has no control-plane node")

    def validate(self) -> None:
        """Check the configuration for values that cannot work.

        Raises:
            ConfigError: On the first invalid value
        """
        if not _PROFILE_NAME.match(self.name):
            raise ConfigError(f"Invalid profile name '{self.name}'")
        # A worker's machine name ends in -mNN; a cluster name must never look like one
        if _WORKER_SUFFIX.search(self.name):
            raise ConfigError(
                f"Profile name '{self.name}' must not end in '-m<number>' "
                "(reserved for worker machine names)"
            )
        if self.cpus < 1:
            raise ConfigError(f"Requested cpu count {self.cpus} is less than 1")
        if self.memory < MIN_USABLE_MEMORY:
            raise ConfigError(
                f"Requested memory {self.memory}MB is less than the usable minimum of {MIN_USABLE_MEMORY}MB"
            )
        runtime = self.kubernetes_config.container_runtime
        if runtime not in CONTAINER_RUNTIMES:
            raise ConfigError(f"Invalid container runtime '{runtime}'. Available: {', '.join(CONTAINER_RUNTIMES)}")
        control_planes = [n for n in self.nodes if n.control_plane]
        if self.nodes and len(control_planes) != 1:
            raise ConfigError(f"Cluster '{self.name}' must have exactly one control-plane node")
        for node in self.nodes:
            if not node.control_plane and not _WORKER_NAME.match(node.name):
                raise ConfigError(f"Invalid worker node name '{node.name}' (expected m02, m03, ...)")

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'ClusterConfig':
        known = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values['kubernetes_config'] = KubernetesConfig.from_dict(data.get('kubernetes_config') or {})
        values['nodes'] = [Node.from_dict(n) for n in data.get('nodes') or []]
        return cls(**values)


def machine_name(cc: ClusterConfig, node: Node) -> str:
    """Return the backend machine name for a node.

    Single-node clusters and the control plane use the cluster name; workers
    use {cluster}-{node}.
    """
    if len(cc.nodes) <= 1 or node.control_plane:
        return cc.name
    return f'{cc.name}-{node.name}'


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_global_config(settings: Settings) -> dict:
    """Load config/config.yaml defaults. Missing file means no defaults."""
    path = settings.global_config_file
    if not path.exists():
        return {}
    try:
        return _parse_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def profile_path(name: str, settings: Settings) -> Path:
    return settings.profiles_dir / name / 'config.yaml'


def profile_exists(name: str, settings: Settings) -> bool:
    return profile_path(name, settings).exists()


def load_profile(name: str, settings: Settings) -> ClusterConfig:
    """Load a cluster profile.

    Raises:
        ConfigError: If the profile doesn't exist or can't be parsed
    """
    path = profile_path(name, settings)
    if not path.exists():
        available = list_profiles(settings)
        raise ConfigError(
            f"Profile '{name}' not found.\n"
            f"Available profiles: {', '.join(available) if available else 'none'}\n"
            f"To create it, run: minikube-lifecycle start -p {name}"
        )
    try:
        return ClusterConfig.from_dict(_parse_yaml(path))
    except (yaml.YAMLError, TypeError) as e:
        raise ConfigError(f"Invalid profile {path}: {e}") from e


def save_profile(cc: ClusterConfig, settings: Settings) -> Path:
    """Write a cluster profile, replacing the previous one atomically."""
    path = profile_path(cc.name, settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix('.tmp')
    with open(tmp, 'w', encoding='utf-8') as f:
        yaml.safe_dump(cc.to_dict(), f, default_flow_style=False, sort_keys=False)
    tmp.replace(path)
    return path


def delete_profile(name: str, settings: Settings) -> None:
    shutil.rmtree(settings.profiles_dir / name, ignore_errors=True)


def list_profiles(settings: Settings) -> list[str]:
    """List profile names with a valid config file."""
    profiles_dir = settings.profiles_dir
    if not profiles_dir.exists():
        return []
    return sorted(p.name for p in profiles_dir.iterdir() if (p / 'config.yaml').is_file())


def image_cache_list(settings: Settings) -> list[str]:
    """Images listed under `cache:` in config.yaml."""
    values = load_global_config(settings).get('cache') or {}
    if isinstance(values, dict):
        return sorted(values)
    return list(values)
