"""Shared pytest fixtures for minikube-lifecycle tests."""

import sys
import threading
import time
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from command import FileAsset, RunResult  # noqa: E402
from config import ClusterConfig, KubernetesConfig, Node, Settings, machine_name  # noqa: E402
from driver.base import State  # noqa: E402
from driver.registry import DriverDef, DriverRegistry, Kind  # noqa: E402
from driver import mock  # noqa: E402
from machine import HostStore, LocalClient  # noqa: E402

FAKE_DRIVER = 'container-backend'


class FakeBackend:
    """Shared state behind every FakeDriver: which units exist and what was called."""

    def __init__(self):
        self.units: dict[str, State] = {}
        self.create_calls: list[str] = []
        self.start_calls: list[str] = []
        self.remove_calls: list[str] = []
        self.create_delay = 0.0
        self.create_error = None
        self.create_hook = None
        self._lock = threading.Lock()


class FakeDriver:
    """Driver whose units live in a FakeBackend."""

    def __init__(self, config: dict, backend: FakeBackend):
        self.config = dict(config)
        self.name = config['machine_name']
        self.backend = backend

    def driver_name(self):
        return FAKE_DRIVER

    def exists(self):
        return self.name in self.backend.units

    def create(self):
        with self.backend._lock:
            self.backend.create_calls.append(self.name)
        if self.backend.create_hook:
            self.backend.create_hook(self.name)
        if self.backend.create_delay:
            time.sleep(self.backend.create_delay)
        if self.backend.create_error:
            raise self.backend.create_error
        self.backend.units[self.name] = State.RUNNING

    def start(self):
        self.backend.start_calls.append(self.name)
        self.backend.units[self.name] = State.RUNNING

    def stop(self):
        self.backend.units[self.name] = State.STOPPED

    def remove(self):
        self.backend.remove_calls.append(self.name)
        self.backend.units.pop(self.name, None)

    def get_state(self):
        return self.backend.units.get(self.name, State.NONE)

    def get_ip(self):
        return '192.168.49.2'

    def get_ssh_hostname(self):
        return '127.0.0.1'

    def get_ssh_port(self):
        return 32772

    def get_ssh_key_path(self):
        return ''

    def get_ssh_username(self):
        return 'docker'

    def to_dict(self):
        return dict(self.config)


class FakeRunner:
    """Command runner that records commands and tracks created directories."""

    def __init__(self):
        self.commands: list[list[str]] = []
        self.copied: list[FileAsset] = []
        self.dirs: set[str] = set()
        self.os_release = 'NAME="Ubuntu"\nPRETTY_NAME="Ubuntu 20.04 LTS"\n'
        self.fail_on = None

    def run_cmd(self, cmd, timeout=600):
        self.commands.append(list(cmd))
        if self.fail_on and self.fail_on in cmd:
            raise RuntimeError(f"{' '.join(cmd)} failed")
        args = cmd[1:] if cmd[0] == 'sudo' else cmd
        if args[:2] == ['mkdir', '-p']:
            self.dirs.update(args[2:])
        if args[:1] == ['cat']:
            return RunResult(args=list(cmd), stdout=self.os_release)
        return RunResult(args=list(cmd))

    def copy(self, asset):
        self.copied.append(asset)


class FakeClient(LocalClient):
    """LocalClient that hands out a FakeRunner instead of running commands."""

    def __init__(self, registry, store, runner):
        super().__init__(registry, store)
        self.runner = runner

    def command_runner(self, host):
        return self.runner


@pytest.fixture
def minikube_home(tmp_path, monkeypatch):
    """Isolated minikube home with no proxy variables set."""
    home = tmp_path / '.minikube'
    home.mkdir()
    monkeypatch.setenv('MINIKUBE_HOME', str(home))
    for key in ('HTTP_PROXY', 'HTTPS_PROXY', 'NO_PROXY', 'http_proxy', 'https_proxy', 'no_proxy',
                'IS_MINIKUBE_CHILD_PROCESS', 'MINIKUBE_CACHE_IMAGES'):
        monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture
def settings(minikube_home):
    """Settings with short timeouts and no network-bound caching."""
    return Settings(
        minikube_home=minikube_home,
        cache_images=False,
        preload=False,
        lock_timeout=5,
        create_timeout=5,
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def registry(backend):
    """Registry with the fake container driver and the mock driver."""
    reg = DriverRegistry()
    reg.register(DriverDef(
        name=FAKE_DRIVER,
        kind=Kind.KIC,
        config=lambda cc, node: {'machine_name': machine_name(cc, node), 'cpus': cc.cpus},
        init=lambda config: FakeDriver(config, backend),
    ))
    reg.register(mock.driver_def())
    return reg


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def api(registry, settings, runner):
    return FakeClient(registry, HostStore(settings.machines_dir), runner)


@pytest.fixture
def cluster_config():
    """Single-node cluster on the fake container driver."""
    return ClusterConfig(
        name='minikube',
        driver=FAKE_DRIVER,
        kubernetes_config=KubernetesConfig(cluster_name='minikube'),
        nodes=[Node(name='', control_plane=True, worker=True)],
    )
