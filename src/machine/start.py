"""Start a machine.

`start_host` is the entry point. Under the per-machine lock it either
creates a new machine or fixes up an existing one, runs post-start setup,
and saves the host record:

    lock -> exists? -> create_host | fix_host -> post-start -> save -> unlock

Failures are MinikubeError with step context. When a host handle exists at
the time of failure it is attached as `error.host` so the caller can decide
between retrying and deleting.
"""

import json
import logging
import platform
import time
from pathlib import Path
from typing import Optional

import proxy
from common import unique
from config import ClusterConfig, Node, Settings, machine_name
from constants import (
    DEFAULT_ENGINE_INSTALL_URL,
    DEFAULT_SERVICE_CIDR,
    GUEST_ADDONS_DIR,
    GUEST_CERT_AUTH_DIR,
    GUEST_CERT_STORE_DIR,
    GUEST_EPHEMERAL_DIR,
    GUEST_GVISOR_DIR,
    GUEST_KUBERNETES_CERTS_DIR,
    GUEST_MANIFESTS_DIR,
    GUEST_PERSISTENT_DIR,
)
from driver.base import State
from driver.registry import Kind
from errors import ErrorKind, MinikubeError, wrap
from lock import acquire_machines_lock
from machine import filesync
from machine.host import AuthOptions, EngineOptions, Host
from tasks import Task

logger = logging.getLogger(__name__)

REQUIRED_DIRECTORIES = [
    GUEST_ADDONS_DIR,
    GUEST_MANIFESTS_DIR,
    GUEST_EPHEMERAL_DIR,
    GUEST_PERSISTENT_DIR,
    GUEST_KUBERNETES_CERTS_DIR,
    f'{GUEST_PERSISTENT_DIR}/images',
    f'{GUEST_PERSISTENT_DIR}/binaries',
    GUEST_GVISOR_DIR,
    GUEST_CERT_AUTH_DIR,
    GUEST_CERT_STORE_DIR,
]


def start_host(api, cc: ClusterConfig, node: Node, settings: Optional[Settings] = None) -> tuple[Host, bool]:
    """Start the machine for a node, creating it if necessary.

    Args:
        api: Machine API (LocalClient or compatible)
        cc: Cluster configuration; never modified
        node: Node to start
        settings: Invocation settings (default: from the environment)

    Returns:
        (host, existed) where existed is False when the machine was created

    Raises:
        MinikubeError: On any failure; the lock is released on every path
    """
    settings = settings or Settings.from_env()
    name = machine_name(cc, node)

    try:
        releaser = acquire_machines_lock(name, settings.lock_dir, timeout=settings.lock_timeout)
    except MinikubeError as e:
        raise e.wrap('boot lock')

    try:
        try:
            exists = api.exists(name)
        except Exception as e:
            raise wrap(e, f'exists: {name}')

        if not exists:
            logger.info(f"Provisioning new machine {name} for cluster {cc.name!r}")
            return create_host(api, cc, node, settings), False

        logger.info(f"Skipping create: using existing machine configuration for {name}")
        return fix_host(api, cc, node, settings), True
    finally:
        releaser.release()


def _fail(err: Exception, context: str, host: Host) -> MinikubeError:
    wrapped = wrap(err, context)
    wrapped.host = host
    return wrapped


def create_host(api, cc: ClusterConfig, node: Node, settings: Settings) -> Host:
    """Create, set up and save a new machine."""
    start = time.time()

    definition = api.registry.get(cc.driver)
    if definition is None:
        raise MinikubeError(
            ErrorKind.UNSUPPORTED_DRIVER, f"unsupported/missing driver: {cc.driver}",
            remediation=f"Choose one of: {', '.join(api.registry.names())}",
        )

    show_host_info(cc, definition.kind)

    try:
        driver_config = definition.config(cc, node)
    except Exception as e:
        raise wrap(e, 'config')
    driver_config['store_path'] = str(settings.minikube_home)
    data = json.dumps(driver_config).encode()

    try:
        host = api.new_host(cc.driver, data)
    except Exception as e:
        raise wrap(e, 'new host')

    host.auth_options = AuthOptions.for_home(settings.minikube_home)
    host.engine_options = engine_options(cc)

    try:
        timed_create_host(host, api, settings.create_timeout)
    except MinikubeError as e:
        raise e.wrap('creating host')

    try:
        post_start_setup(api, host, cc, settings)
    except Exception as e:
        raise _fail(e, 'post-start', host)

    try:
        api.save(host)
    except Exception as e:
        raise _fail(e, 'save', host)

    logger.info(f"duration metric: createHost completed in {time.time() - start:.1f}s")
    return host


def timed_create_host(host: Host, api, timeout: float) -> None:
    """Run api.create(host), giving up after `timeout` seconds.

    On timeout the creation thread is abandoned, not interrupted: the
    backend may still finish creating the machine.

    Raises:
        MinikubeError: CREATE_TIMEOUT on timeout, otherwise the creation
            error wrapped as `create`
    """
    task = Task(api.create, host, name=f'create-{host.name}').start()
    try:
        task.result(timeout=timeout)
    except Exception as e:
        if task.abandoned:
            raise MinikubeError(
                ErrorKind.CREATE_TIMEOUT, f"create host timed out in {timeout:.0f} seconds",
            ) from e
        raise wrap(e, 'create')


def fix_host(api, cc: ClusterConfig, node: Node, settings: Settings) -> Host:
    """Bring an existing machine back to a usable state and save it."""
    start = time.time()
    name = machine_name(cc, node)

    try:
        host = api.load(name)
    except Exception as e:
        raise wrap(e, 'load host')

    host.engine_options = engine_options(cc)

    try:
        state = host.driver.get_state()
        if state != State.RUNNING:
            logger.info(f"Machine {name} is {state}, starting it")
            host.driver.start()
    except Exception as e:
        raise _fail(e, 'driver start', host)

    try:
        post_start_setup(api, host, cc, settings)
    except Exception as e:
        raise _fail(e, 'post-start', host)

    try:
        api.save(host)
    except Exception as e:
        raise _fail(e, 'save', host)

    logger.info(f"duration metric: fixHost completed in {time.time() - start:.1f}s")
    return host


def engine_options(cc: ClusterConfig) -> EngineOptions:
    """Container engine options for a cluster, with proxy settings first."""
    return EngineOptions(
        env=unique(proxy.docker_env() + list(cc.docker_env)),
        insecure_registry=[DEFAULT_SERVICE_CIDR] + list(cc.insecure_registry),
        registry_mirror=list(cc.registry_mirror),
        arbitrary_flags=list(cc.docker_opt),
        install_url=DEFAULT_ENGINE_INSTALL_URL,
    )


def show_host_info(cc: ClusterConfig, kind: Kind) -> None:
    if kind == Kind.BARE_METAL:
        logger.info(f"Running on localhost (CPUs={cc.cpus}, Memory={cc.memory}MB, Disk={cc.disk_size}MB)")
    elif kind == Kind.KIC:
        logger.info(f"Creating {cc.driver} container (CPUs={cc.cpus}, Memory={cc.memory}MB)")
    else:
        logger.info(f"Creating {cc.driver} VM (CPUs={cc.cpus}, Memory={cc.memory}MB, Disk={cc.disk_size}MB)")


def parse_os_release(content: str) -> dict:
    """Parse /etc/os-release KEY=value lines."""
    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, _, value = line.partition('=')
        values[key] = value.strip().strip('"')
    return values


def ensure_directories(runner) -> None:
    runner.run_cmd(['sudo', 'mkdir', '-p'] + REQUIRED_DIRECTORIES)


def log_local_os_release() -> None:
    content = Path('/etc/os-release').read_text(encoding='utf-8')
    info = parse_os_release(content)
    logger.info(f"OS release is {info.get('PRETTY_NAME', platform.platform())}")


def log_remote_os_release(runner) -> None:
    result = runner.run_cmd(['cat', '/etc/os-release'])
    info = parse_os_release(result.stdout)
    logger.info(f"Remote host: {info.get('PRETTY_NAME', 'unknown')}")


def post_start_setup(api, host: Host, cc: ClusterConfig, settings: Settings) -> None:
    """Prepare a running machine for Kubernetes bootstrap.

    Steps run in order. OS fingerprinting is logged on failure; every other
    step failure is raised with the step name as context.
    """
    kind = api.registry.kind(host.driver_name)
    if kind == Kind.MOCK:
        logger.info(f"{host.name}: mock driver, skipping post-start setup")
        return

    try:
        runner = api.command_runner(host)
    except Exception as e:
        raise wrap(e, 'command runner')

    # (name, action, fatal)
    steps = [(f'sudo mkdir ({host.driver_name})', lambda: ensure_directories(runner), True)]
    if kind == Kind.BARE_METAL:
        steps.append(('local os release', log_local_os_release, False))
    if kind in (Kind.VM, Kind.KIC):
        steps.append(('remote os release', lambda: log_remote_os_release(runner), False))
    steps.append(('sync local assets',
                  lambda: filesync.sync_local_assets(runner, settings.minikube_home), True))

    for step_name, action, fatal in steps:
        logger.debug(f"{host.name}: post-start step {step_name}")
        try:
            action()
        except Exception as e:
            if fatal:
                raise wrap(e, step_name)
            logger.warning(f"{host.name}: {step_name} failed: {e}")
